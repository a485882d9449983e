import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# Slack rejects anything older than five minutes; we do the same.
SIGNATURE_MAX_AGE_S = 60 * 5


class SlackError(Exception):
    pass


class SlackConfigurationError(SlackError):
    pass


def verify_slack_signature(
    signing_secret: str,
    timestamp: str,
    body: bytes,
    signature: str,
) -> bool:
    """
    Verify request came from Slack.

    Slack signs requests using:
      basestring = "v0:{timestamp}:{raw_body}"
      signature = "v0=" + HMAC_SHA256(signing_secret, basestring).hexdigest()
    """
    signing_secret = (signing_secret or "").strip()
    if not signing_secret:
        return False

    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    # Reject requests older than 5 minutes (replay protection)
    if abs(time.time() - ts) > SIGNATURE_MAX_AGE_S:
        return False

    if not signature or not signature.startswith("v0="):
        return False

    try:
        body_str = body.decode("utf-8")
    except UnicodeDecodeError:
        return False

    sig_basestring = f"v0:{timestamp}:{body_str}"
    digest = hmac.new(
        signing_secret.encode("utf-8"),
        sig_basestring.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    expected = f"v0={digest}"
    return hmac.compare_digest(expected, signature)


@dataclass(frozen=True)
class RelayHandle:
    channel: str
    ts: str


@dataclass(frozen=True)
class SlackMessageResponse:
    ok: bool
    ts: Optional[str] = None
    channel: Optional[str] = None
    error: Optional[str] = None
    raw: Optional[dict[str, Any]] = None

    @property
    def handle(self) -> Optional[RelayHandle]:
        """Handle for editing the posted message; None unless ok with channel and ts."""
        if not self.ok or not self.ts or not self.channel:
            return None
        return RelayHandle(channel=self.channel, ts=self.ts)


class SlackService:
    """Outbound Slack Web API calls.

    Every call returns a ``SlackMessageResponse``; transport and API failures
    come back as ``ok=False`` with ``error`` set instead of being raised, so
    callers driving a poll loop never have to unwind on a Slack hiccup.
    """

    def __init__(self, bot_token: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.bot_token = (bot_token or "").strip()
        if not self.bot_token:
            raise SlackConfigurationError("SLACK_BOT_TOKEN not set")

        self._client = httpx.AsyncClient(
            base_url="https://slack.com/api",
            headers={"Authorization": f"Bearer {self.bot_token}"},
            timeout=httpx.Timeout(10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict[str, Any]) -> SlackMessageResponse:
        try:
            response = await self._client.post(f"/{method}", json=payload)
        except httpx.HTTPError as exc:
            logger.error("Error calling Slack %s: %s", method, exc)
            return SlackMessageResponse(ok=False, error=str(exc) or type(exc).__name__)

        if response.status_code < 200 or response.status_code >= 300:
            logger.error("Slack %s returned HTTP %s: %s", method, response.status_code, response.text)
            return SlackMessageResponse(ok=False, error=f"http_{response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Slack %s returned invalid JSON: %s", method, exc)
            return SlackMessageResponse(ok=False, error="invalid_json")

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else None
            logger.error("Slack %s failed: %s", method, error or "unknown_error")
            return SlackMessageResponse(
                ok=False,
                error=str(error or "unknown_error"),
                raw=data if isinstance(data, dict) else None,
            )

        return SlackMessageResponse(
            ok=True,
            ts=str(data.get("ts")) if data.get("ts") else None,
            channel=str(data.get("channel")) if data.get("channel") else None,
            raw=data,
        )

    async def post_message(
        self,
        *,
        channel: str,
        text: str,
        thread_ts: Optional[str] = None,
    ) -> SlackMessageResponse:
        channel = (channel or "").strip()
        if not channel:
            return SlackMessageResponse(ok=False, error="missing_channel")

        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        return await self._call("chat.postMessage", payload)

    async def update_message(
        self,
        *,
        channel: str,
        ts: str,
        text: str,
    ) -> SlackMessageResponse:
        channel = (channel or "").strip()
        ts = (ts or "").strip()
        if not channel or not ts:
            return SlackMessageResponse(ok=False, error="missing_channel_or_ts")

        return await self._call("chat.update", {"channel": channel, "ts": ts, "text": text})

    async def post_ephemeral(
        self,
        *,
        channel: str,
        user: str,
        text: str,
    ) -> SlackMessageResponse:
        channel = (channel or "").strip()
        user = (user or "").strip()
        if not channel or not user:
            return SlackMessageResponse(ok=False, error="missing_channel_or_user")

        return await self._call("chat.postEphemeral", {"channel": channel, "user": user, "text": text})


def get_slack_service(bot_token: str) -> SlackService:
    return SlackService(bot_token=bot_token)
