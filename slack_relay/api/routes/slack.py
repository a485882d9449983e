import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ...services.relay import BridgeContext, delivery_key
from ...services.relay.event_classifier import (
    InboundEvent,
    extract_message_text,
    is_direct_message,
    is_processable,
    parse_inbound_event,
    should_route,
)
from ...services.slack import verify_slack_signature

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])

# Slack's header names first; the generic spellings are accepted for proxies
# that strip the vendor prefix.
_SIGNATURE_HEADERS = ("X-Slack-Signature", "X-Signature")
_TIMESTAMP_HEADERS = ("X-Slack-Request-Timestamp", "X-Request-Timestamp")


def get_bridge_context(request: Request) -> BridgeContext:
    context = getattr(request.app.state, "bridge_context", None)
    if context is None:
        raise HTTPException(status_code=500, detail="Relay context not initialised")
    return context


def _first_header(request: Request, names: tuple[str, ...]) -> str:
    for name in names:
        value = request.headers.get(name, "").strip()
        if value:
            return value
    return ""


def _verify_request_or_401(*, signing_secret: str, request: Request, body: bytes) -> None:
    timestamp = _first_header(request, _TIMESTAMP_HEADERS)
    signature = _first_header(request, _SIGNATURE_HEADERS)
    if not timestamp or not signature:
        _logger.error("Missing Slack signature or timestamp")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not verify_slack_signature(signing_secret, timestamp, body, signature):
        _logger.error("Invalid Slack signature")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _parse_json(body: bytes) -> dict[str, Any]:
    # The signature already matched, so an unreadable body is our problem, not the caller's.
    try:
        value = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        _logger.error("Error parsing Slack payload: %s", exc)
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    if not isinstance(value, dict):
        _logger.error("Slack payload is not a JSON object")
        raise HTTPException(status_code=500, detail="Internal server error")
    return value


async def process_event(event: InboundEvent, *, context: BridgeContext) -> None:
    """Classify, gate and hand one delivery to the polling bridge.

    Runs after the HTTP response; never raises.
    """
    bot_user_id = context.bot_user_id
    try:
        if not is_processable(event, bot_user_id):
            return
        if not should_route(event, bot_user_id):
            return

        key = delivery_key(event)
        async with context.deduplicator.hold(key) as acquired:
            if not acquired:
                _logger.info("Skipping duplicate delivery %s", key)
                return

            _logger.info(
                "Received %s from user %s in channel %s",
                "DM" if is_direct_message(event) else "mention",
                event.user,
                event.channel,
            )
            text = extract_message_text(event.text, bot_user_id)
            await context.bridge.start(text=text, channel=event.channel, user_id=event.user)
    except Exception:  # noqa: BLE001
        _logger.exception("Error processing Slack event")


@router.post("/events")
async def slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    context: BridgeContext = Depends(get_bridge_context),
):
    signing_secret = (context.signing_secret or "").strip()
    if not signing_secret:
        raise HTTPException(status_code=500, detail="SLACK_SIGNING_SECRET not set")

    body = await request.body()
    _verify_request_or_401(signing_secret=signing_secret, request=request, body=body)

    payload = _parse_json(body)
    payload_type = payload.get("type")

    if payload_type == "url_verification":
        challenge = payload.get("challenge")
        if isinstance(challenge, str) and challenge:
            return JSONResponse({"challenge": challenge})

    if payload_type == "event_callback":
        try:
            event = parse_inbound_event(payload.get("event"))
        except Exception as exc:  # noqa: BLE001
            _logger.exception("Error parsing Slack event")
            raise HTTPException(status_code=500, detail="Internal server error") from exc

        retry_num = request.headers.get("X-Slack-Retry-Num")
        if retry_num:
            _logger.info("Slack retry #%s for %s", retry_num, delivery_key(event))

        background_tasks.add_task(process_event, event, context=context)
        return JSONResponse({"ok": True})

    _logger.warning("Unknown Slack event type: %s", payload_type)
    raise HTTPException(status_code=400, detail="Unknown event type")
