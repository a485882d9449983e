"""Forward a Slack request to the task API and relay the answer back.

One ``PollSession`` per accepted delivery:

    SUBMITTING -> ACKNOWLEDGED -> POLLING -> RELAYED | TIMED_OUT | FAILED

The acknowledgment post always precedes submission, and submission always
precedes the first poll. Each session polls from its own asyncio task; the
task is the session's only timer and it exits on every terminal transition.
Every terminal state leaves exactly one final edit on the acknowledgment
message.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from ..slack import RelayHandle, SlackMessageResponse
from ..task_api import TaskState

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 1.0
MAX_POLLS = 300  # 5 minutes at 1s

EMPTY_MESSAGE_TEXT = "Please provide a message for me to process."
PROCESSING_TEXT = "🤖 Processing your request..."
QUEUED_TEXT = "✅ Your request has been queued. I'll send you the results when complete."
TIMEOUT_TEXT = "⏱️ Request timed out. The agent may still be processing in the background."
COMPLETE_TEXT = "✅ Processing complete."


class SlackClientProtocol(Protocol):
    async def post_message(self, *, channel: str, text: str, thread_ts: Optional[str] = None) -> SlackMessageResponse: ...
    async def update_message(self, *, channel: str, ts: str, text: str) -> SlackMessageResponse: ...
    async def post_ephemeral(self, *, channel: str, user: str, text: str) -> SlackMessageResponse: ...
    async def aclose(self) -> Any: ...


class TaskAPIProtocol(Protocol):
    async def submit_message(self, text: str) -> None: ...
    async def get_state(self) -> TaskState: ...
    async def aclose(self) -> Any: ...


class SessionState(str, Enum):
    SUBMITTING = "submitting"
    ACKNOWLEDGED = "acknowledged"
    POLLING = "polling"
    RELAYED = "relayed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.RELAYED, SessionState.TIMED_OUT, SessionState.FAILED)


@dataclass
class PollSession:
    channel: str
    user_id: str
    handle: RelayHandle
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    poll_count: int = 0
    last_relayed_history_length: int = 0
    relayed: bool = False
    state: SessionState = SessionState.SUBMITTING


def format_error(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


def format_result(content: str) -> str:
    return f"✅ Complete!\n\n{content}"


class PollingBridge:
    def __init__(
        self,
        *,
        slack: SlackClientProtocol,
        task_api: TaskAPIProtocol,
        poll_interval_s: float = POLL_INTERVAL_S,
        max_polls: int = MAX_POLLS,
        error_logger: Any | None = None,
    ) -> None:
        self._slack = slack
        self._task_api = task_api
        self._poll_interval_s = poll_interval_s
        self._max_polls = max_polls
        self._error_logger = error_logger
        self._sessions: dict[str, PollSession] = {}
        self._tasks: dict[str, asyncio.Task[SessionState]] = {}

    @property
    def active_sessions(self) -> dict[str, PollSession]:
        return dict(self._sessions)

    async def start(self, *, text: str, channel: str, user_id: str) -> PollSession | None:
        """Acknowledge, submit ``text`` and begin polling.

        Returns None when no session was created (empty text or the
        acknowledgment could not be posted). A session whose submission
        failed is returned already in ``FAILED``.
        """
        if not text:
            await self._slack.post_ephemeral(channel=channel, user=user_id, text=EMPTY_MESSAGE_TEXT)
            return None

        ack = await self._slack.post_message(channel=channel, text=PROCESSING_TEXT)
        handle = ack.handle
        if handle is None:
            error = ack.error or "missing_channel_or_ts"
            logger.error("Failed to send acknowledgment message to %s: %s", channel, error)
            await self._record_failure(
                "Failed to send acknowledgment message",
                channel=channel,
                user_id=user_id,
                error=error,
            )
            return None

        session = PollSession(channel=channel, user_id=user_id, handle=handle)
        session.state = SessionState.ACKNOWLEDGED

        try:
            await self._task_api.submit_message(text)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error sending to task API: %s", format_error(exc))
            await self._finish(session, SessionState.FAILED, f"❌ Error processing your request: {format_error(exc)}")
            await self._record_failure(
                "Task API submission failed",
                channel=channel,
                user_id=user_id,
                error=format_error(exc),
            )
            return session

        await self._update(session, QUEUED_TEXT)
        session.state = SessionState.POLLING
        self._sessions[session.id] = session
        self._tasks[session.id] = asyncio.create_task(self._poll(session), name=f"relay-poll-{session.id}")
        return session

    async def wait(self, session_id: str) -> SessionState | None:
        """Wait for a running session to finish. None if it is not running."""
        task = self._tasks.get(session_id)
        if task is None:
            session = self._sessions.get(session_id)
            return session.state if session else None
        return await task

    async def shutdown(self) -> None:
        """Cancel every running poll task and wait for them to unwind."""
        running = list(self._tasks.items())
        if not running:
            return
        for _, task in running:
            task.cancel()
        await asyncio.gather(*(task for _, task in running), return_exceptions=True)
        # A task cancelled before its first step never reaches its finally block.
        for session_id, _ in running:
            self._sessions.pop(session_id, None)
            self._tasks.pop(session_id, None)
        logger.info("Cancelled %d poll session(s)", len(running))

    async def _poll(self, session: PollSession) -> SessionState:
        try:
            while True:
                await asyncio.sleep(self._poll_interval_s)
                session.poll_count += 1

                if session.poll_count > self._max_polls:
                    await self._finish(session, SessionState.TIMED_OUT, TIMEOUT_TEXT)
                    return session.state

                try:
                    state = await self._task_api.get_state()
                    await self._relay_new_content(session, state)
                    if not state.is_idle:
                        continue
                    if not session.relayed:
                        # The answer can land between the growth check and the idle check.
                        await self._relay_new_content(session, await self._task_api.get_state())
                except Exception as exc:  # noqa: BLE001
                    logger.error("Error polling task API: %s", format_error(exc))
                    await self._finish(session, SessionState.FAILED, f"❌ Error getting results: {format_error(exc)}")
                    await self._record_failure(
                        "Task API polling failed",
                        channel=session.channel,
                        user_id=session.user_id,
                        error=format_error(exc),
                        poll_count=session.poll_count,
                    )
                    return session.state

                if session.relayed:
                    session.state = SessionState.RELAYED
                    logger.info("Session %s relayed after %d polls", session.id, session.poll_count)
                else:
                    await self._finish(session, SessionState.RELAYED, COMPLETE_TEXT)
                return session.state
        finally:
            self._sessions.pop(session.id, None)
            self._tasks.pop(session.id, None)

    async def _relay_new_content(self, session: PollSession, state: TaskState) -> bool:
        length = len(state.history)
        if length <= session.last_relayed_history_length:
            return False
        session.last_relayed_history_length = length

        latest = state.history[-1]
        if latest.role != "assistant" or not latest.content.strip():
            return False

        result = await self._update(session, format_result(latest.content))
        if result.ok:
            session.relayed = True
        return result.ok

    async def _finish(self, session: PollSession, state: SessionState, text: str) -> None:
        session.state = state
        logger.info("Session %s -> %s after %d polls", session.id, state.value, session.poll_count)
        await self._update(session, text)

    async def _update(self, session: PollSession, text: str) -> SlackMessageResponse:
        # Terminal notices go through here too; a Slack failure must not skip cleanup.
        try:
            result = await self._slack.update_message(
                channel=session.handle.channel,
                ts=session.handle.ts,
                text=text,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error updating relay message %s: %s", session.handle.ts, format_error(exc))
            return SlackMessageResponse(ok=False, error=format_error(exc))
        if not result.ok:
            logger.warning("Failed to update relay message %s: %s", session.handle.ts, result.error)
        return result

    async def _record_failure(self, message: str, **meta: Any) -> None:
        if self._error_logger is None:
            return
        payload = {"severity": "error", "message": message, "route": "/slack/events", **meta}
        try:
            await asyncio.to_thread(self._error_logger.log, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to record relay failure: %s", exc)
