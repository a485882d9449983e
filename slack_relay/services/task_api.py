from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class TaskAPIError(Exception):
    pass


class TaskAPIStatusError(TaskAPIError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Task API returned {status_code}")


class TaskAPIResponseError(TaskAPIError):
    pass


@dataclass(frozen=True)
class HistoryEntry:
    role: str
    content: str


@dataclass(frozen=True)
class TaskState:
    history: list[HistoryEntry] = field(default_factory=list)
    is_processing: bool = False
    queue_length: int = 0

    @property
    def is_idle(self) -> bool:
        return not self.is_processing and self.queue_length == 0


def _coerce_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Multi-part content: [{"type": "text", "text": "..."}, ...]
    if isinstance(value, list):
        parts = [
            str(part.get("text") or "")
            for part in value
            if isinstance(part, dict) and part.get("text")
        ]
        return "\n".join(parts)
    return ""


def _coerce_history_entry(item: Any) -> HistoryEntry:
    message = item.get("message") if isinstance(item, dict) else None
    if not isinstance(message, dict):
        return HistoryEntry(role="", content="")
    return HistoryEntry(
        role=str(message.get("role") or ""),
        content=_coerce_content(message.get("content")),
    )


def _coerce_state(data: dict[str, Any]) -> TaskState:
    history = data.get("history")
    try:
        queue_length = int(data.get("queueLength") or 0)
    except (TypeError, ValueError):
        queue_length = 0
    return TaskState(
        history=[_coerce_history_entry(item) for item in history] if isinstance(history, list) else [],
        is_processing=bool(data.get("isProcessing")),
        queue_length=queue_length,
    )


class TaskAPIClient:
    """HTTP client for the backend task API (``POST /message``, ``GET /state``).

    No retries here: a failed call is reported to the caller, which decides
    what the user sees.
    """

    def __init__(self, base_url: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(30.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, json_body: Any | None = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.HTTPError as exc:
            raise TaskAPIError(f"Task API request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TaskAPIStatusError(response.status_code, response.text)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TaskAPIResponseError(f"Task API returned invalid JSON: {exc}") from exc

    async def submit_message(self, text: str) -> None:
        """POST /message: queue ``text`` for processing."""
        await self._request("POST", "/message", json_body={"message": text})

    async def get_state(self) -> TaskState:
        """GET /state: current history plus processing/queue status."""
        data = await self._request("GET", "/state")
        if not isinstance(data, dict):
            raise TaskAPIResponseError("Task API state payload is not an object")
        return _coerce_state(data)
