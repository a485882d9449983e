"""Inbound Slack event parsing and routing rules.

These helpers are side-effect free and safe to import from route handlers
without pulling in network dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    MESSAGE = "message"
    OTHER = "other"


class ChannelKind(str, Enum):
    DM = "dm"
    CHANNEL = "channel"
    OTHER = "other"


_CHANNEL_KINDS = {
    "im": ChannelKind.DM,
    "channel": ChannelKind.CHANNEL,
    "group": ChannelKind.CHANNEL,
    "mpim": ChannelKind.CHANNEL,
}


@dataclass(frozen=True)
class InboundEvent:
    kind: EventKind
    event_ts: str
    user: str
    text: str
    channel: str
    channel_kind: ChannelKind


def _str_field(event: dict[str, Any], key: str) -> str:
    value = event.get(key)
    return value.strip() if isinstance(value, str) else ""


def parse_inbound_event(event: Any) -> InboundEvent:
    """Build an ``InboundEvent`` from the ``event`` object of an event callback.

    Edits, deletions and bot posts arrive as ``message`` events with a
    ``subtype``; those are not user-authored and parse as ``EventKind.OTHER``.
    """
    if not isinstance(event, dict):
        event = {}

    is_message = event.get("type") == "message" and not event.get("subtype")
    text = event.get("text")
    return InboundEvent(
        kind=EventKind.MESSAGE if is_message else EventKind.OTHER,
        event_ts=_str_field(event, "event_ts") or _str_field(event, "ts"),
        user=_str_field(event, "user"),
        text=text if isinstance(text, str) else "",
        channel=_str_field(event, "channel"),
        channel_kind=_CHANNEL_KINDS.get(_str_field(event, "channel_type"), ChannelKind.OTHER),
    )


def mention_token(bot_user_id: str) -> str:
    return f"<@{bot_user_id}>"


def is_processable(event: InboundEvent, bot_user_id: str) -> bool:
    """Message events not authored by the bot itself."""
    return event.kind == EventKind.MESSAGE and event.user != bot_user_id


def is_direct_message(event: InboundEvent) -> bool:
    return event.channel_kind == ChannelKind.DM


def is_bot_mentioned(text: str, bot_user_id: str) -> bool:
    return mention_token(bot_user_id) in (text or "")


def extract_message_text(text: str, bot_user_id: str) -> str:
    """Strip every bot mention and surrounding whitespace. May return ``""``."""
    return (text or "").replace(mention_token(bot_user_id), "").strip()


def should_route(event: InboundEvent, bot_user_id: str) -> bool:
    """DMs are always handled; anywhere else the bot has to be mentioned."""
    if is_direct_message(event):
        return True
    return is_bot_mentioned(event.text, bot_user_id)
