"""Helpers for parsing Zulip `/events` responses into typed events."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ZulipReply:
    """Message payload that may answer a pending consultation."""

    message_id: int
    sender_email: str
    content: str
    topic: str | None


@dataclass(frozen=True)
class HeartbeatEvent:
    """Keep-alive event Zulip emits while a queue is idle."""

    event_id: int


@dataclass(frozen=True)
class MessageEvent:
    """New-message event carrying a well-formed message payload."""

    event_id: int
    message: ZulipReply


@dataclass(frozen=True)
class UnknownEvent:
    """Any other event kind, or a message event with a malformed payload."""

    event_id: int | None
    kind: str | None


ZulipEvent = HeartbeatEvent | MessageEvent | UnknownEvent


def parse_event(raw: Mapping[str, Any]) -> ZulipEvent:
    """Classify one raw event dict into its tagged variant."""

    raw_id = raw.get("id")
    event_id = raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else None
    kind = raw.get("type")
    kind = kind if isinstance(kind, str) else None

    if kind == "heartbeat" and event_id is not None:
        return HeartbeatEvent(event_id=event_id)

    message = raw.get("message")
    if event_id is None or not isinstance(message, Mapping):
        return UnknownEvent(event_id=event_id, kind=kind)
    if kind not in {None, "message"}:
        return UnknownEvent(event_id=event_id, kind=kind)

    reply = _parse_message(message)
    if reply is None:
        return UnknownEvent(event_id=event_id, kind=kind)
    return MessageEvent(event_id=event_id, message=reply)


def iter_queue_events(events_payload: Mapping[str, Any]) -> list[ZulipEvent]:
    """Extract typed events from an `/events` response, preserving arrival order."""

    events = events_payload.get("events")
    if not isinstance(events, list):
        return []

    return [parse_event(event) for event in events if isinstance(event, Mapping)]


def _parse_message(message: Mapping[str, Any]) -> ZulipReply | None:
    message_id = message.get("id")
    sender_email = message.get("sender_email")
    content = message.get("content")
    if not isinstance(message_id, int) or isinstance(message_id, bool):
        return None
    if not isinstance(sender_email, str) or not isinstance(content, str):
        return None

    topic = message.get("subject")
    if not isinstance(topic, str):
        topic = message.get("topic")
    return ZulipReply(
        message_id=message_id,
        sender_email=sender_email,
        content=content,
        topic=topic if isinstance(topic, str) else None,
    )
