"""Server-issued event queue handle."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EventQueueSubscription:
    """Server-issued event queue narrowed to one stream/topic pair."""

    queue_id: str
    last_event_id: int
    stream: str
    topic: str
