"""Ports for the Zulip operations consumed by consultation services."""

from __future__ import annotations

from typing import Protocol

from human_loop.domain.event_queue import EventQueueSubscription


class ZulipEventQueuePort(Protocol):
    """Event-queue operations used by the event consumer."""

    async def register_event_queue(self, *, stream: str, topic: str) -> EventQueueSubscription:
        """Register a new message event queue narrowed to stream/topic."""

    async def get_events(self, *, queue_id: str, last_event_id: int) -> dict[str, object]:
        """Long-poll the queue and return the raw `/events` payload."""

    async def deregister_queue(self, *, queue_id: str) -> None:
        """Delete the queue on the server."""


class ZulipStreamPort(Protocol):
    """Stream operations used by auto-provisioning."""

    async def create_stream(self, *, name: str, description: str | None = None) -> None:
        """Create a stream, or subscribe when it already exists."""

    async def ensure_subscribed(self, *, stream: str) -> None:
        """Subscribe the bot to an existing stream."""


class ZulipConsultationClientPort(ZulipEventQueuePort, ZulipStreamPort, Protocol):
    """Full Zulip surface needed for one consultation."""

    async def send_message(self, *, stream: str, topic: str, content: str) -> int:
        """Post a stream message and return its Zulip message id."""
