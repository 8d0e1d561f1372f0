"""Registry of outstanding event queues, drained at shutdown."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class QueueReleaserPort(Protocol):
    """Capability that can release one event queue."""

    async def release_subscription(self, queue_id: str) -> None:
        """Release the queue on the server."""


class QueueRegistry:
    """Track live queue ids and how to release them.

    Mutations never await, so interleaved consultations on one event loop
    cannot observe a half-applied change.
    """

    def __init__(self) -> None:
        self._entries: dict[str, QueueReleaserPort] = {}

    def register(self, queue_id: str, releaser: QueueReleaserPort) -> None:
        self._entries[queue_id] = releaser

    def unregister(self, queue_id: str) -> None:
        self._entries.pop(queue_id, None)

    def rename(self, old_queue_id: str, new_queue_id: str) -> None:
        """Move the entry to a reissued queue id."""

        releaser = self._entries.pop(old_queue_id, None)
        if releaser is None:
            logger.warning(
                "queue_registry_rename_unknown old_queue_id=%s new_queue_id=%s",
                old_queue_id,
                new_queue_id,
            )
            return
        self._entries[new_queue_id] = releaser

    def queue_ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, queue_id: object) -> bool:
        return queue_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def release_all(self) -> None:
        """Release every tracked queue concurrently and empty the registry."""

        entries = list(self._entries.items())
        self._entries.clear()
        if not entries:
            return

        logger.info("queue_registry_release_all count=%s", len(entries))
        results = await asyncio.gather(
            *(releaser.release_subscription(queue_id) for queue_id, releaser in entries),
            return_exceptions=True,
        )
        for (queue_id, _), result in zip(entries, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "queue_registry_release_failed queue_id=%s error=%s",
                    queue_id,
                    result,
                )
