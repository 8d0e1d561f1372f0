"""Retry delay policy and cancellable waiting."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

MAX_BACKOFF_MS = 60_000

CancellableWait = Callable[[asyncio.Event, float], Awaitable[bool]]


def compute_retry_delay_ms(
    base_interval_ms: int,
    attempt: int,
    *,
    max_delay_ms: int = MAX_BACKOFF_MS,
) -> int:
    """Return `base * 2**attempt` milliseconds, capped at `max_delay_ms`."""

    return min(base_interval_ms * 2**attempt, max_delay_ms)


async def wait_unless_cancelled(cancel_event: asyncio.Event, delay_seconds: float) -> bool:
    """Sleep for delay_seconds unless cancel_event fires first.

    Returns True when the full delay elapsed and False when cancelled.
    """

    if cancel_event.is_set():
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_seconds)
    except TimeoutError:
        return True
    return False
