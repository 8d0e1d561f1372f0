"""Long-poll event consumer that waits for the one human reply that matters."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from human_loop.application.ports.zulip_client_port import ZulipEventQueuePort
from human_loop.application.services.backoff import (
    CancellableWait,
    compute_retry_delay_ms,
    wait_unless_cancelled,
)
from human_loop.domain.errors import (
    QueueInvalidError,
    RetryBudgetExceededError,
    TransientTransportError,
)
from human_loop.infrastructure.logging import DebugLogger, NullDebugLogger
from human_loop.infrastructure.zulip.events import (
    HeartbeatEvent,
    MessageEvent,
    UnknownEvent,
    ZulipReply,
    iter_queue_events,
)
from human_loop.domain.event_queue import EventQueueSubscription

ResubscribeCallback = Callable[[str], None]
logger = logging.getLogger(__name__)

MAX_POLL_RETRIES = 10
MAX_REREGISTER_ATTEMPTS = 3


@dataclass(frozen=True)
class PollOptions:
    """Optional narrowing and recovery inputs for one poll call.

    `stream` and `topic` enable re-registration when the queue is invalidated.
    """

    stream: str | None = None
    topic: str | None = None
    question_message_id: int | None = None
    topic_id: str | None = None
    on_resubscribe: ResubscribeCallback | None = None


class EventConsumer:
    """Register, long-poll, and release Zulip event queues."""

    def __init__(
        self,
        *,
        client: ZulipEventQueuePort,
        base_interval_ms: int = 5_000,
        max_retries: int = MAX_POLL_RETRIES,
        max_reregister_attempts: int = MAX_REREGISTER_ATTEMPTS,
        wait: CancellableWait = wait_unless_cancelled,
        debug_logger: DebugLogger | None = None,
    ) -> None:
        self._client = client
        self._base_interval_ms = base_interval_ms
        self._max_retries = max_retries
        self._max_reregister_attempts = max_reregister_attempts
        self._wait = wait
        self._debug = debug_logger or NullDebugLogger()

    async def register_subscription(self, *, stream: str, topic: str) -> EventQueueSubscription:
        """Register a fresh queue narrowed to stream/topic; every call creates a new one."""

        return await self._client.register_event_queue(stream=stream, topic=topic)

    async def poll(
        self,
        *,
        queue_id: str,
        last_event_id: int,
        self_email: str,
        cancel_event: asyncio.Event,
        options: PollOptions | None = None,
    ) -> ZulipReply | None:
        """Block until a qualifying reply arrives, returning None on cancellation.

        Raises RetryBudgetExceededError when retries or re-registrations run out;
        any other error propagates unchanged.
        """

        poll_options = options or PollOptions()
        current_queue_id = queue_id
        cursor = last_event_id
        retry_count = 0
        reregister_attempts = 0
        self._debug.debug(
            "EventConsumer.poll called",
            {"queue_id": queue_id, "last_event_id": last_event_id, "self_email": self_email},
        )

        while not cancel_event.is_set():
            try:
                payload = await self._client.get_events(
                    queue_id=current_queue_id,
                    last_event_id=cursor,
                )
            except QueueInvalidError as error:
                if cancel_event.is_set():
                    return None
                if poll_options.stream is None or poll_options.topic is None:
                    raise
                if reregister_attempts >= self._max_reregister_attempts:
                    raise RetryBudgetExceededError(
                        "poll failed: event queue invalidated after "
                        f"{reregister_attempts} re-registrations: {error}"
                    ) from error

                reregister_attempts += 1
                self._debug.debug(
                    "BAD_EVENT_QUEUE_ID detected, re-registering queue",
                    {"old_queue_id": current_queue_id, "attempt": reregister_attempts},
                )
                subscription = await self.register_subscription(
                    stream=poll_options.stream,
                    topic=poll_options.topic,
                )
                logger.info(
                    "event_queue_reregistered old_queue_id=%s new_queue_id=%s attempt=%s",
                    current_queue_id,
                    subscription.queue_id,
                    reregister_attempts,
                )
                current_queue_id = subscription.queue_id
                cursor = subscription.last_event_id
                if poll_options.on_resubscribe is not None:
                    poll_options.on_resubscribe(current_queue_id)
                continue
            except TransientTransportError as error:
                if cancel_event.is_set():
                    return None
                if retry_count >= self._max_retries:
                    raise RetryBudgetExceededError(
                        f"poll failed after {retry_count} retries: {error}"
                    ) from error

                delay_ms = compute_retry_delay_ms(self._base_interval_ms, retry_count)
                logger.warning(
                    "event_poll_retry_scheduled queue_id=%s attempt=%s delay_ms=%s error=%s",
                    current_queue_id,
                    retry_count + 1,
                    delay_ms,
                    error,
                )
                if not await self._wait(cancel_event, delay_ms / 1000):
                    self._debug.debug("EventConsumer.poll cancelled during backoff")
                    return None
                retry_count += 1
                continue

            if cancel_event.is_set():
                return None

            retry_count = 0
            events = iter_queue_events(payload)
            if not events:
                continue

            self._debug.debug(
                "EventConsumer.poll events received",
                {"count": len(events), "queue_id": current_queue_id},
            )
            for event in events:
                if event.event_id is not None:
                    cursor = event.event_id

                if isinstance(event, HeartbeatEvent | UnknownEvent):
                    continue
                if isinstance(event, MessageEvent) and self._accepts(
                    reply=event.message,
                    self_email=self_email,
                    options=poll_options,
                ):
                    self._debug.debug(
                        "EventConsumer.poll reply received",
                        {
                            "sender": event.message.sender_email,
                            "message_id": event.message.message_id,
                        },
                    )
                    return event.message

        self._debug.debug("EventConsumer.poll cancelled")
        return None

    async def release_subscription(self, queue_id: str) -> None:
        """Best-effort queue deletion; failures are logged and never raised."""

        try:
            await self._client.deregister_queue(queue_id=queue_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("event_queue_release_failed queue_id=%s error=%s", queue_id, exc)

    def _accepts(self, *, reply: ZulipReply, self_email: str, options: PollOptions) -> bool:
        if reply.sender_email == self_email:
            return False

        if (
            options.question_message_id is not None
            and reply.message_id <= options.question_message_id
        ):
            self._debug.debug(
                "Skipping stale message",
                {
                    "message_id": reply.message_id,
                    "question_message_id": options.question_message_id,
                },
            )
            return False

        if options.topic_id is not None and (
            reply.topic is None or options.topic_id not in reply.topic
        ):
            self._debug.debug(
                "Skipping message: topic ID mismatch",
                {"expected_topic_id": options.topic_id, "actual_topic": reply.topic},
            )
            logger.info(
                "event_poll_topic_mismatch expected_topic_id=%s actual_topic=%s",
                options.topic_id,
                reply.topic,
            )
            return False

        return True
