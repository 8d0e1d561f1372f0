from __future__ import annotations

import asyncio
import logging

import pytest

from human_loop.application.services.event_consumer import EventConsumer, PollOptions
from human_loop.domain.errors import (
    ProtocolError,
    QueueInvalidError,
    RetryBudgetExceededError,
    TransientTransportError,
)
from human_loop.domain.event_queue import EventQueueSubscription
from human_loop.infrastructure.zulip.events import ZulipReply

BOT_EMAIL = "bot@example.com"


class FakeEventQueueClient:
    def __init__(
        self,
        *,
        polls: list[dict[str, object] | Exception],
        registrations: list[EventQueueSubscription | Exception] | None = None,
        deregister_error: Exception | None = None,
    ) -> None:
        self._polls = polls
        self._registrations = registrations or []
        self._deregister_error = deregister_error
        self.poll_calls: list[tuple[str, int]] = []
        self.register_calls: list[tuple[str, str]] = []
        self.deregister_calls: list[str] = []

    async def register_event_queue(self, *, stream: str, topic: str) -> EventQueueSubscription:
        self.register_calls.append((stream, topic))
        outcome = self._registrations.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_events(self, *, queue_id: str, last_event_id: int) -> dict[str, object]:
        self.poll_calls.append((queue_id, last_event_id))
        if not self._polls:
            raise AssertionError("unexpected extra poll")
        outcome = self._polls.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def deregister_queue(self, *, queue_id: str) -> None:
        self.deregister_calls.append(queue_id)
        if self._deregister_error is not None:
            raise self._deregister_error


class WaitSpy:
    def __init__(self, *, cancel_on_call: int | None = None) -> None:
        self.delays: list[float] = []
        self._cancel_on_call = cancel_on_call

    async def __call__(self, cancel_event: asyncio.Event, delay_seconds: float) -> bool:
        self.delays.append(delay_seconds)
        if self._cancel_on_call is not None and len(self.delays) >= self._cancel_on_call:
            cancel_event.set()
            return False
        return True


def _message(
    event_id: int,
    message_id: int,
    *,
    sender: str = "human@example.com",
    content: str = "reply",
    subject: str = "repo:main",
) -> dict[str, object]:
    return {
        "id": event_id,
        "type": "message",
        "message": {
            "id": message_id,
            "sender_email": sender,
            "content": content,
            "subject": subject,
        },
    }


def _batch(*events: dict[str, object]) -> dict[str, object]:
    return {"result": "success", "events": list(events)}


def _server_error() -> TransientTransportError:
    return TransientTransportError(
        "get_events failed with status 500: boom",
        operation="get_events",
        status_code=500,
    )


def _queue_invalid() -> QueueInvalidError:
    return QueueInvalidError(
        "get_events failed with status 400: BAD_EVENT_QUEUE_ID",
        operation="get_events",
        status_code=400,
    )


def _consumer(client: FakeEventQueueClient, wait: WaitSpy | None = None) -> EventConsumer:
    return EventConsumer(client=client, base_interval_ms=5_000, wait=wait or WaitSpy())


@pytest.mark.asyncio
async def test_poll_returns_none_without_request_when_already_cancelled() -> None:
    client = FakeEventQueueClient(polls=[])
    cancel_event = asyncio.Event()
    cancel_event.set()

    reply = await _consumer(client).poll(
        queue_id="queue-1",
        last_event_id=-1,
        self_email=BOT_EMAIL,
        cancel_event=cancel_event,
    )

    assert reply is None
    assert client.poll_calls == []


@pytest.mark.asyncio
async def test_poll_skips_stale_message_then_returns_newer_reply() -> None:
    client = FakeEventQueueClient(
        polls=[
            _batch(_message(10, 99, content="old")),
            _batch(_message(11, 101, content="Use option B")),
        ]
    )

    reply = await _consumer(client).poll(
        queue_id="queue-1",
        last_event_id=9,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
        options=PollOptions(question_message_id=100),
    )

    assert reply == ZulipReply(
        message_id=101,
        sender_email="human@example.com",
        content="Use option B",
        topic="repo:main",
    )
    assert client.poll_calls == [("queue-1", 9), ("queue-1", 10)]


@pytest.mark.asyncio
async def test_poll_never_returns_own_messages_or_heartbeats() -> None:
    client = FakeEventQueueClient(
        polls=[
            _batch({"id": 1, "type": "heartbeat"}),
            _batch(_message(2, 100, sender=BOT_EMAIL, content="my question")),
            _batch(_message(3, 101, content="answer")),
        ]
    )

    reply = await _consumer(client).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is not None
    assert reply.content == "answer"
    assert client.poll_calls == [("queue-1", 0), ("queue-1", 1), ("queue-1", 2)]


@pytest.mark.asyncio
async def test_poll_loops_on_empty_batches_without_waiting() -> None:
    wait = WaitSpy()
    client = FakeEventQueueClient(
        polls=[_batch(), _batch(), _batch(_message(5, 200, content="done"))]
    )

    reply = await _consumer(client, wait).poll(
        queue_id="queue-1",
        last_event_id=4,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is not None
    assert reply.content == "done"
    assert len(client.poll_calls) == 3
    assert wait.delays == []


@pytest.mark.asyncio
async def test_poll_returns_first_surviving_event_in_batch() -> None:
    client = FakeEventQueueClient(
        polls=[
            _batch(
                _message(1, 99, content="stale"),
                _message(2, 100, sender=BOT_EMAIL),
                _message(3, 101, sender="first@example.com", content="first"),
                _message(4, 102, sender="second@example.com", content="second"),
            )
        ]
    )

    reply = await _consumer(client).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
        options=PollOptions(question_message_id=100),
    )

    assert reply is not None
    assert reply.sender_email == "first@example.com"


@pytest.mark.asyncio
async def test_poll_skips_topic_mismatch_and_logs_it(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    client = FakeEventQueueClient(
        polls=[
            _batch(_message(1, 200, content="Wrong thread", subject="other-repo:dev")),
            _batch(_message(2, 201, content="Correct thread", subject="my-repo:main")),
        ]
    )

    reply = await _consumer(client).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
        options=PollOptions(topic_id="my-repo:main"),
    )

    assert reply is not None
    assert reply.content == "Correct thread"
    assert "event_poll_topic_mismatch expected_topic_id=my-repo:main" in caplog.text


@pytest.mark.asyncio
async def test_poll_reregisters_queue_once_on_queue_invalid() -> None:
    resubscribed: list[str] = []
    client = FakeEventQueueClient(
        polls=[_queue_invalid(), _batch(_message(1001, 1002, content="Here is the reply"))],
        registrations=[
            EventQueueSubscription(
                queue_id="new-queue-456",
                last_event_id=1000,
                stream="agents",
                topic="repo:main",
            )
        ],
    )

    reply = await _consumer(client).poll(
        queue_id="old-queue-123",
        last_event_id=999,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
        options=PollOptions(
            stream="agents",
            topic="repo:main",
            on_resubscribe=resubscribed.append,
        ),
    )

    assert reply is not None
    assert reply.content == "Here is the reply"
    assert client.register_calls == [("agents", "repo:main")]
    assert resubscribed == ["new-queue-456"]
    assert client.poll_calls == [("old-queue-123", 999), ("new-queue-456", 1000)]


@pytest.mark.asyncio
async def test_poll_gives_up_after_three_reregistrations() -> None:
    registrations: list[EventQueueSubscription | Exception] = [
        EventQueueSubscription(
            queue_id=f"queue-{index}",
            last_event_id=0,
            stream="agents",
            topic="t",
        )
        for index in range(3)
    ]
    client = FakeEventQueueClient(
        polls=[_queue_invalid() for _ in range(4)],
        registrations=registrations,
    )

    with pytest.raises(RetryBudgetExceededError) as exc_info:
        await _consumer(client).poll(
            queue_id="queue-start",
            last_event_id=0,
            self_email=BOT_EMAIL,
            cancel_event=asyncio.Event(),
            options=PollOptions(stream="agents", topic="t"),
        )

    assert "poll" in str(exc_info.value)
    assert len(client.register_calls) == 3
    assert len(client.poll_calls) == 4


@pytest.mark.asyncio
async def test_poll_does_not_reregister_without_stream_and_topic() -> None:
    client = FakeEventQueueClient(polls=[_queue_invalid()])

    with pytest.raises(QueueInvalidError):
        await _consumer(client).poll(
            queue_id="queue-1",
            last_event_id=0,
            self_email=BOT_EMAIL,
            cancel_event=asyncio.Event(),
        )

    assert client.register_calls == []


@pytest.mark.asyncio
async def test_poll_retries_server_errors_with_exponential_backoff() -> None:
    wait = WaitSpy()
    client = FakeEventQueueClient(
        polls=[_server_error(), _server_error(), _batch(_message(1, 200, content="ok"))]
    )

    reply = await _consumer(client, wait).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is not None
    assert wait.delays == [5.0, 10.0]
    assert len(client.poll_calls) == 3


@pytest.mark.asyncio
async def test_poll_backoff_is_capped_and_fatal_after_retry_budget() -> None:
    wait = WaitSpy()
    client = FakeEventQueueClient(polls=[_server_error() for _ in range(11)])

    with pytest.raises(RetryBudgetExceededError) as exc_info:
        await _consumer(client, wait).poll(
            queue_id="queue-1",
            last_event_id=0,
            self_email=BOT_EMAIL,
            cancel_event=asyncio.Event(),
        )

    assert "poll failed after 10 retries" in str(exc_info.value)
    assert wait.delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0, 60.0, 60.0, 60.0, 60.0]
    assert len(client.poll_calls) == 11


@pytest.mark.asyncio
async def test_poll_resets_retry_budget_after_successful_fetch() -> None:
    wait = WaitSpy()
    client = FakeEventQueueClient(
        polls=[
            _server_error(),
            _batch(),
            _server_error(),
            _batch(_message(1, 2, content="ok")),
        ]
    )

    reply = await _consumer(client, wait).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is not None
    assert wait.delays == [5.0, 5.0]


@pytest.mark.asyncio
async def test_cancel_during_backoff_returns_none_without_another_request() -> None:
    wait = WaitSpy(cancel_on_call=2)
    client = FakeEventQueueClient(polls=[_server_error(), _server_error()])

    reply = await _consumer(client, wait).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is None
    assert len(client.poll_calls) == 2
    assert wait.delays == [5.0, 10.0]


@pytest.mark.asyncio
async def test_network_errors_are_retried() -> None:
    wait = WaitSpy()
    network_error = TransientTransportError(
        "get_events transport failure: refused",
        operation="get_events",
    )
    client = FakeEventQueueClient(polls=[network_error, _batch(_message(1, 2))])

    reply = await _consumer(client, wait).poll(
        queue_id="queue-1",
        last_event_id=0,
        self_email=BOT_EMAIL,
        cancel_event=asyncio.Event(),
    )

    assert reply is not None
    assert wait.delays == [5.0]


@pytest.mark.asyncio
async def test_other_protocol_errors_propagate_without_retry() -> None:
    wait = WaitSpy()
    error = ProtocolError("get_events failed with status 401", operation="get_events")
    client = FakeEventQueueClient(polls=[error])

    with pytest.raises(ProtocolError) as exc_info:
        await _consumer(client, wait).poll(
            queue_id="queue-1",
            last_event_id=0,
            self_email=BOT_EMAIL,
            cancel_event=asyncio.Event(),
        )

    assert exc_info.value is error
    assert wait.delays == []


@pytest.mark.asyncio
async def test_release_subscription_swallows_failures(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeEventQueueClient(polls=[], deregister_error=RuntimeError("gone"))

    await _consumer(client).release_subscription("queue-1")

    assert client.deregister_calls == ["queue-1"]
    assert "event_queue_release_failed queue_id=queue-1" in caplog.text


@pytest.mark.asyncio
async def test_register_subscription_creates_new_queue_each_call() -> None:
    client = FakeEventQueueClient(
        polls=[],
        registrations=[
            EventQueueSubscription(queue_id="q1", last_event_id=1, stream="s", topic="t"),
            EventQueueSubscription(queue_id="q2", last_event_id=1, stream="s", topic="t"),
        ],
    )
    consumer = _consumer(client)

    first = await consumer.register_subscription(stream="s", topic="t")
    second = await consumer.register_subscription(stream="s", topic="t")

    assert (first.queue_id, second.queue_id) == ("q1", "q2")
