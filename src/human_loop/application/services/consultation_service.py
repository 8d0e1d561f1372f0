"""Orchestrates one ask-human consultation from publish to cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from human_loop.application.dto.consultation_models import (
    ConsultationRequest,
    ConsultationResult,
    ProgressStatus,
    ProgressUpdate,
    build_cancelled_result,
    build_critical_result,
    build_replied_result,
)
from human_loop.application.ports.zulip_client_port import ZulipConsultationClientPort
from human_loop.application.services.auto_provision_service import auto_provision_stream
from human_loop.application.services.event_consumer import EventConsumer, PollOptions
from human_loop.application.services.queue_registry import QueueRegistry
from human_loop.config.settings import Settings, load_settings
from human_loop.domain.consultation import Consultation, ConsultationState
from human_loop.domain.errors import ConfigurationError
from human_loop.domain.topics import truncate_topic
from human_loop.infrastructure.git.repo import detect_branch_name
from human_loop.infrastructure.logging import DebugLogger, build_debug_logger
from human_loop.infrastructure.zulip.http_client import ZulipHttpClient
from human_loop.infrastructure.zulip.message_templates import format_consultation_message

SettingsLoader = Callable[[], Settings]
ClientFactory = Callable[[Settings, DebugLogger], ZulipConsultationClientPort]
ConsumerFactory = Callable[[ZulipConsultationClientPort, Settings, DebugLogger], EventConsumer]
AutoProvisioner = Callable[[Settings, ZulipConsultationClientPort], Awaitable[str]]
BranchNameDetector = Callable[[], str]
MessageFormatter = Callable[..., str]
ProgressCallback = Callable[[ProgressUpdate], None]
logger = logging.getLogger(__name__)

_PROGRESS_TEXT: dict[ProgressStatus, str] = {
    "posting": "Posting question to Zulip...",
    "waiting": "Waiting for human response...",
    "received": "Human response received.",
}


def build_zulip_client(settings: Settings, debug_logger: DebugLogger) -> ZulipHttpClient:
    """Build Zulip HTTP client from runtime settings."""

    return ZulipHttpClient(
        server_url=str(settings.zulip_server_url),
        bot_email=settings.zulip_bot_email,
        bot_api_key=settings.zulip_bot_api_key,
        timeout_seconds=settings.zulip_http_timeout_seconds,
        debug_logger=debug_logger,
    )


def build_event_consumer(
    client: ZulipConsultationClientPort,
    settings: Settings,
    debug_logger: DebugLogger,
) -> EventConsumer:
    """Build event consumer using the configured backoff base interval."""

    return EventConsumer(
        client=client,
        base_interval_ms=settings.zulip_poll_interval_ms,
        debug_logger=debug_logger,
    )


@dataclass
class _TrackedQueue:
    """Queue id currently owned by a consultation; follows re-registrations."""

    queue_id: str
    registry: QueueRegistry
    debug: DebugLogger

    def on_resubscribe(self, new_queue_id: str) -> None:
        self.registry.rename(self.queue_id, new_queue_id)
        self.queue_id = new_queue_id
        self.debug.debug("Queue re-registered", {"new_queue_id": new_queue_id})


class ConsultationService:
    """Run publish, subscribe, wait, and cleanup for one consultation at a time per call."""

    def __init__(
        self,
        *,
        registry: QueueRegistry,
        settings_loader: SettingsLoader = load_settings,
        client_factory: ClientFactory = build_zulip_client,
        consumer_factory: ConsumerFactory = build_event_consumer,
        auto_provisioner: AutoProvisioner = auto_provision_stream,
        branch_detector: BranchNameDetector = detect_branch_name,
        message_formatter: MessageFormatter = format_consultation_message,
    ) -> None:
        self._registry = registry
        self._settings_loader = settings_loader
        self._client_factory = client_factory
        self._consumer_factory = consumer_factory
        self._auto_provisioner = auto_provisioner
        self._branch_detector = branch_detector
        self._message_formatter = message_formatter

    @property
    def registry(self) -> QueueRegistry:
        """Registry that tracks this service's live event queues."""

        return self._registry

    async def consult(
        self,
        request: ConsultationRequest,
        *,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ConsultationResult:
        """Publish the request, wait for a human reply, and always release the queue."""

        cancel = cancel_event or asyncio.Event()
        consultation = Consultation(
            text=request.text,
            confidence=request.confidence,
            continuation_id=request.continuation_id,
        )
        if cancel.is_set():
            logger.info("consultation_cancelled_at_start")
            consultation.advance(ConsultationState.CANCELLED)
            return build_cancelled_result()

        try:
            settings, debug, client = self._resolve_runtime()
        except ConfigurationError as error:
            return self._fail(consultation, error)
        consultation.advance(ConsultationState.CONFIG_RESOLVED)
        debug.debug(
            "Config loaded",
            {
                "server_url": str(settings.zulip_server_url),
                "bot_email": settings.zulip_bot_email,
                "stream": settings.zulip_stream,
            },
        )

        stream = settings.zulip_stream
        if stream is None:
            try:
                debug.debug("Auto-provisioning stream")
                stream = await self._auto_provisioner(settings, client)
            except Exception as error:  # noqa: BLE001
                debug.debug("Auto-provision failed", {"error": str(error)})
                return self._fail(consultation, error)
        if not stream:
            return self._fail(
                consultation,
                ConfigurationError(
                    "No stream configured. Set ZULIP_STREAM or enable ZULIP_AUTO_PROVISION."
                ),
            )
        consultation.stream = stream
        consultation.advance(ConsultationState.STREAM_RESOLVED)

        consumer = self._consumer_factory(client, settings, debug)
        try:
            topic = await self._choose_topic(consultation)
            consultation.topic = topic
            consultation.advance(ConsultationState.TOPIC_CHOSEN)
            debug.debug("Topic chosen", {"topic": topic, "is_follow_up": consultation.is_follow_up})

            content = self._message_formatter(
                text=consultation.text,
                confidence=consultation.confidence,
                is_follow_up=consultation.is_follow_up,
            )
            self._emit(on_progress, "posting")
            consultation.question_message_id = await client.send_message(
                stream=stream,
                topic=topic,
                content=content,
            )
            consultation.advance(ConsultationState.PUBLISHED)
            logger.info(
                "consultation_published stream=%s topic=%s message_id=%s",
                stream,
                topic,
                consultation.question_message_id,
            )

            await client.ensure_subscribed(stream=stream)
            subscription = await consumer.register_subscription(stream=stream, topic=topic)
            debug.debug(
                "Event queue registered",
                {"queue_id": subscription.queue_id, "last_event_id": subscription.last_event_id},
            )
        except Exception as error:  # noqa: BLE001
            return self._fail(consultation, error)

        async with self._registered_queue(
            consumer=consumer,
            queue_id=subscription.queue_id,
            debug=debug,
        ) as tracked:
            consultation.advance(ConsultationState.SUBSCRIBED)
            self._emit(on_progress, "waiting")
            consultation.advance(ConsultationState.POLLING)
            try:
                reply = await consumer.poll(
                    queue_id=tracked.queue_id,
                    last_event_id=subscription.last_event_id,
                    self_email=settings.zulip_bot_email,
                    cancel_event=cancel,
                    options=PollOptions(
                        stream=stream,
                        topic=topic,
                        question_message_id=consultation.question_message_id,
                        topic_id=topic,
                        on_resubscribe=tracked.on_resubscribe,
                    ),
                )
            except Exception as error:  # noqa: BLE001
                debug.debug("Polling error", {"error": str(error)})
                if cancel.is_set():
                    logger.info("consultation_cancelled_after_error queue_id=%s", tracked.queue_id)
                    consultation.advance(ConsultationState.CANCELLED)
                    return build_cancelled_result()
                return self._fail(consultation, error)

            # A None reply is reported as cancellation whether or not the event was set.
            if reply is None:
                logger.info("consultation_cancelled queue_id=%s", tracked.queue_id)
                consultation.advance(ConsultationState.CANCELLED)
                return build_cancelled_result()

            consultation.advance(ConsultationState.REPLIED)
            logger.info(
                "consultation_replied topic=%s responder=%s message_id=%s",
                topic,
                reply.sender_email,
                reply.message_id,
            )
            self._emit(on_progress, "received")
            return build_replied_result(
                reply_text=reply.content,
                topic=topic,
                responder=reply.sender_email,
            )

    def _resolve_runtime(self) -> tuple[Settings, DebugLogger, ZulipConsultationClientPort]:
        try:
            settings = self._settings_loader()
            debug = build_debug_logger(enabled=settings.zulip_debug)
            client = self._client_factory(settings, debug)
        except Exception as error:  # noqa: BLE001
            raise ConfigurationError(f"Invalid configuration: {error}") from error
        return settings, debug, client

    async def _choose_topic(self, consultation: Consultation) -> str:
        if consultation.continuation_id is not None:
            return consultation.continuation_id
        branch = await asyncio.to_thread(self._branch_detector)
        return truncate_topic(branch)

    @asynccontextmanager
    async def _registered_queue(
        self,
        *,
        consumer: EventConsumer,
        queue_id: str,
        debug: DebugLogger,
    ) -> AsyncIterator[_TrackedQueue]:
        tracked = _TrackedQueue(queue_id=queue_id, registry=self._registry, debug=debug)
        self._registry.register(queue_id, consumer)
        try:
            yield tracked
        finally:
            try:
                await consumer.release_subscription(tracked.queue_id)
                debug.debug("Event queue released", {"queue_id": tracked.queue_id})
            finally:
                self._registry.unregister(tracked.queue_id)

    def _fail(self, consultation: Consultation, error: Exception) -> ConsultationResult:
        message = str(error) or error.__class__.__name__
        logger.error(
            "consultation_failed state=%s error_type=%s error=%s",
            consultation.state,
            error.__class__.__name__,
            message,
        )
        consultation.advance(ConsultationState.FAILED)
        return build_critical_result(message)

    def _emit(self, on_progress: ProgressCallback | None, status: ProgressStatus) -> None:
        if on_progress is None:
            return
        try:
            on_progress(ProgressUpdate(text=_PROGRESS_TEXT[status], status=status))
        except Exception as exc:  # noqa: BLE001
            logger.warning("consultation_progress_callback_failed status=%s error=%s", status, exc)
