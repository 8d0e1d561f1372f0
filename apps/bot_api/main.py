"""bot-api entrypoint exposing the ask-human tool contract over HTTP."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from pydantic import ValidationError

from human_loop.application.dto.consultation_models import (
    ConsultationRequest,
    ConsultationResult,
)
from human_loop.application.guidance import ASK_HUMAN_GUIDANCE
from human_loop.application.services.consultation_service import ConsultationService
from human_loop.application.services.queue_registry import QueueRegistry
from human_loop.config.settings import load_settings
from human_loop.infrastructure.logging import configure_logging

BOT_API_HOST = "127.0.0.1"
BOT_API_PORT = 8000
_DISCONNECT_POLL_SECONDS = 1.0
logger = logging.getLogger(__name__)


def create_app(
    *,
    consultation_service: ConsultationService | None = None,
    disconnect_poll_seconds: float = _DISCONNECT_POLL_SECONDS,
) -> FastAPI:
    """Create FastAPI app serving consultations and draining queues on shutdown."""

    if consultation_service is None:
        _configure_logging_from_settings()
        consultation_service = ConsultationService(registry=QueueRegistry())
    service = consultation_service
    runtime_registry = service.registry

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("bot_api_shutdown pending_queues=%s", len(runtime_registry))
        await runtime_registry.release_all()

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/guidance")
    async def guidance() -> dict[str, str]:
        return {"guidance": ASK_HUMAN_GUIDANCE}

    @app.post("/consultations", response_model=ConsultationResult)
    async def create_consultation(
        payload: ConsultationRequest,
        request: Request,
    ) -> ConsultationResult:
        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(
            _cancel_on_disconnect(
                request=request,
                cancel_event=cancel_event,
                poll_seconds=disconnect_poll_seconds,
            )
        )
        try:
            return await service.consult(payload, cancel_event=cancel_event)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    return app


async def _cancel_on_disconnect(
    *,
    request: Request,
    cancel_event: asyncio.Event,
    poll_seconds: float,
) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("bot_api_client_disconnected path=%s", request.url.path)
            cancel_event.set()
            return
        await asyncio.sleep(poll_seconds)


def _configure_logging_from_settings() -> None:
    try:
        settings = load_settings()
    except ValidationError as error:
        configure_logging(level="INFO")
        logger.warning(
            "bot_api_settings_invalid consultations_will_fail_until_fixed errors=%s",
            error.error_count(),
        )
        return
    configure_logging(level=settings.log_level)


def main() -> None:
    """Run bot-api HTTP runtime."""

    uvicorn.run(create_app(), host=BOT_API_HOST, port=BOT_API_PORT)


if __name__ == "__main__":
    main()
