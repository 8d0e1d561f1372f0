"""ask-human command-line entrypoint for one consultation."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from human_loop.application.dto.consultation_models import (
    ConsultationRequest,
    ConsultationResult,
    ProgressUpdate,
)
from human_loop.application.services.consultation_service import ConsultationService
from human_loop.application.services.queue_registry import QueueRegistry
from human_loop.config.settings import load_settings
from human_loop.infrastructure.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ask-human",
        description="Post a question to Zulip and wait for a human reply.",
    )
    parser.add_argument("text", help="Question text, including context and options considered")
    parser.add_argument(
        "--confidence",
        type=float,
        required=True,
        help="Confidence (0-100) in resolving this without help",
    )
    parser.add_argument(
        "--continuation-id",
        default=None,
        help="Topic returned by a previous consultation, to continue that conversation",
    )
    return parser


def render_result(result: ConsultationResult) -> str:
    """Render result text plus continuation details for terminal output."""

    lines = [result.text]
    if result.details.continuation_id is not None:
        lines.append(f"continuation_id: {result.details.continuation_id}")
    if result.details.responder is not None:
        lines.append(f"responder: {result.details.responder}")
    return "\n".join(lines)


async def run_consultation(
    request: ConsultationRequest,
    *,
    service: ConsultationService,
    cancel_event: asyncio.Event,
) -> ConsultationResult:
    """Run one consultation and drain the registry on the way out."""

    try:
        return await service.consult(
            request,
            cancel_event=cancel_event,
            on_progress=_print_progress,
        )
    finally:
        await service.registry.release_all()


async def _run(argv: Sequence[str] | None) -> int:
    args = build_parser().parse_args(argv)
    try:
        request = ConsultationRequest(
            text=args.text,
            confidence=args.confidence,
            continuation_id=args.continuation_id,
        )
    except ValidationError as error:
        print(f"Invalid arguments: {error}", file=sys.stderr)
        return 2

    _configure_logging_from_settings()
    service = ConsultationService(registry=QueueRegistry())
    cancel_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, cancel_event.set)

    result = await run_consultation(
        request,
        service=service,
        cancel_event=cancel_event,
    )
    print(render_result(result))
    return 1 if result.is_error else 0


def _print_progress(update: ProgressUpdate) -> None:
    print(update.text, file=sys.stderr)


def _configure_logging_from_settings() -> None:
    try:
        settings = load_settings()
    except ValidationError:
        configure_logging(level="WARNING")
        return
    configure_logging(level=settings.log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Run ask-human CLI."""

    raise SystemExit(asyncio.run(_run(argv)))


if __name__ == "__main__":
    main()
