"""Stream auto-provisioning for consultations without a configured stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from human_loop.application.ports.zulip_client_port import ZulipStreamPort
from human_loop.config.settings import Settings
from human_loop.domain.errors import ConfigurationError
from human_loop.infrastructure.git.repo import detect_repo_name

RepoNameDetector = Callable[[], str]
logger = logging.getLogger(__name__)


async def auto_provision_stream(
    settings: Settings,
    client: ZulipStreamPort,
    *,
    detect_repo: RepoNameDetector = detect_repo_name,
) -> str:
    """Ensure a stream named after the repository exists and the bot is subscribed.

    Idempotent: Zulip treats subscribing to an existing stream as a no-op.
    Returns the stream name.
    """

    if not settings.zulip_auto_provision:
        raise ConfigurationError(
            "Stream auto-provisioning is disabled. Set ZULIP_STREAM or enable "
            "ZULIP_AUTO_PROVISION."
        )

    stream = settings.zulip_stream
    if stream is None:
        detected = await asyncio.to_thread(detect_repo)
        stream = detected.strip()
    if not stream:
        raise ConfigurationError("Unable to detect repository name for stream provisioning.")

    logger.info("stream_auto_provision_started stream=%s", stream)
    await client.create_stream(name=stream, description=settings.zulip_stream_description)
    await client.ensure_subscribed(stream=stream)
    logger.info("stream_auto_provision_done stream=%s", stream)
    return stream
