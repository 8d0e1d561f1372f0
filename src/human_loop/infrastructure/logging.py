"""Shared logging configuration and the structured debug logger adapter."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(*, level: str) -> None:
    """Configure process logging with consistent format and runtime level."""

    normalized_level = level.strip().upper() if level.strip() else "INFO"
    resolved_level = getattr(logging, normalized_level, logging.INFO)

    logging.basicConfig(
        level=resolved_level,
        format=_LOG_FORMAT,
    )


class DebugLogger(Protocol):
    """Structured debug logger contract used by Zulip collaborators."""

    def debug(self, message: str, data: Mapping[str, Any] | None = None) -> None:
        """Record a debug message with optional structured data."""


class NullDebugLogger:
    """Debug logger that drops every entry."""

    def debug(self, message: str, data: Mapping[str, Any] | None = None) -> None:
        _ = message, data


class LoggingDebugLogger:
    """Forward structured debug entries to a stdlib logger as JSON payloads."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("human_loop.debug")

    def debug(self, message: str, data: Mapping[str, Any] | None = None) -> None:
        if data is None:
            self._logger.debug("%s", message)
            return
        self._logger.debug("%s data=%s", message, json.dumps(dict(data), default=str))


def build_debug_logger(*, enabled: bool) -> DebugLogger:
    """Return an active debug logger when enabled, else a no-op logger."""

    if not enabled:
        return NullDebugLogger()
    return LoggingDebugLogger()
