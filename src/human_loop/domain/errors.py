"""Error taxonomy for Zulip consultation failures."""

from __future__ import annotations


class HumanLoopError(RuntimeError):
    """Base class for all human-loop failures."""


class ConfigurationError(HumanLoopError):
    """Raised when required settings are missing, invalid, or unusable."""


class ProtocolError(HumanLoopError):
    """Raised when Zulip answers with a non-success status that is not retryable."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.details = details


class QueueInvalidError(ProtocolError):
    """Raised when Zulip reports the event queue id as no longer valid."""


class TransientTransportError(HumanLoopError):
    """Raised for 5xx responses and network-level faults."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class RetryBudgetExceededError(HumanLoopError):
    """Raised when retry or re-registration ceilings are exhausted."""
