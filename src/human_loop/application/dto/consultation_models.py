"""Pydantic models for the ask-human tool contract."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CRITICAL_SUFFIX = "Do NOT proceed - stop all work and report this error."
CANCELLED_TEXT = "Human consultation cancelled."

ProgressStatus = Literal["posting", "waiting", "received"]
ResultStatus = Literal["replied", "cancelled", "failed"]


class StrictModel(BaseModel):
    """Base model with strict unknown-field rejection."""

    model_config = ConfigDict(extra="forbid")


class ConsultationRequest(StrictModel):
    """Caller input for one consultation."""

    text: str = Field(min_length=1)
    confidence: float = Field(ge=0, le=100)
    continuation_id: str | None = Field(default=None, min_length=1)


class ConsultationDetails(StrictModel):
    """Structured details returned alongside the result text."""

    continuation_id: str | None = None
    responder: str | None = None
    status: ResultStatus | None = None


class ConsultationResult(StrictModel):
    """Result contract; `is_error=True` instructs the caller to halt."""

    text: str
    is_error: bool
    details: ConsultationDetails = Field(default_factory=ConsultationDetails)


class ProgressUpdate(StrictModel):
    """Advisory progress notification emitted at state transitions."""

    text: str
    status: ProgressStatus


def build_replied_result(*, reply_text: str, topic: str, responder: str) -> ConsultationResult:
    """Build success result carrying the topic as continuation id."""

    return ConsultationResult(
        text=f"Human replied: {reply_text}",
        is_error=False,
        details=ConsultationDetails(
            continuation_id=topic,
            responder=responder,
            status="replied",
        ),
    )


def build_cancelled_result() -> ConsultationResult:
    """Build non-error cancellation result."""

    return ConsultationResult(
        text=CANCELLED_TEXT,
        is_error=False,
        details=ConsultationDetails(status="cancelled"),
    )


def build_critical_result(error_message: str) -> ConsultationResult:
    """Build critical failure result instructing the caller to stop."""

    return ConsultationResult(
        text=f"CRITICAL: Failed to reach human: {error_message}. {CRITICAL_SUFFIX}",
        is_error=True,
        details=ConsultationDetails(status="failed"),
    )
