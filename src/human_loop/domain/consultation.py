"""Consultation record and its deterministic state machine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Final


class ConsultationState(StrEnum):
    """States one consultation moves through."""

    INIT = "INIT"
    CONFIG_RESOLVED = "CONFIG_RESOLVED"
    STREAM_RESOLVED = "STREAM_RESOLVED"
    TOPIC_CHOSEN = "TOPIC_CHOSEN"
    PUBLISHED = "PUBLISHED"
    SUBSCRIBED = "SUBSCRIBED"
    POLLING = "POLLING"
    REPLIED = "REPLIED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ConsultationOutcome(StrEnum):
    """Terminal outcome reported for a consultation."""

    REPLIED = "replied"
    CANCELLED = "cancelled"
    FAILED = "failed"


class InvalidConsultationTransitionError(ValueError):
    """Raised when an attempted consultation state transition is not allowed."""


_ABORT_TARGETS: Final = frozenset({ConsultationState.CANCELLED, ConsultationState.FAILED})

_ALLOWED_TRANSITIONS: Final[dict[ConsultationState, frozenset[ConsultationState]]] = {
    ConsultationState.INIT: frozenset({ConsultationState.CONFIG_RESOLVED}) | _ABORT_TARGETS,
    ConsultationState.CONFIG_RESOLVED: (
        frozenset({ConsultationState.STREAM_RESOLVED}) | _ABORT_TARGETS
    ),
    ConsultationState.STREAM_RESOLVED: (
        frozenset({ConsultationState.TOPIC_CHOSEN}) | _ABORT_TARGETS
    ),
    ConsultationState.TOPIC_CHOSEN: frozenset({ConsultationState.PUBLISHED}) | _ABORT_TARGETS,
    ConsultationState.PUBLISHED: frozenset({ConsultationState.SUBSCRIBED}) | _ABORT_TARGETS,
    ConsultationState.SUBSCRIBED: frozenset({ConsultationState.POLLING}) | _ABORT_TARGETS,
    ConsultationState.POLLING: frozenset({ConsultationState.REPLIED}) | _ABORT_TARGETS,
    ConsultationState.REPLIED: frozenset(),
    ConsultationState.CANCELLED: frozenset(),
    ConsultationState.FAILED: frozenset(),
}

_OUTCOME_BY_STATE: Final[dict[ConsultationState, ConsultationOutcome]] = {
    ConsultationState.REPLIED: ConsultationOutcome.REPLIED,
    ConsultationState.CANCELLED: ConsultationOutcome.CANCELLED,
    ConsultationState.FAILED: ConsultationOutcome.FAILED,
}


def can_transition(from_state: ConsultationState, to_state: ConsultationState) -> bool:
    """Return whether the transition is valid for the consultation state machine."""

    return to_state in _ALLOWED_TRANSITIONS[from_state]


def assert_transition(from_state: ConsultationState, to_state: ConsultationState) -> None:
    """Assert a transition is allowed, else raise deterministic domain error."""

    if not can_transition(from_state, to_state):
        raise InvalidConsultationTransitionError(
            f"Invalid consultation transition: {from_state.value} -> {to_state.value}"
        )


@dataclass
class Consultation:
    """One request/response exchange, mutated only by the orchestrator."""

    text: str
    confidence: float
    continuation_id: str | None = None
    stream: str | None = None
    topic: str | None = None
    question_message_id: int | None = None
    state: ConsultationState = ConsultationState.INIT
    outcome: ConsultationOutcome | None = None

    @property
    def is_follow_up(self) -> bool:
        return self.continuation_id is not None

    def advance(self, to_state: ConsultationState) -> None:
        assert_transition(self.state, to_state)
        self.state = to_state
        self.outcome = _OUTCOME_BY_STATE.get(to_state)
