"""Zulip message templates for consultation posts."""

from __future__ import annotations

_WAITING_FOOTER = "_Reply in this topic. The agent is waiting for your response._"


def build_question_message(*, text: str, confidence: float) -> str:
    """Build the opening message for a new consultation topic."""

    return (
        "🤖 **Agent needs help**\n\n"
        f"{text}\n\n"
        f"**Confidence:** {_format_confidence(confidence)}/100\n\n"
        f"{_WAITING_FOOTER}"
    )


def build_follow_up_message(*, text: str) -> str:
    """Build a follow-up message posted into an existing topic."""

    return f"🤖 **Follow-up:**\n\n{text}\n\n{_WAITING_FOOTER}"


def format_consultation_message(*, text: str, confidence: float, is_follow_up: bool) -> str:
    """Select the template matching the consultation kind."""

    if is_follow_up:
        return build_follow_up_message(text=text)
    return build_question_message(text=text, confidence=confidence)


def _format_confidence(confidence: float) -> str:
    if float(confidence).is_integer():
        return str(int(confidence))
    return f"{confidence:g}"
