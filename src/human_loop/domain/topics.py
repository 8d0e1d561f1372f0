"""Topic naming rules for Zulip conversations."""

from __future__ import annotations

ZULIP_MAX_TOPIC_LENGTH = 60
_ELLIPSIS = "..."


def truncate_topic(topic: str, *, limit: int = ZULIP_MAX_TOPIC_LENGTH) -> str:
    """Truncate topic to `limit` code points, ending with an ellipsis when cut.

    Python strings index by code point, so multi-byte characters are never split.
    """

    if len(topic) <= limit:
        return topic
    budget = max(limit - len(_ELLIPSIS), 0)
    return f"{topic[:budget]}{_ELLIPSIS}"
