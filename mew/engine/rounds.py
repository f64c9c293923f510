"""Round identity and the continuity policy."""
from __future__ import annotations

from .config import SessionConfig


class RoundCounter:
    """Monotonic round-id generator. Ids start at 1 and are never reused."""

    def __init__(self) -> None:
        self._current = 0

    @property
    def current(self) -> int:
        return self._current

    def next_round(self) -> int:
        self._current += 1
        return self._current


def should_continue(
    round_id: int,
    requested: SessionConfig | None,
    stored: SessionConfig | None,
) -> bool:
    """Whether a round continues the previous conversation.

    True only after the first round, and only while the session-relevant
    config (working directory + approval mode) is unchanged. Credentials
    never take part in this decision.
    """
    return round_id > 1 and requested == stored
