"""Persistent transport lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    UNSPAWNED ──> ALIVE ──> DEAD

A DEAD process is never revived; the transport spawns a fresh
instance (starting again at UNSPAWNED) instead.
"""
from __future__ import annotations

from .models import TransportState

VALID_TRANSITIONS: dict[TransportState, set[TransportState]] = {
    TransportState.UNSPAWNED: {
        TransportState.ALIVE,
    },
    TransportState.ALIVE: {
        TransportState.DEAD,
    },
    TransportState.DEAD: set(),
}


def validate_transition(current: TransportState, target: TransportState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
