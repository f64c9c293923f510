"""Core data models for the session bridge.

All dataclasses and enums. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ApprovalMode(str, Enum):
    """Approval modes accepted by the assistant CLI."""
    DEFAULT = "default"
    AUTO_EDIT = "auto-edit"
    YOLO = "yolo"
    PLAN = "plan"


class TransportState(str, Enum):
    """Persistent process states. See lifecycle.py for transition rules."""
    UNSPAWNED = "unspawned"
    ALIVE = "alive"
    DEAD = "dead"


class StreamErrorKind(str, Enum):
    """Terminal error kinds reported for a dispatched round."""
    READ_ERROR = "read_error"
    EMPTY_OUTPUT = "empty_output"
    COMMAND_FAILED = "command_failed"
    WAIT_ERROR = "wait_error"


@dataclass(frozen=True)
class Round:
    """One input/response exchange. Immutable once dispatched."""
    round_id: int
    input: str
    continuity: bool = False


@dataclass
class StreamSummary:
    """Per-round decode flags, consumed once after the process exits."""
    emitted_any_chunk: bool = False
    emitted_partial_chunk: bool = False
    emitted_full_message: bool = False


@dataclass
class SendAck:
    ok: bool
    round_id: int

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "roundId": self.round_id}


@dataclass
class RetryAck:
    ok: bool
    resent: bool
    round_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "resent": self.resent,
            "roundId": self.round_id,
        }


@dataclass
class SessionStatus:
    running: bool

    def to_dict(self) -> dict[str, Any]:
        return {"running": self.running}
