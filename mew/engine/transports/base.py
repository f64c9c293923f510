"""Abstract base for transports.

A transport owns the assistant process(es) and turns their output into
events. Two strategies implement the same interface:

- PipeTransport: a fresh process per round, stream-json on stdout
- TerminalTransport: one long-lived process in a pseudo-terminal

The session manager only ever talks to this interface. The single
behavioural difference it observes is effective_continuity(): a
persistent process can only continue a conversation it is still holding.
"""
from __future__ import annotations

import abc
import logging
import shutil

from ..config import CredentialConfig, EventCallback, SessionConfig, fire_event
from ..models import Round, StreamErrorKind

logger = logging.getLogger(__name__)


class Transport(abc.ABC):
    """Abstract transport interface."""

    def __init__(self, event_callback: EventCallback | None = None) -> None:
        self._event_callback = event_callback

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short transport name ('pipe' or 'terminal')."""

    @abc.abstractmethod
    async def start_round(
        self,
        round_: Round,
        credentials: CredentialConfig | None,
        session: SessionConfig | None,
    ) -> None:
        """Dispatch *round_* to the assistant.

        Returns once the input has been handed over. Output is delivered
        later through the event callback, tagged with round_.round_id.

        Raises a TransportError subclass (SpawnError, CaptureError,
        WriteError) when the round could not be dispatched.
        """

    @abc.abstractmethod
    def is_running(self) -> bool:
        """Whether any round is currently in flight."""

    def effective_continuity(
        self,
        requested: bool,
        session: SessionConfig | None,
    ) -> bool:
        """Continuity this transport can actually honour for the next round.

        Default: whatever the policy requested.
        """
        return requested

    def set_event_callback(self, callback: EventCallback | None) -> None:
        self._event_callback = callback

    def is_available(self) -> bool:
        """Whether the assistant binary can be found on PATH."""
        return shutil.which(self.command) is not None

    @property
    @abc.abstractmethod
    def command(self) -> str:
        """Assistant binary this transport spawns."""

    async def shutdown(self) -> None:
        """Tear down processes and background tasks.

        Default no-op. Override in transports that own processes.
        """
        return None

    # ── event helpers ───────────────────────────────────────────────

    async def emit_chunk(self, round_id: int, chunk: str) -> None:
        if not chunk:
            return
        await fire_event(self._event_callback, {
            "event": "stream_chunk",
            "round_id": round_id,
            "chunk": chunk,
        })

    async def emit_error(
        self,
        round_id: int,
        kind: StreamErrorKind,
        message: str,
    ) -> None:
        await fire_event(self._event_callback, {
            "event": "stream_error",
            "round_id": round_id,
            "kind": kind.value,
            "message": message,
        })
