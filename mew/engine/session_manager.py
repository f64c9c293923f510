"""Session manager: the request/response surface used by the UI.

Owns round allocation, the continuity decision and retry bookkeeping,
and dispatches every round to a single Transport. All state lives in one
_ManagerState guarded by one asyncio.Lock. The lock is only held while
state is read or committed, never while a transport spawns or writes,
so concurrent rounds are not serialized behind each other.

Streaming output never flows through here: transports push chunk and
error events straight to the event callback.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .config import (
    ConfigSnapshot,
    CredentialConfig,
    EngineConfig,
    EventCallback,
    SessionConfig,
    fire_event,
    sanitize_snapshot,
)
from .decoder import DecoderPolicy
from .errors import TransportError
from .models import Round, RetryAck, SendAck, SessionStatus
from .rounds import RoundCounter, should_continue
from .transports.base import Transport
from .transports.registry import build_transport

logger = logging.getLogger(__name__)

FIRST_SEND_FAILED_TITLE = "{command} unavailable"
FIRST_SEND_FAILED_MESSAGE = (
    "No usable {command} CLI was found, or it is not logged in. "
    "Run {command} in a terminal, finish logging in, then retry."
)


@dataclass(frozen=True)
class FailedRound:
    """Input and sanitized config of the last round that failed to dispatch."""
    input: str
    snapshot: ConfigSnapshot


@dataclass
class _ManagerState:
    first_attempt_done: bool = False
    last_failed_round: FailedRound | None = None
    session_config: SessionConfig | None = None
    # Round that committed session_config; 0 before any fresh round.
    session_round: int = 0
    # round_id -> (session_config, session_round) to restore if it fails.
    pending_sessions: dict[int, tuple[SessionConfig | None, int]] = field(
        default_factory=dict
    )
    rounds: RoundCounter = field(default_factory=RoundCounter)


class SessionManager:
    """Orchestrates rounds over one transport."""

    def __init__(
        self,
        transport: Transport,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._transport = transport
        self._event_callback = event_callback
        if event_callback is not None:
            transport.set_event_callback(event_callback)
        self._state = _ManagerState()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        event_callback: EventCallback | None = None,
        decoder_policy: DecoderPolicy | None = None,
    ) -> SessionManager:
        transport = build_transport(config, event_callback, decoder_policy)
        return cls(transport, event_callback)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def last_round_id(self) -> int:
        return self._state.rounds.current

    @property
    def has_failed_round(self) -> bool:
        return self._state.last_failed_round is not None

    @property
    def session_config(self) -> SessionConfig | None:
        return self._state.session_config

    # ── state transitions (call with self._lock held) ──────────────

    def _allocate_round(
        self,
        text: str,
        session: SessionConfig | None,
    ) -> Round:
        round_id = self._state.rounds.next_round()
        requested = should_continue(round_id, session, self._state.session_config)
        if round_id > 1 and not requested:
            logger.info(
                "Session config changed; starting fresh session without "
                "continuity, round_id=%d",
                round_id,
            )
        continuity = self._transport.effective_continuity(requested, session)
        if requested and not continuity:
            logger.warning(
                "Round %d cannot continue the previous conversation: the %s "
                "transport lost its session, earlier context is gone",
                round_id, self._transport.name,
            )
        if not continuity:
            # Committed in round order; rolled back if dispatch fails.
            state = self._state
            state.pending_sessions[round_id] = (state.session_config, state.session_round)
            state.session_config = session
            state.session_round = round_id
        return Round(round_id=round_id, input=text, continuity=continuity)

    def _record_success(self, round_: Round) -> None:
        self._state.last_failed_round = None
        self._state.pending_sessions.pop(round_.round_id, None)

    def _record_failure(
        self,
        round_: Round,
        text: str,
        snapshot: ConfigSnapshot,
    ) -> None:
        state = self._state
        state.last_failed_round = FailedRound(input=text, snapshot=snapshot)
        previous = state.pending_sessions.pop(round_.round_id, None)
        if previous is None:
            return
        if state.session_round == round_.round_id:
            state.session_config, state.session_round = previous
            return
        # A newer fresh round committed on top of this one.
        for rid, (_, owner) in state.pending_sessions.items():
            if owner == round_.round_id:
                state.pending_sessions[rid] = previous

    # ── public API ──────────────────────────────────────────────────

    async def send(
        self,
        text: str,
        credentials: CredentialConfig | dict | None = None,
        session: SessionConfig | dict | None = None,
    ) -> SendAck:
        """Dispatch a new round.

        Returns as soon as the transport accepted the input. Raises the
        TransportError when dispatch failed; the very first failure of
        this manager also fires first_send_failed.
        """
        async with self._lock:
            is_first_attempt = not self._state.first_attempt_done
            self._state.first_attempt_done = True
            snapshot = sanitize_snapshot(credentials, session)
            round_ = self._allocate_round(text, snapshot.session)

        try:
            await self._transport.start_round(
                round_, snapshot.credentials, snapshot.session,
            )
        except TransportError as exc:
            async with self._lock:
                self._record_failure(round_, text, snapshot)
            logger.warning(
                "send failed for round_id=%d on %s transport: %s",
                round_.round_id, self._transport.name, exc,
            )
            if is_first_attempt:
                await self._notify_first_send_failed()
            raise

        async with self._lock:
            self._record_success(round_)
        logger.info(
            "send accepted, round_id=%d continue=%s",
            round_.round_id, round_.continuity,
        )
        return SendAck(ok=True, round_id=round_.round_id)

    async def retry_last(self) -> RetryAck:
        """Replay the last failed round under a fresh round id. Never raises."""
        async with self._lock:
            failed = self._state.last_failed_round
            if failed is None:
                return RetryAck(ok=True, resent=False, round_id=None)
            round_ = self._allocate_round(failed.input, failed.snapshot.session)

        try:
            await self._transport.start_round(
                round_, failed.snapshot.credentials, failed.snapshot.session,
            )
        except TransportError as exc:
            async with self._lock:
                self._record_failure(round_, failed.input, failed.snapshot)
            logger.warning(
                "retry failed for round_id=%d: %s", round_.round_id, exc,
            )
            return RetryAck(ok=False, resent=False, round_id=None)

        async with self._lock:
            self._record_success(round_)
        logger.info("retry accepted, round_id=%d", round_.round_id)
        return RetryAck(ok=True, resent=True, round_id=round_.round_id)

    def status(self) -> SessionStatus:
        return SessionStatus(running=self._transport.is_running())

    async def shutdown(self) -> None:
        await self._transport.shutdown()

    async def _notify_first_send_failed(self) -> None:
        command = self._transport.command
        await fire_event(self._event_callback, {
            "event": "first_send_failed",
            "title": FIRST_SEND_FAILED_TITLE.format(command=command),
            "message": FIRST_SEND_FAILED_MESSAGE.format(command=command),
        })
