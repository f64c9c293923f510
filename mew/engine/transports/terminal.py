"""Persistent terminal transport.

Keeps one interactive assistant process alive inside a pseudo-terminal
(pexpect) and reuses it across rounds, so conversational context lives
in the process itself. Continuity is therefore physical: if the process
dies, the next round runs in a fresh process with no memory of earlier
rounds. That is a known limitation of this transport and is logged and
reported as a session_interrupted event rather than hidden.

Each physical process gets exactly one background reader task. Output
is emitted verbatim and tagged with the round currently marked on that
process; output that arrives before any round was sent is discarded.
"""
from __future__ import annotations

import asyncio
import logging

import pexpect

from ..config import CredentialConfig, EventCallback, SessionConfig, fire_event
from ..errors import SpawnError, WriteError
from ..lifecycle import validate_transition
from ..models import Round, TransportState
from .base import Transport
from .invocation import build_interactive_invocation

logger = logging.getLogger(__name__)

SESSION_INTERRUPTED_MESSAGE = (
    "The assistant session was interrupted. "
    "Your next message starts a new conversation without earlier context."
)

# Round marker value before any input was sent to a process.
NO_ROUND = 0


class TerminalProcess:
    """One physical pty child plus the state its reader shares."""

    def __init__(
        self,
        child: pexpect.spawn,
        session: SessionConfig | None,
        credentials: CredentialConfig | None = None,
    ) -> None:
        self.child = child
        self.session = session
        self.credentials = credentials
        self.state = TransportState.UNSPAWNED
        self.current_round = NO_ROUND
        self.closing = False
        self.reader: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return getattr(self.child, "pid", None)

    def transition(self, target: TransportState) -> None:
        validate_transition(self.state, target)
        self.state = target

    def is_alive(self) -> bool:
        """Non-blocking liveness check."""
        if self.state is not TransportState.ALIVE:
            return False
        try:
            return bool(self.child.isalive())
        except (pexpect.ExceptionPexpect, OSError):
            return False


class TerminalTransport(Transport):
    """Transport reusing one long-lived assistant process in a pty."""

    def __init__(
        self,
        command: str = "qwen",
        event_callback: EventCallback | None = None,
        *,
        read_timeout: float = 0.2,
        dimensions: tuple[int, int] = (40, 120),
    ) -> None:
        super().__init__(event_callback)
        self._command = command
        self._read_timeout = read_timeout
        self._dimensions = dimensions
        self._proc: TerminalProcess | None = None
        self._write_lock = asyncio.Lock()
        # Serializes the liveness check, teardown and spawn so only one child exists.
        self._spawn_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "terminal"

    @property
    def command(self) -> str:
        return self._command

    @property
    def process(self) -> TerminalProcess | None:
        return self._proc

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.is_alive()

    def effective_continuity(
        self,
        requested: bool,
        session: SessionConfig | None,
    ) -> bool:
        # Only a process that is still alive holds the prior conversation.
        return requested and self.is_running()

    # ── lifecycle ───────────────────────────────────────────────────

    async def ensure_alive(
        self,
        credentials: CredentialConfig | None = None,
        session: SessionConfig | None = None,
        *,
        restart: bool = False,
    ) -> bool:
        """Make sure a live process exists. Returns True if one was spawned.

        Idempotent: a process that passes the liveness check is kept
        unless *restart* is set or it was spawned with a different
        session config. Concurrent callers share one spawn.
        """
        async with self._spawn_lock:
            proc = self._proc
            if proc is not None and proc.session != session:
                restart = True
            if proc is not None and not restart and proc.is_alive():
                if proc.credentials != credentials:
                    logger.warning(
                        "Credential overrides changed but terminal session "
                        "pid=%s keeps the environment it was spawned with",
                        proc.pid,
                    )
                return False

            if proc is not None:
                if restart:
                    logger.info(
                        "Restarting terminal session pid=%s for new session config",
                        proc.pid,
                    )
                else:
                    await self._mark_dead(proc, "liveness check failed")
                await self._teardown(proc)
                self._proc = None

            self._proc = await self._spawn(credentials, session)
            return True

    async def _spawn(
        self,
        credentials: CredentialConfig | None,
        session: SessionConfig | None,
    ) -> TerminalProcess:
        invocation = build_interactive_invocation(
            self._command, credentials, session,
        )
        logger.info(
            "Spawning terminal session: %s cwd=%s",
            " ".join(invocation.argv), invocation.cwd or ".",
        )
        try:
            child = await asyncio.to_thread(
                pexpect.spawn,
                invocation.argv[0],
                invocation.argv[1:],
                env=invocation.env,
                cwd=invocation.cwd,
                encoding="utf-8",
                codec_errors="replace",
                dimensions=self._dimensions,
                echo=False,
                timeout=None,
            )
        except (pexpect.ExceptionPexpect, OSError) as exc:
            raise SpawnError(self.name, self._command, str(exc)) from exc

        proc = TerminalProcess(child, session, credentials)
        proc.transition(TransportState.ALIVE)
        proc.reader = asyncio.create_task(
            self._read_loop(proc),
            name=f"mew-terminal-reader-{proc.pid}",
        )
        logger.info("Terminal session spawned pid=%s", proc.pid)
        return proc

    def set_current_round(self, round_id: int) -> None:
        if self._proc is not None:
            self._proc.current_round = round_id

    async def write_line(self, text: str) -> None:
        """Send one line of input. Fails immediately on a dead process."""
        proc = self._proc
        if proc is None or proc.state is not TransportState.ALIVE:
            raise WriteError(self.name, "assistant process is not running")
        async with self._write_lock:
            try:
                await asyncio.to_thread(proc.child.sendline, text)
            except (pexpect.ExceptionPexpect, OSError) as exc:
                raise WriteError(self.name, str(exc)) from exc

    async def start_round(
        self,
        round_: Round,
        credentials: CredentialConfig | None,
        session: SessionConfig | None,
    ) -> None:
        spawned = await self.ensure_alive(credentials, session)
        if spawned and round_.round_id > 1:
            logger.warning(
                "Round %d runs in a new terminal session; earlier "
                "conversation context is not available",
                round_.round_id,
            )
        self.set_current_round(round_.round_id)
        await self.write_line(round_.input)
        logger.info("Round %d written to terminal session", round_.round_id)

    # ── reader ──────────────────────────────────────────────────────

    def _read_chunk(self, proc: TerminalProcess) -> str:
        """Blocking read of whatever the pty has; '' when idle."""
        try:
            return proc.child.read_nonblocking(
                size=4096, timeout=self._read_timeout,
            )
        except pexpect.TIMEOUT:
            return ""

    async def _read_loop(self, proc: TerminalProcess) -> None:
        reason = "end of stream"
        while not proc.closing:
            try:
                text = await asyncio.to_thread(self._read_chunk, proc)
            except pexpect.EOF:
                break
            except (pexpect.ExceptionPexpect, OSError) as exc:
                reason = f"read error: {exc}"
                break
            if not text or proc.closing:
                continue
            round_id = proc.current_round
            if round_id == NO_ROUND:
                logger.debug(
                    "Discarding %d chars of terminal output before first round",
                    len(text),
                )
                continue
            await self.emit_chunk(round_id, text)
        await self._mark_dead(proc, reason)

    async def _mark_dead(self, proc: TerminalProcess, reason: str) -> None:
        if proc.state is not TransportState.ALIVE:
            return
        proc.transition(TransportState.DEAD)
        if proc.closing:
            logger.info("Terminal session pid=%s closed", proc.pid)
            return
        logger.warning(
            "Terminal session pid=%s died (%s) after round %d",
            proc.pid, reason, proc.current_round,
        )
        if proc.current_round == NO_ROUND:
            return
        await fire_event(self._event_callback, {
            "event": "session_interrupted",
            "message": SESSION_INTERRUPTED_MESSAGE,
        })

    async def _teardown(self, proc: TerminalProcess) -> None:
        proc.closing = True
        reader = proc.reader
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if proc.state is TransportState.ALIVE:
            proc.transition(TransportState.DEAD)
        await asyncio.to_thread(self._terminate, proc)

    @staticmethod
    def _terminate(proc: TerminalProcess) -> None:
        try:
            if proc.child.isalive():
                proc.child.terminate(force=True)
        except (pexpect.ExceptionPexpect, OSError):
            logger.debug("Terminate failed for pid=%s", proc.pid, exc_info=True)
        try:
            proc.child.close(force=True)
        except (pexpect.ExceptionPexpect, OSError):
            logger.debug("Close failed for pid=%s", proc.pid, exc_info=True)

    async def shutdown(self) -> None:
        """Terminate the persistent process without an interruption event."""
        async with self._spawn_lock:
            proc = self._proc
            self._proc = None
            if proc is not None:
                await self._teardown(proc)
