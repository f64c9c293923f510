"""One-shot pipe transport.

Spawns a fresh ``<command> -p <input> --output-format stream-json``
process per round. stdout is decoded line by line into chunks while
stderr is drained concurrently (a full stderr pipe would otherwise block
the child before stdout reaches EOF). Once stdout closes, the exit status
is awaited exactly once and the round is classified.
"""
from __future__ import annotations

import asyncio
import contextlib
import functools
import logging

from ..config import CredentialConfig, EventCallback, SessionConfig
from ..decoder import DecoderPolicy, StreamDecoder
from ..errors import CaptureError, SpawnError
from ..models import Round, StreamErrorKind, StreamSummary
from .base import Transport
from .invocation import build_headless_invocation

logger = logging.getLogger(__name__)


class ActiveJobCounter:
    """Count of pipe rounds currently running.

    Only answers liveness queries. A round is counted from the moment
    its process is spawned until its task finishes, whichever way it
    finishes, including cancellation before it ever ran.
    """

    def __init__(self) -> None:
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def acquire(self) -> None:
        self._count += 1

    def release(self) -> None:
        self._count -= 1


async def read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
    """Read a full line from *stream* with no size limit.

    Unlike ``StreamReader.readline()``, this will never raise
    ``LimitOverrunError``. A single stream-json record (e.g. a tool
    result holding a large file listing) can easily exceed the default
    64 KiB StreamReader limit.
    """
    chunks: list[bytes] = []
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
            chunks.append(chunk)
            return b"".join(chunks)
        except asyncio.LimitOverrunError as exc:
            # Buffer is full but no newline yet; keep accumulating.
            chunk = await stream.read(exc.consumed)
            chunks.append(chunk)
        except asyncio.IncompleteReadError as exc:
            # EOF before newline; return whatever is left.
            chunks.append(exc.partial)
            return b"".join(chunks)


def stderr_tail(stderr_text: str, max_lines: int) -> str:
    """Last *max_lines* non-empty stderr lines."""
    if max_lines <= 0:
        return ""
    lines = [line for line in stderr_text.strip().splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])


class PipeTransport(Transport):
    """Transport spawning one assistant process per round."""

    def __init__(
        self,
        command: str = "qwen",
        event_callback: EventCallback | None = None,
        *,
        decoder_policy: DecoderPolicy | None = None,
        stderr_tail_lines: int = 10,
        job_counter: ActiveJobCounter | None = None,
    ) -> None:
        super().__init__(event_callback)
        self._command = command
        self._decoder_policy = decoder_policy or DecoderPolicy()
        self._stderr_tail_lines = stderr_tail_lines
        self._jobs = job_counter or ActiveJobCounter()
        self._tasks: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return "pipe"

    @property
    def command(self) -> str:
        return self._command

    @property
    def active_jobs(self) -> int:
        return self._jobs.count

    def is_running(self) -> bool:
        return self._jobs.count > 0

    async def start_round(
        self,
        round_: Round,
        credentials: CredentialConfig | None,
        session: SessionConfig | None,
    ) -> None:
        invocation = build_headless_invocation(
            self._command,
            round_.input,
            round_.continuity,
            credentials,
            session,
        )
        logger.info(
            "Spawning headless process for round_id=%d continue=%s",
            round_.round_id, round_.continuity,
        )
        try:
            # Array-based exec, no shell
            proc = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=invocation.env,
                cwd=invocation.cwd,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(self.name, self._command, str(exc)) from exc

        if proc.stdout is None:
            await self._discard(proc)
            raise CaptureError(self.name, "stdout")
        if proc.stderr is None:
            await self._discard(proc)
            raise CaptureError(self.name, "stderr")

        logger.info(
            "Headless process spawned for round_id=%d pid=%s",
            round_.round_id, proc.pid,
        )
        self._jobs.acquire()
        task = asyncio.create_task(
            self._run_round(round_.round_id, proc),
            name=f"mew-pipe-round-{round_.round_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._round_done, proc))

    def _round_done(
        self,
        proc: asyncio.subprocess.Process,
        task: asyncio.Task,
    ) -> None:
        self._tasks.discard(task)
        self._jobs.release()
        # A task cancelled before its first step never reached its finally.
        if task.cancelled() and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()

    async def _run_round(
        self,
        round_id: int,
        proc: asyncio.subprocess.Process,
    ) -> None:
        stderr_task = asyncio.create_task(self._drain_stderr(proc.stderr))
        try:
            try:
                summary = await self._stream_stdout(round_id, proc.stdout)
            except Exception as exc:
                message = f"failed reading {self._command} stdout: {exc}"
                logger.warning(
                    "Stream read failed for round_id=%d: %s", round_id, exc,
                )
                await self.emit_error(
                    round_id, StreamErrorKind.READ_ERROR, message,
                )
                return

            try:
                returncode = await proc.wait()
            except Exception as exc:
                message = f"failed waiting for {self._command} process: {exc}"
                logger.warning(
                    "Wait failed for round_id=%d: %s", round_id, message,
                )
                await self.emit_error(
                    round_id, StreamErrorKind.WAIT_ERROR, message,
                )
                return

            stderr_text = await stderr_task
            await self._classify(round_id, returncode, summary, stderr_text)
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            if proc.returncode is None:
                await self._discard(proc)

    async def _stream_stdout(
        self,
        round_id: int,
        stdout: asyncio.StreamReader,
    ) -> StreamSummary:
        decoder = StreamDecoder(policy=self._decoder_policy)
        while True:
            line = await read_line_unbounded(stdout)
            if not line:
                break
            chunk = decoder.feed(line.decode("utf-8", errors="replace"))
            if chunk:
                await self.emit_chunk(round_id, chunk)
        return decoder.summary

    @staticmethod
    async def _drain_stderr(stderr: asyncio.StreamReader) -> str:
        data = await stderr.read()
        return data.decode("utf-8", errors="replace")

    async def _classify(
        self,
        round_id: int,
        returncode: int,
        summary: StreamSummary,
        stderr_text: str,
    ) -> None:
        tail = stderr_tail(stderr_text, self._stderr_tail_lines)

        if returncode == 0:
            if summary.emitted_any_chunk:
                logger.info("Headless round completed, round_id=%d", round_id)
                return
            if tail:
                message = f"{self._command} completed without stdout. stderr: {tail}"
            else:
                message = f"{self._command} completed without output"
            logger.warning(
                "No output for round_id=%d: %s", round_id, message,
            )
            await self.emit_error(round_id, StreamErrorKind.EMPTY_OUTPUT, message)
            return

        if returncode < 0:
            status = f"terminated by signal {-returncode}"
        else:
            status = str(returncode)
        message = f"{self._command} exited with non-zero status: {status}"
        if tail:
            message = f"{message}, stderr: {tail}"
        logger.warning("Headless round failed, round_id=%d: %s", round_id, message)
        await self.emit_error(round_id, StreamErrorKind.COMMAND_FAILED, message)

    @staticmethod
    async def _discard(proc: asyncio.subprocess.Process) -> None:
        """Kill and reap a process whose output is no longer wanted."""
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        try:
            await proc.wait()
        except Exception:
            logger.debug("Failed to reap pid=%s", proc.pid, exc_info=True)

    async def shutdown(self) -> None:
        """Cancel in-flight rounds; their processes are killed on the way out."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Pipe transport cancelled %d in-flight round(s)", len(tasks))
