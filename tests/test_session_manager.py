"""Tests for SessionManager round allocation, continuity and retry."""
from __future__ import annotations

import asyncio
import logging

import pytest

from mew.engine.config import CredentialConfig, SessionConfig
from mew.engine.errors import SpawnError
from mew.engine.models import RetryAck, Round
from mew.engine.session_manager import SessionManager
from mew.engine.transports.base import Transport


class FakeTransport(Transport):
    """Records dispatched rounds; fails the next *failures* dispatches."""

    def __init__(self, failures: int = 0) -> None:
        super().__init__()
        self.failures = failures
        self.rounds: list[tuple[Round, CredentialConfig | None, SessionConfig | None]] = []
        self.can_continue = True
        self.delays: dict[str, float] = {}
        self.fail_inputs: set[str] = set()

    @property
    def name(self) -> str:
        return "fake"

    @property
    def command(self) -> str:
        return "qwen"

    def is_running(self) -> bool:
        return False

    def effective_continuity(self, requested, session) -> bool:
        return requested and self.can_continue

    async def start_round(self, round_, credentials, session) -> None:
        await asyncio.sleep(self.delays.get(round_.input, 0))
        if round_.input in self.fail_inputs:
            raise SpawnError(self.name, self.command, "No such file or directory")
        if self.failures:
            self.failures -= 1
            raise SpawnError(self.name, self.command, "No such file or directory")
        self.rounds.append((round_, credentials, session))


def _collector():
    events: list[dict] = []

    async def callback(event: dict) -> None:
        events.append(event)

    return events, callback


@pytest.mark.asyncio
async def test_round_ids_increase_and_continuity_follows_session() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)
    session = {"workingDirectory": "/srv/a", "approvalMode": "plan"}

    first = await manager.send("one", session=session)
    second = await manager.send("two", session=session)
    third = await manager.send("three", session={"workingDirectory": "/srv/b"})
    fourth = await manager.send("four", session={"workingDirectory": "/srv/b"})

    assert [a.round_id for a in (first, second, third, fourth)] == [1, 2, 3, 4]
    assert [r.continuity for r, _, _ in transport.rounds] == [False, True, False, True]
    assert transport.rounds[2][2] == SessionConfig(working_directory="/srv/b")
    assert manager.session_config == SessionConfig(working_directory="/srv/b")


@pytest.mark.asyncio
async def test_credentials_do_not_affect_continuity() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)

    await manager.send("one", credentials={"openai_model": "a"})
    await manager.send("two", credentials={"openai_model": "b"})

    assert transport.rounds[1][0].continuity is True
    assert transport.rounds[1][1] == CredentialConfig(openai_model="b")


@pytest.mark.asyncio
async def test_transport_can_veto_continuity() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)
    await manager.send("one")
    transport.can_continue = False
    await manager.send("two")
    assert transport.rounds[1][0].continuity is False


@pytest.mark.asyncio
async def test_retry_without_failure_is_a_no_op() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)

    ack = await manager.retry_last()

    assert ack == RetryAck(ok=True, resent=False, round_id=None)
    assert ack.to_dict() == {"ok": True, "resent": False, "roundId": None}
    assert transport.rounds == []
    assert manager.last_round_id == 0


@pytest.mark.asyncio
async def test_first_send_failed_fires_only_once() -> None:
    events, callback = _collector()
    transport = FakeTransport(failures=2)
    manager = SessionManager(transport, callback)

    with pytest.raises(SpawnError):
        await manager.send("hello")
    with pytest.raises(SpawnError):
        await manager.send("hello again")

    notices = [e for e in events if e["event"] == "first_send_failed"]
    assert notices == [{
        "event": "first_send_failed",
        "title": "qwen unavailable",
        "message": (
            "No usable qwen CLI was found, or it is not logged in. "
            "Run qwen in a terminal, finish logging in, then retry."
        ),
    }]


@pytest.mark.asyncio
async def test_failure_after_success_does_not_notify() -> None:
    events, callback = _collector()
    transport = FakeTransport()
    manager = SessionManager(transport, callback)

    await manager.send("ok")
    transport.failures = 1
    with pytest.raises(SpawnError):
        await manager.send("broken")

    assert events == []
    assert manager.has_failed_round is True


@pytest.mark.asyncio
async def test_retry_replays_last_failed_round_with_fresh_id() -> None:
    transport = FakeTransport(failures=2)
    manager = SessionManager(transport)
    session = {"working_directory": "/srv/a"}

    with pytest.raises(SpawnError):
        await manager.send("first", session=session)
    with pytest.raises(SpawnError):
        await manager.send("second", credentials={"openai_api_key": "k"}, session=session)

    ack = await manager.retry_last()

    assert ack == RetryAck(ok=True, resent=True, round_id=3)
    round_, credentials, replayed_session = transport.rounds[0]
    assert round_.input == "second"
    assert credentials == CredentialConfig(openai_api_key="k")
    assert replayed_session == SessionConfig(working_directory="/srv/a")
    assert manager.has_failed_round is False

    again = await manager.retry_last()
    assert again.resent is False


@pytest.mark.asyncio
async def test_failed_retry_keeps_round_for_later() -> None:
    transport = FakeTransport(failures=2)
    manager = SessionManager(transport)

    with pytest.raises(SpawnError):
        await manager.send("hello")

    failed = await manager.retry_last()
    assert failed == RetryAck(ok=False, resent=False, round_id=None)
    assert manager.has_failed_round is True

    ok = await manager.retry_last()
    assert ok.resent is True
    assert ok.round_id == 3


@pytest.mark.asyncio
async def test_successful_send_clears_failed_round() -> None:
    transport = FakeTransport(failures=1)
    manager = SessionManager(transport)

    with pytest.raises(SpawnError):
        await manager.send("lost")
    await manager.send("fine")

    ack = await manager.retry_last()
    assert ack.resent is False
    assert [r.input for r, _, _ in transport.rounds] == ["fine"]


@pytest.mark.asyncio
async def test_concurrent_sends_get_unique_ids() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)

    acks = await asyncio.gather(*(manager.send(f"msg {i}") for i in range(10)))

    assert sorted(a.round_id for a in acks) == list(range(1, 11))


@pytest.mark.asyncio
async def test_status_and_ack_serialization() -> None:
    manager = SessionManager(FakeTransport())
    ack = await manager.send("hi")
    assert ack.to_dict() == {"ok": True, "roundId": 1}
    assert manager.status().to_dict() == {"running": False}


@pytest.mark.asyncio
async def test_session_change_is_logged(caplog) -> None:
    manager = SessionManager(FakeTransport())

    with caplog.at_level(logging.INFO, logger="mew.engine.session_manager"):
        await manager.send("one", session={"working_directory": "/srv/a"})
        await manager.send("two", session={"working_directory": "/srv/b"})

    assert (
        "Session config changed; starting fresh session without continuity, "
        "round_id=2"
    ) in caplog.text
    assert caplog.text.count("starting fresh session") == 1


@pytest.mark.asyncio
async def test_slow_older_round_does_not_overwrite_newer_session() -> None:
    transport = FakeTransport()
    transport.delays["one"] = 0.05
    manager = SessionManager(transport)

    await asyncio.gather(
        manager.send("one", session={"working_directory": "/x"}),
        manager.send("two", session={"working_directory": "/y"}),
    )
    third = await manager.send("three", session={"working_directory": "/y"})

    continuity = {r.round_id: r.continuity for r, _, _ in transport.rounds}
    assert continuity[third.round_id] is True
    assert manager.session_config == SessionConfig(working_directory="/y")


@pytest.mark.asyncio
async def test_failed_fresh_round_restores_previous_session() -> None:
    transport = FakeTransport()
    manager = SessionManager(transport)

    await manager.send("one", session={"working_directory": "/x"})
    transport.failures = 1
    with pytest.raises(SpawnError):
        await manager.send("two", session={"working_directory": "/y"})
    await manager.send("three", session={"working_directory": "/x"})

    assert manager.session_config == SessionConfig(working_directory="/x")
    assert transport.rounds[-1][0].continuity is True


@pytest.mark.asyncio
async def test_older_failure_does_not_roll_back_newer_session() -> None:
    transport = FakeTransport()
    transport.delays["one"] = 0.05
    transport.fail_inputs.add("one")
    manager = SessionManager(transport)

    async def send_one() -> None:
        with pytest.raises(SpawnError):
            await manager.send("one", session={"working_directory": "/x"})

    await asyncio.gather(
        send_one(),
        manager.send("two", session={"working_directory": "/y"}),
    )

    assert manager.session_config == SessionConfig(working_directory="/y")
