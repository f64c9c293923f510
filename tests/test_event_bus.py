"""Tests for typed bridge events and the EventBus."""
from __future__ import annotations

import asyncio

import pytest

from mew.adapters.event_bus import EventBus
from mew.adapters.events import (
    BridgeEvent,
    FirstSendFailed,
    SessionInterrupted,
    StreamChunk,
    StreamError,
    dict_to_event,
    event_to_dict,
)


def test_dict_to_event_builds_typed_events() -> None:
    chunk = dict_to_event({"event": "stream_chunk", "round_id": 2, "chunk": "hi"})
    assert chunk == StreamChunk(round_id=2, chunk="hi")

    error = dict_to_event({
        "event": "stream_error", "round_id": 3, "kind": "empty_output",
        "message": "qwen completed without output", "extra": "ignored",
    })
    assert isinstance(error, StreamError)
    assert error.kind == "empty_output"

    assert isinstance(dict_to_event({"event": "session_interrupted"}), SessionInterrupted)


def test_unknown_event_falls_back_to_base() -> None:
    event = dict_to_event({"event": "mystery", "payload": 1})
    assert type(event) is BridgeEvent
    assert event.event_type == "mystery"


def test_event_to_dict_camel_case() -> None:
    event = StreamChunk(round_id=4, chunk="x")
    assert event_to_dict(event) == {"event": "stream_chunk", "round_id": 4, "chunk": "x"}
    assert event_to_dict(event, camel_case=True) == {
        "event": "stream_chunk", "roundId": 4, "chunk": "x",
    }


@pytest.mark.asyncio
async def test_callback_queues_events_in_order() -> None:
    bus = EventBus()
    callback = bus.make_callback()

    await callback({"event": "stream_chunk", "round_id": 1, "chunk": "a"})
    await callback({"event": "stream_chunk", "round_id": 1, "chunk": "b"})
    await callback({"event": "first_send_failed", "title": "t", "message": "m"})

    events = bus.drain()
    assert [getattr(e, "chunk", None) for e in events[:2]] == ["a", "b"]
    assert events[2] == FirstSendFailed(title="t", message="m")
    assert bus.drain() == []


@pytest.mark.asyncio
async def test_consume_stops_after_close() -> None:
    bus = EventBus()
    await bus.emit(StreamChunk(round_id=1, chunk="hi"))
    received: list[BridgeEvent] = []

    async def consumer() -> None:
        async for event in bus.consume():
            received.append(event)

    task = asyncio.create_task(consumer())
    await asyncio.sleep(0.01)
    bus.close()
    await asyncio.wait_for(task, timeout=2.0)

    assert received == [StreamChunk(round_id=1, chunk="hi")]


@pytest.mark.asyncio
async def test_emit_after_close_is_ignored() -> None:
    bus = EventBus()
    bus.close()
    await bus.emit(StreamChunk(round_id=1, chunk="late"))
    assert bus.drain() == []


@pytest.mark.asyncio
async def test_full_queue_drops_after_timeout(caplog) -> None:
    bus = EventBus(maxsize=1, put_timeout=0.01)
    await bus.emit(StreamChunk(round_id=1, chunk="a"))
    await bus.emit(StreamChunk(round_id=1, chunk="b"))
    assert "EventBus queue blocked" in caplog.text
    assert bus.drain() == [StreamChunk(round_id=1, chunk="a")]
