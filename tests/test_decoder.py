"""Tests for stream-json decoding."""
from __future__ import annotations

import json

import pytest

from mew.engine.decoder import (
    DecoderPolicy,
    StreamDecoder,
    extract_message_text,
    extract_stream_chunk,
    value_at_pointer,
)
from mew.engine.models import StreamSummary


def _feed_all(decoder: StreamDecoder, records: list) -> list[str]:
    chunks = []
    for record in records:
        line = record if isinstance(record, str) else json.dumps(record)
        chunk = decoder.feed(line + "\n")
        if chunk is not None:
            chunks.append(chunk)
    return chunks


def test_partial_delta_makes_round_sticky() -> None:
    decoder = StreamDecoder()
    chunks = _feed_all(decoder, [
        {"event": {"delta": {"text": "hi"}}},
        {"type": "assistant", "message": {"content": "ignored"}},
        {"type": "result", "result": "ignored too"},
    ])
    assert chunks == ["hi"]
    assert decoder.summary.emitted_partial_chunk is True
    assert decoder.summary.emitted_any_chunk is True


def test_result_alone_yields_one_chunk() -> None:
    decoder = StreamDecoder()
    assert _feed_all(decoder, [{"type": "result", "result": "done"}]) == ["done"]


def test_result_after_full_message_is_suppressed() -> None:
    decoder = StreamDecoder()
    chunks = _feed_all(decoder, [
        {"type": "assistant", "message": {"content": [{"text": "Hel"}, "lo"]}},
        {"type": "result", "result": "Hello"},
    ])
    assert chunks == ["Hello"]


def test_non_json_line_passes_through_verbatim() -> None:
    decoder = StreamDecoder()
    assert decoder.feed("plain text\r\n") == "plain text\n"
    assert decoder.summary.emitted_any_chunk is True


def test_blank_lines_are_skipped() -> None:
    decoder = StreamDecoder()
    assert decoder.feed("\n") is None
    assert decoder.feed("\r\n") is None
    assert decoder.summary.emitted_any_chunk is False


def test_unrecognized_json_is_suppressed() -> None:
    decoder = StreamDecoder()
    assert _feed_all(decoder, [{"type": "system", "subtype": "init"}, [1, 2], 42]) == []
    assert decoder.summary.emitted_any_chunk is False


@pytest.mark.parametrize("event, expected", [
    ({"delta": {"text": "a"}, "text": "z"}, "a"),
    ({"content_block": {"text": "b"}}, "b"),
    ({"message": {"text": "c"}}, "c"),
    ({"text": "d"}, "d"),
    ({"delta": "e"}, "e"),
])
def test_partial_pointer_priority(event, expected) -> None:
    summary = StreamSummary()
    assert extract_stream_chunk({"event": event}, summary) == expected
    assert summary.emitted_partial_chunk is True


def test_legacy_flat_message_text() -> None:
    summary = StreamSummary()
    record = {"type": "assistant", "message": {"text": "legacy"}}
    assert extract_stream_chunk(record, summary) == "legacy"
    assert summary.emitted_full_message is True


def test_non_sticky_policy_keeps_full_messages() -> None:
    decoder = StreamDecoder(policy=DecoderPolicy(sticky_partial=False))
    chunks = _feed_all(decoder, [
        {"event": {"delta": {"text": "hi"}}},
        {"type": "assistant", "message": {"content": "full"}},
    ])
    assert chunks == ["hi", "full"]


def test_custom_pointer_list() -> None:
    policy = DecoderPolicy.from_dict({"partial_pointers": ["/chunk"]})
    summary = StreamSummary()
    assert extract_stream_chunk({"event": {"chunk": "x"}}, summary, policy) == "x"
    assert extract_stream_chunk({"event": {"text": "y"}}, summary, policy) is None


def test_value_at_pointer() -> None:
    doc = {"a": [{"b/c": 1}], "t~": 2}
    assert value_at_pointer(doc, "/a/0/b~1c") == 1
    assert value_at_pointer(doc, "/t~0") == 2
    assert value_at_pointer(doc, "/a/5") is None
    assert value_at_pointer(doc, "/missing/x") is None


def test_extract_message_text_shapes() -> None:
    assert extract_message_text("plain") == "plain"
    assert extract_message_text([{"text": "a"}, {"type": "image"}, "b"]) == "ab"
    assert extract_message_text([]) is None
    assert extract_message_text({"text": "no"}) is None
