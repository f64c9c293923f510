"""Stream decoding for the assistant's ``--output-format stream-json`` output.

The assistant prints one JSON record per line, but the shape of those
records is not a documented contract. Records are tried against a fixed
chain of shapes:

  1. partial deltas nested under ``event`` (streamed tokens)
  2. ``{"type": "assistant", "message": {...}}`` full messages
  3. ``{"type": "result", "result": "..."}`` terminal summaries

Once a partial delta has been seen the round is "sticky": full messages
and results repeat text that was already streamed, so they are
suppressed for the rest of the round. Lines that are not JSON at all
are passed through verbatim so nothing is silently dropped.

The pointer list and the sticky switch live in DecoderPolicy so they can
be overridden from config if the assistant changes its output shape.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .models import StreamSummary

logger = logging.getLogger(__name__)

DEFAULT_PARTIAL_POINTERS: tuple[str, ...] = (
    "/delta/text",
    "/content_block/text",
    "/message/text",
    "/text",
    "/delta",
)


@dataclass(frozen=True)
class DecoderPolicy:
    """Decode priority for partial-delta records."""
    partial_pointers: tuple[str, ...] = DEFAULT_PARTIAL_POINTERS
    sticky_partial: bool = True
    # Record types carrying a full message / a terminal result.
    assistant_type: str = "assistant"
    result_type: str = "result"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DecoderPolicy:
        if not data:
            return cls()
        pointers = data.get("partial_pointers")
        if pointers is not None:
            if isinstance(pointers, str) or not all(
                isinstance(p, str) and p.startswith("/") for p in pointers
            ):
                raise ValueError(
                    "decoder.partial_pointers must be a list of JSON "
                    f"pointers starting with '/': {pointers!r}"
                )
            pointers = tuple(pointers)
        return cls(
            partial_pointers=pointers or DEFAULT_PARTIAL_POINTERS,
            sticky_partial=bool(data.get("sticky_partial", True)),
            assistant_type=str(data.get("assistant_type", "assistant")),
            result_type=str(data.get("result_type", "result")),
        )


def value_at_pointer(value: Any, pointer: str) -> Any:
    """Resolve a JSON pointer (RFC 6901) against *value*, or return None."""
    if pointer == "":
        return value
    current = value
    for token in pointer.lstrip("/").split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict):
            if token not in current:
                return None
            current = current[token]
        elif isinstance(current, list):
            try:
                current = current[int(token)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current


def _str_at(value: Any, pointer: str) -> str | None:
    found = value_at_pointer(value, pointer)
    if isinstance(found, str) and found:
        return found
    return None


def extract_partial_text(event: Any, policy: DecoderPolicy) -> str | None:
    """First non-empty string found at the policy's partial pointers."""
    for pointer in policy.partial_pointers:
        text = _str_at(event, pointer)
        if text:
            return text
    return None


def extract_message_text(content: Any) -> str | None:
    """Text of an assistant message's content.

    Content is either a plain string or a list of fragments, each a
    ``{"text": ...}`` object or a bare string, concatenated in order.
    """
    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        merged: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                merged.append(item["text"])
            elif isinstance(item, str):
                merged.append(item)
        return "".join(merged) or None
    return None


def extract_stream_chunk(
    record: Any,
    summary: StreamSummary,
    policy: DecoderPolicy = DecoderPolicy(),
) -> str | None:
    """Decode one parsed JSON record into a chunk, updating *summary*."""
    if not isinstance(record, dict):
        return None

    event = record.get("event")
    if event is not None:
        partial = extract_partial_text(event, policy)
        if partial:
            summary.emitted_partial_chunk = True
            return partial

    if policy.sticky_partial and summary.emitted_partial_chunk:
        return None

    record_type = record.get("type")
    if record_type == policy.assistant_type:
        text = extract_message_text(value_at_pointer(record, "/message/content"))
        if not text:
            text = _str_at(record, "/message/text")
        if text:
            summary.emitted_full_message = True
            return text

    if not summary.emitted_full_message and record_type == policy.result_type:
        text = _str_at(record, "/result")
        if text:
            summary.emitted_full_message = True
            return text

    return None


def decode_line(
    line: str,
    summary: StreamSummary,
    policy: DecoderPolicy = DecoderPolicy(),
) -> str | None:
    """Decode one output line into a chunk (or None to suppress).

    Marks ``summary.emitted_any_chunk`` whenever a chunk is produced.
    """
    trimmed = line.rstrip("\r\n")
    if not trimmed:
        return None

    try:
        record = json.loads(trimmed)
    except (json.JSONDecodeError, ValueError):
        # Not JSON: pass through verbatim
        summary.emitted_any_chunk = True
        return f"{trimmed}\n"

    chunk = extract_stream_chunk(record, summary, policy)
    if chunk:
        summary.emitted_any_chunk = True
        return chunk
    return None


@dataclass
class StreamDecoder:
    """Decoder state for a single round."""
    policy: DecoderPolicy = field(default_factory=DecoderPolicy)
    summary: StreamSummary = field(default_factory=StreamSummary)

    def feed(self, line: str) -> str | None:
        return decode_line(line, self.summary, self.policy)
