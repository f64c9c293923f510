"""Event types emitted by the session bridge.

Each event corresponds to an engine callback dict, parsed into
a typed dataclass for safe consumption by the UI.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class BridgeEvent:
    """Base event from the session bridge."""
    event_type: str = ""


@dataclass
class StreamChunk(BridgeEvent):
    event_type: str = "stream_chunk"
    round_id: int = 0
    chunk: str = ""


@dataclass
class StreamError(BridgeEvent):
    """At most one per round; kind is a models.StreamErrorKind value."""
    event_type: str = "stream_error"
    round_id: int = 0
    kind: str = ""
    message: str = ""


@dataclass
class SessionInterrupted(BridgeEvent):
    """The persistent assistant process died after serving a round."""
    event_type: str = "session_interrupted"
    message: str = ""


@dataclass
class FirstSendFailed(BridgeEvent):
    """Fired at most once per manager, on its first failed send."""
    event_type: str = "first_send_failed"
    title: str = ""
    message: str = ""


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[BridgeEvent]] = {
    "stream_chunk": StreamChunk,
    "stream_error": StreamError,
    "session_interrupted": SessionInterrupted,
    "first_send_failed": FirstSendFailed,
}

# camelCase wire names for JSON front-ends.
_CAMEL_FIELDS = {"round_id": "roundId"}


def event_to_dict(event: BridgeEvent, *, camel_case: bool = False) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            key = _CAMEL_FIELDS.get(f, f) if camel_case else f
            d[key] = val
    # Use "event" key instead of "event_type" for consistency with engine callbacks
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> BridgeEvent:
    """Convert an engine callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, BridgeEvent)
    # Filter dict keys to only those the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    # Map "event" key to "event_type" field
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
