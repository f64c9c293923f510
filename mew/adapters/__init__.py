"""Adapters between the session bridge and UI consumers."""
from .event_bus import EventBus
from .events import (
    BridgeEvent,
    FirstSendFailed,
    SessionInterrupted,
    StreamChunk,
    StreamError,
    dict_to_event,
    event_to_dict,
)

__all__ = [
    "EventBus",
    "BridgeEvent",
    "FirstSendFailed",
    "SessionInterrupted",
    "StreamChunk",
    "StreamError",
    "dict_to_event",
    "event_to_dict",
]
