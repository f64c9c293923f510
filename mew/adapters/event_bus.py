"""Async event bus bridging session-manager callbacks to UI consumers.

Transports fire events from their background tasks via callback.
The EventBus queues them for the UI's event consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from mew.adapters.events import BridgeEvent, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging engine callbacks to UI event consumers."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[BridgeEvent] = asyncio.Queue(
            maxsize=maxsize
        )
        self._put_timeout = put_timeout
        self._closed = False

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback to pass to SessionManager(event_callback=...)."""
        await self.emit(dict_to_event(data))

    def make_callback(self):
        """Return the async callback for SessionManager(event_callback=...)."""
        return self._callback

    async def emit(self, event: BridgeEvent) -> None:
        """Queue an event, applying backpressure instead of dropping."""
        if self._closed:
            return
        try:
            await asyncio.wait_for(
                self._queue.put(event), timeout=self._put_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout,
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[BridgeEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(
                    self._queue.get(), timeout=0.5
                )
                yield event
            except asyncio.TimeoutError:
                continue

    def drain(self) -> list[BridgeEvent]:
        """Return every queued event without waiting."""
        events: list[BridgeEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
