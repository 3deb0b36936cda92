"""Async event bus bridging host callbacks to the plugin runtime.

The host (or its bridge) fires events via callback. The EventBus queues
them so the runtime consumes exactly one event at a time, in delivery
order.

The queue is unbounded: the runtime is the only consumer and also a
producer (every rename it executes makes the host publish a snapshot),
so a blocking put from inside the consumer could never be drained.
A backlog past ``high_water`` is logged instead.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from tabstatus.adapters.events import HostEvent, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging host callbacks to the runtime's consumer loop."""

    def __init__(self, high_water: int = 5000) -> None:
        self._queue: asyncio.Queue[HostEvent] = asyncio.Queue()
        self._high_water = high_water
        self._over_high_water = False
        self._closed = False

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback handed to the host bridge."""
        if self._closed:
            return
        try:
            event = dict_to_event(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("EventBus: malformed host event %r: %s", data, e)
            return
        await self.emit(event)

    def make_callback(self):
        """Return the async callback for the host bridge."""
        return self._callback

    async def emit(self, event: HostEvent) -> None:
        """Queue an event (host events and runtime timer fires)."""
        if self._closed:
            return
        self._queue.put_nowait(event)
        size = self._queue.qsize()
        if size >= self._high_water and not self._over_high_water:
            self._over_high_water = True
            logger.warning(
                "EventBus: %d events pending (high water %d), consumer falling behind",
                size, self._high_water,
            )
        elif size < self._high_water // 2:
            self._over_high_water = False

    def pending(self) -> int:
        return self._queue.qsize()

    async def consume(self) -> AsyncIterator[HostEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
                yield event
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
