"""Plugin runtime: drives the dispatcher from the event bus.

Consumes one host event at a time, hands it to the Dispatcher and
executes the returned effects: renames and pipe responses go to the
host, timer requests become ``loop.call_later`` callbacks that feed a
TimerFired event back into the bus.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from tabstatus.adapters.event_bus import EventBus
from tabstatus.adapters.events import (
    HostEvent,
    PaneUpdate,
    PipeMessage,
    TabUpdate,
    TimerFired,
)
from tabstatus.adapters.host import HostAdapter
from tabstatus.engine.dispatcher import Dispatcher
from tabstatus.engine.models import ArmTimer, Effect, PipeOutput, RenameTab

logger = logging.getLogger(__name__)


class PluginRuntime:
    """Single consumer of the EventBus; owns the timer handles."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        host: HostAdapter,
        bus: EventBus,
    ) -> None:
        self.dispatcher = dispatcher
        self.host = host
        self.bus = bus
        self.events_handled = 0
        self._busy = False
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._pending_fires: set[asyncio.Task] = set()

    def dispatch(self, event: HostEvent) -> list[Effect]:
        """Route one event to the dispatcher."""
        if isinstance(event, TabUpdate):
            return self.dispatcher.on_tab_update(event.tabs)
        if isinstance(event, PaneUpdate):
            return self.dispatcher.on_pane_update(event.panes)
        if isinstance(event, TimerFired):
            return self.dispatcher.on_timer(event.token)
        if isinstance(event, PipeMessage):
            return self.dispatcher.on_pipe(event.name, event.payload)
        logger.debug("PluginRuntime: ignoring event '%s'", event.event_type)
        return []

    async def handle(self, event: HostEvent) -> None:
        effects = self.dispatch(event)
        self.events_handled += 1
        await self.execute(effects)

    async def execute(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, RenameTab):
                logger.debug("PluginRuntime: rename_tab(%d, '%s')", effect.tab_index, effect.name)
                await self.host.rename_tab(effect.tab_index, effect.name)
            elif isinstance(effect, PipeOutput):
                await self.host.pipe_output(effect.pipe_name, effect.output)
            elif isinstance(effect, ArmTimer):
                self._schedule(effect)

    async def run(self) -> None:
        """Consume events until the bus is closed."""
        logger.info("PluginRuntime: started")
        async for event in self.bus.consume():
            self._busy = True
            try:
                await self.handle(event)
            except Exception:
                # Keep consuming after a failed event.
                logger.exception("PluginRuntime: failed handling %s", event.event_type)
            finally:
                self._busy = False
        logger.info("PluginRuntime: stopped after %d events", self.events_handled)

    @property
    def idle(self) -> bool:
        """No event queued and none being handled."""
        return not self._busy and self.bus.pending() == 0

    async def wait_until(
        self,
        predicate: Callable[[], bool],
        timeout: float,
        poll_interval: float = 0.01,
    ) -> bool:
        """Wait until *predicate* holds and the runtime is idle."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate() and self.idle:
                return True
            await asyncio.sleep(poll_interval)
        return predicate()

    async def settle(self, timeout: float = 5.0) -> bool:
        return await self.wait_until(lambda: True, timeout)

    async def wait_ready(self, timeout: float = 30.0) -> bool:
        return await self.wait_until(
            lambda: not self.dispatcher.is_probing and not self.dispatcher.table.is_empty,
            timeout,
        )

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self.bus.close()

    def _schedule(self, request: ArmTimer) -> None:
        loop = asyncio.get_running_loop()
        self._timers[request.token] = loop.call_later(
            request.seconds, self._fire, request.token, request.seconds
        )

    def _fire(self, token: int, elapsed: float) -> None:
        self._timers.pop(token, None)
        task = asyncio.ensure_future(self.bus.emit(TimerFired(token=token, elapsed=elapsed)))
        self._pending_fires.add(task)
        task.add_done_callback(self._pending_fires.discard)
