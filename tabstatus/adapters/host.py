"""Host adapters.

``HostAdapter`` is the write side the runtime needs from a terminal
session manager: rename a tab by persistent index and answer a pipe.
The read side (tab/pane snapshots, pipe messages) is pushed into the
EventBus through its callback.

``SimulatedHost`` models a Zellij-style host in memory:

- a new tab gets the highest persistent index in use plus one
- renaming an index that does not exist is silently ignored
- every applied rename publishes a fresh tab snapshot
- snapshots are positional; indices are never exposed
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tabstatus.adapters.events import PaneUpdate, PipeMessage, TabUpdate, event_to_dict
from tabstatus.engine.models import PaneInfo, PaneManifest, TabInfo

logger = logging.getLogger(__name__)

HostCallback = Callable[[dict[str, Any]], Awaitable[None]]


class HostAdapter(ABC):
    """Write operations the runtime issues against the host."""

    @abstractmethod
    async def rename_tab(self, tab_index: int, name: str) -> None:
        """Fire-and-forget rename by persistent index."""

    @abstractmethod
    async def pipe_output(self, pipe_name: str, output: str) -> None:
        """Write a response to a pipe caller and unblock it."""


@dataclass
class SimulatedTab:
    index: int
    name: str
    pane_ids: list[int] = field(default_factory=list)
    plugin_pane_ids: list[int] = field(default_factory=list)


class SimulatedHost(HostAdapter):
    """In-memory host used by the CLI playground and the tests."""

    def __init__(self, callback: HostCallback | None = None) -> None:
        self._callback = callback
        self._tabs: list[SimulatedTab] = []
        self._next_pane_id = 0
        # Upcoming renames to swallow, simulating a host dropping commands
        self.drop_renames = 0
        self.renames: list[tuple[int, str]] = []
        self.outputs: list[tuple[str, str]] = []

    def attach(self, callback: HostCallback) -> None:
        self._callback = callback

    # ── layout ───────────────────────────────────────────────────────

    @property
    def tabs(self) -> list[SimulatedTab]:
        return list(self._tabs)

    def tab_at(self, position: int) -> SimulatedTab:
        return self._tabs[position]

    def open_tab(
        self,
        name: str | None = None,
        panes: int = 1,
        plugin_panes: int = 0,
    ) -> SimulatedTab:
        index = max((t.index for t in self._tabs), default=0) + 1
        tab = SimulatedTab(
            index=index,
            name=name if name is not None else f"Tab #{len(self._tabs) + 1}",
            pane_ids=[self._new_pane_id() for _ in range(panes)],
            plugin_pane_ids=[self._new_pane_id() for _ in range(plugin_panes)],
        )
        self._tabs.append(tab)
        logger.debug("SimulatedHost: opened tab index=%d '%s'", index, tab.name)
        return tab

    def close_tab(self, position: int) -> SimulatedTab:
        tab = self._tabs.pop(position)
        logger.debug("SimulatedHost: closed tab index=%d at position %d", tab.index, position)
        return tab

    def move_tab(self, source: int, target: int) -> None:
        tab = self._tabs.pop(source)
        self._tabs.insert(target, tab)

    def split_pane(self, position: int) -> int:
        pane_id = self._new_pane_id()
        self._tabs[position].pane_ids.append(pane_id)
        return pane_id

    def _new_pane_id(self) -> int:
        pane_id = self._next_pane_id
        self._next_pane_id += 1
        return pane_id

    # ── snapshots ────────────────────────────────────────────────────

    def snapshot(self) -> list[TabInfo]:
        return [TabInfo(position, tab.name) for position, tab in enumerate(self._tabs)]

    def manifest(self) -> PaneManifest:
        manifest: PaneManifest = {}
        for position, tab in enumerate(self._tabs):
            manifest[position] = [PaneInfo(pane_id) for pane_id in tab.pane_ids] + [
                PaneInfo(pane_id, is_plugin=True) for pane_id in tab.plugin_pane_ids
            ]
        return manifest

    def apply_rename(self, tab_index: int, name: str) -> bool:
        """Apply a rename synchronously. False when dropped or ignored."""
        self.renames.append((tab_index, name))
        if self.drop_renames > 0:
            self.drop_renames -= 1
            logger.debug("SimulatedHost: dropped rename(%d, '%s')", tab_index, name)
            return False
        for tab in self._tabs:
            if tab.index == tab_index:
                tab.name = name
                return True
        return False

    # ── HostAdapter ──────────────────────────────────────────────────

    async def rename_tab(self, tab_index: int, name: str) -> None:
        if self.apply_rename(tab_index, name):
            await self.publish_tabs()

    async def pipe_output(self, pipe_name: str, output: str) -> None:
        self.outputs.append((pipe_name, output))

    # ── event delivery ───────────────────────────────────────────────

    async def publish(self) -> None:
        await self.publish_tabs()
        await self.publish_panes()

    async def publish_tabs(self) -> None:
        await self._send(event_to_dict(TabUpdate(tabs=self.snapshot())))

    async def publish_panes(self) -> None:
        await self._send(event_to_dict(PaneUpdate(panes=self.manifest())))

    async def send_pipe(self, name: str, payload: str | None) -> None:
        await self._send(event_to_dict(PipeMessage(name=name, payload=payload)))

    async def _send(self, data: dict[str, Any]) -> None:
        if self._callback is None:
            logger.debug("SimulatedHost: no callback attached, dropping %s", data["event"])
            return
        await self._callback(data)
