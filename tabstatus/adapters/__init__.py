"""Adapters package - Bridge between the engine and a host.

This package contains the event bus, host event types, the simulated
host and the runtime that executes the dispatcher's effects.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "HostAdapter",
    "PluginRuntime",
    "SimulatedHost",
]

from tabstatus.adapters.event_bus import EventBus
from tabstatus.adapters.host import HostAdapter, SimulatedHost
from tabstatus.adapters.runtime import PluginRuntime
