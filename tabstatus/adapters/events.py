"""Event types delivered by the host.

Each event corresponds to a host callback dict, parsed into a typed
dataclass so the runtime can route it to the dispatcher.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tabstatus.engine.models import PaneInfo, PaneManifest, TabInfo


@dataclass
class HostEvent:
    """Base event from the host."""
    event_type: str = ""


@dataclass
class TabUpdate(HostEvent):
    event_type: str = "tab_update"
    tabs: list[TabInfo] = field(default_factory=list)


@dataclass
class PaneUpdate(HostEvent):
    event_type: str = "pane_update"
    panes: PaneManifest = field(default_factory=dict)


@dataclass
class TimerFired(HostEvent):
    event_type: str = "timer"
    token: int = 0
    elapsed: float = 0.0


@dataclass
class PipeMessage(HostEvent):
    event_type: str = "pipe"
    name: str = ""
    payload: str | None = None


_EVENT_MAP: dict[str, type[HostEvent]] = {
    "tab_update": TabUpdate,
    "pane_update": PaneUpdate,
    "timer": TimerFired,
    "pipe": PipeMessage,
}


def _parse_tabs(raw: list[dict[str, Any]]) -> list[TabInfo]:
    return [TabInfo(position=int(t["position"]), name=str(t.get("name", ""))) for t in raw]


def _parse_panes(raw: dict[Any, list[dict[str, Any]]]) -> PaneManifest:
    # JSON object keys are strings; positions are ints.
    return {
        int(position): [
            PaneInfo(pane_id=int(p["id"]), is_plugin=bool(p.get("is_plugin", False)))
            for p in panes
        ]
        for position, panes in raw.items()
    }


def event_to_dict(event: HostEvent) -> dict[str, Any]:
    """Convert a typed event to the host callback dict format."""
    data: dict[str, Any] = {"event": event.event_type}
    if isinstance(event, TabUpdate):
        data["tabs"] = [{"position": t.position, "name": t.name} for t in event.tabs]
    elif isinstance(event, PaneUpdate):
        data["panes"] = {
            str(position): [{"id": p.pane_id, "is_plugin": p.is_plugin} for p in panes]
            for position, panes in event.panes.items()
        }
    elif isinstance(event, TimerFired):
        data["token"] = event.token
        data["elapsed"] = event.elapsed
    elif isinstance(event, PipeMessage):
        data["name"] = event.name
        data["payload"] = event.payload
    return data


def dict_to_event(data: dict[str, Any]) -> HostEvent:
    """Convert a host callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, HostEvent)
    if cls is TabUpdate:
        return TabUpdate(tabs=_parse_tabs(data.get("tabs") or []))
    if cls is PaneUpdate:
        return PaneUpdate(panes=_parse_panes(data.get("panes") or {}))
    if cls is TimerFired:
        return TimerFired(
            token=int(data.get("token", 0)),
            elapsed=float(data.get("elapsed", 0.0)),
        )
    if cls is PipeMessage:
        return PipeMessage(name=str(data.get("name", "")), payload=data.get("payload"))
    return HostEvent(event_type=event_type)
