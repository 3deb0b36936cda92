"""Core data models for the tab-status engine.

Snapshot types, phase enums, and the effect values the dispatcher hands
back to the runtime. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

# Reserved glyph written by the probing protocol.  A marker is the glyph
# followed by the candidate index it was written through, e.g. "⍟3".
PROBE_MARKER_GLYPH = "⍟"

NOT_READY = "not_ready"
ACK = "ok"


class Phase(str, Enum):
    """Whether the position → index mapping can be trusted."""
    PROBING = "probing"
    READY = "ready"


@dataclass(frozen=True)
class TabInfo:
    """One entry of a tab snapshot."""
    position: int
    name: str


@dataclass(frozen=True)
class PaneInfo:
    """One pane inside a tab. Plugin panes never anchor an index."""
    pane_id: int
    is_plugin: bool = False


# Tab position → panes living in that tab.
PaneManifest = dict[int, list[PaneInfo]]

# Pane id → (tab position, cached tab name).
PaneTabMap = dict[int, tuple[int, str]]


def marker(candidate: int) -> str:
    """Return the probe marker name for *candidate*."""
    return f"{PROBE_MARKER_GLYPH}{candidate}"


def parse_marker(name: str) -> int | None:
    """Return the candidate encoded in a marker name, or None."""
    if not name.startswith(PROBE_MARKER_GLYPH):
        return None
    digits = name[len(PROBE_MARKER_GLYPH):]
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(digits)


# ── Effects ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RenameTab:
    """Rename the tab with persistent index *tab_index*."""
    tab_index: int
    name: str


@dataclass(frozen=True)
class PipeOutput:
    """Write *output* back to the caller of pipe *pipe_name* and unblock it."""
    pipe_name: str
    output: str


@dataclass(frozen=True)
class ArmTimer:
    """Fire a single TimerFired(token) after *seconds*."""
    token: int
    seconds: float


Effect = Union[RenameTab, PipeOutput, ArmTimer]
