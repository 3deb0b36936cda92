"""Persistent index discovery by active probing.

The host renames tabs by persistent index but only ever reports tab
positions. To learn the mapping the prober renames candidate index
``c`` to a marker ("⍟c") and watches where the marker shows up:

    AwaitingMatch(c) ──marker c seen──> AwaitingRestore(c)
          │                                  │
       timeout: c is a gap              marker c cleared
          │                                  │
          └────────> AwaitingMatch(c+1) <────┘

Markers are tagged with their candidate so a confirmation that arrives
late (after its candidate was already given up as a gap) is still
attributed correctly. Every seen marker is restored to the tab's
original name right away.

All functions here are pure transitions over ProbingState; they return
a ProbeStep telling the dispatcher what to rename and whether to arm
the timeout.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .config import EngineConfig
from .models import RenameTab, TabInfo, marker, parse_marker

logger = logging.getLogger(__name__)

# Timer firings tolerated while waiting for a restore (5 seconds at
# the default 1s timeout) before force-advancing.
MAX_RESTORE_RETRIES = 5


def default_tab_name(position: int) -> str:
    return f"Tab #{position + 1}"


@dataclass
class ProbingState:
    """Discovery progress. Exists only while the dispatcher is probing."""
    # Tab names captured at probe start, used to restore marked tabs
    original_names: dict[int, str]
    # Candidate index currently being probed
    candidate: int = 1
    # Confirmed (tab_position, persistent_index) pairs
    found: list[tuple[int, int]] = field(default_factory=list)
    # Tabs still unidentified; defaults to the tab count
    remaining: int | None = None
    # True while waiting for the current candidate's marker to clear
    restoring: bool = False
    # Consecutive timer firings while restoring (reset on success)
    restore_retries: int = 0
    # Position where the current candidate's marker was seen
    restore_position: int | None = None
    # Highest candidate tried before falling back; defaults to 3 × tab count
    max_candidate: int | None = None
    max_restore_retries: int = MAX_RESTORE_RETRIES

    def __post_init__(self) -> None:
        if self.remaining is None:
            self.remaining = len(self.original_names)
        if self.max_candidate is None:
            self.max_candidate = len(self.original_names) * 3

    @property
    def found_indices(self) -> set[int]:
        return {index for _, index in self.found}

    @property
    def found_positions(self) -> set[int]:
        return {position for position, _ in self.found}

    def restore_name(self, position: int | None) -> str:
        if position is None:
            return ""
        return self.original_names.get(position, default_tab_name(position))

    def discovered_indices(self) -> list[int]:
        """Persistent indices ordered by tab position."""
        return [index for _, index in sorted(self.found)]

    def snapshot(self) -> dict:
        return {
            "candidate": self.candidate,
            "found": [list(pair) for pair in sorted(self.found)],
            "remaining": self.remaining,
            "restoring": self.restoring,
            "restore_retries": self.restore_retries,
            "max_candidate": self.max_candidate,
        }


class ProbeOutcome(str, Enum):
    """What the dispatcher should do after a probing transition."""
    WAIT = "wait"            # keep waiting for snapshots / the armed timer
    ADVANCE = "advance"      # probing a new candidate
    RETRY = "retry"          # re-issued a restore
    FINALIZE = "finalize"    # all tabs identified
    FALLBACK = "fallback"    # candidates exhausted, use identity [1..N]


@dataclass
class ProbeStep:
    outcome: ProbeOutcome
    renames: list[RenameTab] = field(default_factory=list)
    arm_timer: bool = False


def visible_markers(tabs: list[TabInfo]) -> dict[int, int]:
    """Candidate → position for every tab currently showing a marker."""
    markers: dict[int, int] = {}
    for tab in tabs:
        candidate = parse_marker(tab.name)
        if candidate is not None:
            markers[candidate] = tab.position
    return markers


def start_probe(
    tabs: list[TabInfo],
    known_names: dict[int, str],
    config: EngineConfig,
) -> tuple[ProbingState, ProbeStep]:
    """Capture names and probe candidate 1.

    A tab that still shows a marker (left over from an interrupted run)
    is recorded under the last real name known for its position.
    """
    original_names: dict[int, str] = {}
    for tab in tabs:
        if parse_marker(tab.name) is not None:
            original_names[tab.position] = known_names.get(
                tab.position, default_tab_name(tab.position)
            )
        else:
            original_names[tab.position] = tab.name

    state = ProbingState(
        original_names=original_names,
        max_candidate=config.max_candidate(len(original_names)),
        max_restore_retries=config.max_restore_retries,
    )
    logger.info(
        "Probing: start for %d tabs (max candidate %d)",
        len(original_names), state.max_candidate,
    )
    return state, ProbeStep(
        ProbeOutcome.ADVANCE, [RenameTab(1, marker(1))], arm_timer=True
    )


def _record_hits(state: ProbingState, tabs: list[TabInfo]) -> tuple[list[RenameTab], bool]:
    renames: list[RenameTab] = []
    current_hit = False
    for tab in tabs:
        candidate = parse_marker(tab.name)
        if candidate is None:
            continue
        if candidate in state.found_indices or tab.position in state.found_positions:
            continue
        state.found.append((tab.position, candidate))
        state.remaining = max(state.remaining - 1, 0)
        renames.append(RenameTab(candidate, state.restore_name(tab.position)))
        if candidate == state.candidate:
            current_hit = True
            state.restore_position = tab.position
            logger.info(
                "Probing: candidate %d is tab position %d (%d remaining)",
                candidate, tab.position, state.remaining,
            )
        else:
            logger.info(
                "Probing: late marker for candidate %d at position %d "
                "while probing %d (%d remaining)",
                candidate, tab.position, state.candidate, state.remaining,
            )
    return renames, current_hit


def _advance(state: ProbingState, renames: list[RenameTab]) -> ProbeStep:
    state.candidate += 1
    while state.candidate in state.found_indices:
        state.candidate += 1
    if state.candidate > state.max_candidate:
        logger.warning(
            "Probing: exceeded limit (candidate=%d > %d, %d unidentified), "
            "falling back to [1..N]",
            state.candidate, state.max_candidate, state.remaining,
        )
        return ProbeStep(ProbeOutcome.FALLBACK, renames)
    renames.append(RenameTab(state.candidate, marker(state.candidate)))
    return ProbeStep(ProbeOutcome.ADVANCE, renames, arm_timer=True)


def handle_probe_snapshot(state: ProbingState, tabs: list[TabInfo]) -> ProbeStep:
    """Advance the prober on a new tab snapshot."""
    renames, current_hit = _record_hits(state, tabs)
    visible = visible_markers(tabs)

    if state.restoring:
        if state.candidate in visible:
            return ProbeStep(ProbeOutcome.WAIT, renames)
        logger.debug("Probing: restore confirmed for candidate %d", state.candidate)
        state.restoring = False
        state.restore_retries = 0
        state.restore_position = None
        if state.remaining == 0:
            if not visible:
                return ProbeStep(ProbeOutcome.FINALIZE, renames)
            # Late markers still on screen; the timer keeps nudging them.
            return ProbeStep(ProbeOutcome.WAIT, renames, arm_timer=True)
        return _advance(state, renames)

    if current_hit:
        state.restoring = True
        state.restore_retries = 0
        return ProbeStep(ProbeOutcome.WAIT, renames, arm_timer=True)

    if state.remaining == 0 and not visible:
        return ProbeStep(ProbeOutcome.FINALIZE, renames)
    return ProbeStep(ProbeOutcome.WAIT, renames)


def handle_probe_timer(state: ProbingState, tabs: list[TabInfo]) -> ProbeStep:
    """Advance the prober when the armed timeout fires."""
    if state.restoring:
        state.restore_retries += 1
        if state.restore_retries >= state.max_restore_retries:
            logger.warning(
                "Probing: restore stuck for candidate=%d after %d retries, forcing advance",
                state.candidate, state.restore_retries,
            )
            state.restoring = False
            state.restore_retries = 0
            state.restore_position = None
            if state.remaining == 0:
                return ProbeStep(ProbeOutcome.FINALIZE)
            return _advance(state, [])
        logger.info(
            "Probing: timer fired while restoring candidate=%d, retry %d/%d",
            state.candidate, state.restore_retries, state.max_restore_retries,
        )
        name = state.restore_name(state.restore_position)
        return ProbeStep(
            ProbeOutcome.RETRY, [RenameTab(state.candidate, name)], arm_timer=True
        )

    if state.remaining == 0:
        # Every tab is identified; only late markers are left to clear.
        visible = visible_markers(tabs)
        if not visible:
            return ProbeStep(ProbeOutcome.FINALIZE)
        state.restore_retries += 1
        if state.restore_retries >= state.max_restore_retries:
            logger.warning(
                "Probing: markers %s still visible after %d retries, finalizing",
                sorted(visible), state.restore_retries,
            )
            return ProbeStep(ProbeOutcome.FINALIZE)
        renames = [
            RenameTab(candidate, state.restore_name(position))
            for candidate, position in sorted(visible.items())
        ]
        return ProbeStep(ProbeOutcome.RETRY, renames, arm_timer=True)

    logger.info(
        "Probing: timer fired, candidate=%d is a gap (no marker seen)",
        state.candidate,
    )
    return _advance(state, [])
