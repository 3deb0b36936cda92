"""Position → persistent index table with pane anchors.

The host renames tabs by a persistent index that is never exposed in
snapshots. Once the indices are known (see probing.py), the table is
kept current across tab open/close/move without re-probing by
remembering which panes live in which indexed tab (the anchors).

Allocation mirrors the host: a new tab gets the highest index in use
plus one, so ``next_index`` is recomputed as ``max(table) + 1`` after
every update rather than kept as a running counter.
"""
from __future__ import annotations

import logging

from .models import PaneManifest

logger = logging.getLogger(__name__)


def is_consistent(tab_count: int, manifest: PaneManifest) -> bool:
    """True when *manifest* describes exactly positions 0..tab_count-1."""
    return set(manifest) == set(range(tab_count))


def session_panes(manifest: PaneManifest, position: int) -> list[int]:
    """Non-plugin pane ids of the tab at *position*."""
    return [p.pane_id for p in manifest.get(position, []) if not p.is_plugin]


class IndexTable:
    """Ordered persistent indices, one per tab position.

    Anchors and the allocation baseline are only rebuilt from a
    *confirmed* update, one where the pane manifest matches the tab
    count. Tab and pane updates arrive separately, so an update made
    against a stale manifest is tentative and gets recomputed from the
    confirmed baseline when the matching manifest shows up.
    """

    def __init__(self) -> None:
        self._indices: list[int] = []
        self._anchors: dict[int, int] = {}
        self.next_index = 1
        self._confirmed_next = 1
        self._temporary = False
        self._anchors_pending = False

    # ── read access ──────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._indices)

    @property
    def indices(self) -> list[int]:
        return list(self._indices)

    @property
    def anchors(self) -> dict[int, int]:
        return dict(self._anchors)

    @property
    def is_empty(self) -> bool:
        return not self._indices

    @property
    def is_temporary(self) -> bool:
        """True while the table holds the identity seed used during probing."""
        return self._temporary

    def index_at(self, position: int) -> int:
        return self._indices[position]

    # ── writes ───────────────────────────────────────────────────────

    def seed_identity(self, tab_count: int) -> None:
        """Temporary ``position i → i + 1`` table used while probing."""
        self._indices = list(range(1, tab_count + 1))
        self._temporary = True
        self.next_index = tab_count + 1

    def assign(self, indices: list[int], manifest: PaneManifest) -> None:
        """Install a discovered (or fallback) table and anchor it."""
        self._indices = list(indices)
        self._temporary = False
        self.next_index = max(self._indices, default=0) + 1
        self._confirmed_next = self.next_index
        self._rebuild_anchors(manifest)
        # Anchors built from a lagging manifest get redone positionally
        # once the matching pane update arrives.
        self._anchors_pending = not is_consistent(len(self._indices), manifest)
        logger.info(
            "IndexTable.assign: %s (next_index=%d, anchors=%d%s)",
            self._indices, self.next_index, len(self._anchors),
            ", pending manifest" if self._anchors_pending else "",
        )

    def update(self, tab_count: int, manifest: PaneManifest) -> bool:
        """Recompute the table for a new snapshot. Returns True if it changed."""
        consistent = is_consistent(tab_count, manifest)

        if self._anchors_pending and consistent and tab_count == len(self._indices):
            self._rebuild_anchors(manifest)
            self._anchors_pending = False
            logger.debug("IndexTable.update: anchors confirmed for %s", self._indices)
            return False

        previous = self._indices
        result: list[int | None] = [None] * tab_count
        used: set[int] = set()

        # Anchored panes keep their tab's index.
        for position in range(tab_count):
            for pane_id in session_panes(manifest, position):
                index = self._anchors.get(pane_id)
                if index is not None and index not in used:
                    result[position] = index
                    used.add(index)
                    break

        # Tabs without session panes can never anchor; with an unchanged
        # tab count they keep their positional index.
        if tab_count == len(previous):
            for position in range(tab_count):
                if result[position] is not None:
                    continue
                if session_panes(manifest, position):
                    continue
                if previous[position] not in used:
                    result[position] = previous[position]
                    used.add(previous[position])

        # Everything else is a new tab.
        fresh = self._confirmed_next
        for position in range(tab_count):
            if result[position] is not None:
                continue
            while fresh in used:
                fresh += 1
            result[position] = fresh
            used.add(fresh)
            fresh += 1

        self._indices = [index for index in result if index is not None]
        self._temporary = False
        # Host allocation rule: highest index in use plus one.
        self.next_index = max(self._indices, default=0) + 1

        if consistent:
            self._rebuild_anchors(manifest)
            self._confirmed_next = self.next_index
            self._anchors_pending = False

        changed = self._indices != previous
        if changed:
            logger.info(
                "IndexTable.update: %s -> %s (next_index=%d, %s)",
                previous, self._indices, self.next_index,
                "confirmed" if consistent else "tentative",
            )
        return changed

    def clear(self) -> None:
        self._indices = []
        self._anchors = {}
        self.next_index = 1
        self._confirmed_next = 1
        self._temporary = False
        self._anchors_pending = False

    def _rebuild_anchors(self, manifest: PaneManifest) -> None:
        # Rebuilt from scratch so anchors for closed tabs (and pane ids
        # later reused by the host) never survive.
        anchors: dict[int, int] = {}
        for position, index in enumerate(self._indices):
            for pane_id in session_panes(manifest, position):
                anchors[pane_id] = index
        self._anchors = anchors
