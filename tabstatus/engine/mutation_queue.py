"""Pending mutations for panes that cannot be resolved yet.

Keyed by pane id: a newer request for the same pane replaces the older
one, so at most one mutation per pane is ever replayed.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from .commands import PipeCommand

logger = logging.getLogger(__name__)


class MutationQueue:
    def __init__(self) -> None:
        self._pending: dict[int, PipeCommand] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, pane_id: object) -> bool:
        return pane_id in self._pending

    @property
    def pane_ids(self) -> list[int]:
        return sorted(self._pending)

    def get(self, pane_id: int) -> PipeCommand | None:
        return self._pending.get(pane_id)

    def put(self, command: PipeCommand) -> None:
        superseded = self._pending.get(command.pane_id)
        if superseded is not None:
            logger.debug(
                "MutationQueue.put: pane %d '%s' supersedes '%s'",
                command.pane_id, command.action, superseded.action,
            )
        # Re-insert so replay order follows the most recent request.
        self._pending.pop(command.pane_id, None)
        self._pending[command.pane_id] = command
        logger.info(
            "MutationQueue.put: queued %s for pane %d (%d pending)",
            command.action, command.pane_id, len(self._pending),
        )

    def flush(
        self,
        is_known: Callable[[int], bool],
        execute: Callable[[PipeCommand], None],
    ) -> int:
        """Replay every entry whose pane is now known, once.

        Returns the number of entries executed and removed.
        """
        ready = [cmd for pane_id, cmd in self._pending.items() if is_known(pane_id)]
        for command in ready:
            del self._pending[command.pane_id]
            execute(command)
        if ready:
            logger.info(
                "MutationQueue.flush: replayed %d, %d still pending",
                len(ready), len(self._pending),
            )
        return len(ready)

    def clear(self) -> None:
        self._pending.clear()
