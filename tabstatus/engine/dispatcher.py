"""Event dispatcher: the single owner of all tab-status state.

Consumes the three host inputs (tab snapshots, pane manifests, timer
fires) plus pipe commands, and returns the effects the runtime has to
execute. Nothing here talks to the host directly, so every transition
can be driven synchronously in tests.

Per event the update order is fixed:

    probe / index update → anchor rebuild → pane mapping rebuild → queue flush
"""
from __future__ import annotations

import json
import logging

from .. import __version__
from .commands import (
    RENAME_PIPE,
    PipeCommand,
    execute_mutation,
    execute_query,
    parse_command,
)
from .config import EngineConfig
from .errors import TabStatusError
from .index_table import IndexTable
from .models import (
    ACK,
    NOT_READY,
    ArmTimer,
    Effect,
    PaneManifest,
    PaneTabMap,
    Phase,
    PipeOutput,
    RenameTab,
    TabInfo,
    parse_marker,
)
from .mutation_queue import MutationQueue
from .probing import (
    ProbeOutcome,
    ProbeStep,
    ProbingState,
    default_tab_name,
    handle_probe_snapshot,
    handle_probe_timer,
    start_probe as begin_probe,
)

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes host events and pipe commands to the index table and prober."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

        # Snapshot cache
        self.tabs: list[TabInfo] = []
        self.panes: PaneManifest = {}

        self.table = IndexTable()
        self.queue = MutationQueue()
        self.phase = Phase.READY
        self.probing: ProbingState | None = None

        # Pane id → (tab position, cached tab name)
        self.pane_to_tab: PaneTabMap = {}

        # Last real (non-marker) name seen per position
        self._known_names: dict[int, str] = {}

        # Only the most recently armed timer is honoured
        self._timer_seq = 0
        self._armed_token: int | None = None

    @property
    def is_probing(self) -> bool:
        return self.phase is Phase.PROBING

    @property
    def armed_token(self) -> int | None:
        return self._armed_token

    # ── host events ──────────────────────────────────────────────────

    def on_tab_update(self, tabs: list[TabInfo]) -> list[Effect]:
        self.tabs = sorted(tabs, key=lambda tab: tab.position)
        logger.debug("Dispatcher.on_tab_update: %d tabs", len(self.tabs))
        effects: list[Effect] = []

        if self.is_probing:
            self._remember_names(self.tabs)
            step = handle_probe_snapshot(self.probing, self.tabs)
            effects.extend(self._apply_probe_step(step))
            if self.is_probing:
                self.table.seed_identity(len(self.tabs))
        else:
            effects.extend(self._restore_leaked_markers(self.tabs))
            self._remember_names(self.tabs)
            if self.table.is_empty:
                if self.tabs:
                    # Cold start: indices are unknown until probed.
                    effects.extend(self.start_probe())
            else:
                self.table.update(len(self.tabs), self.panes)

        self._rebuild_mapping()
        effects.extend(self._flush_queue())
        return effects

    def on_pane_update(self, manifest: PaneManifest) -> list[Effect]:
        self.panes = {position: list(panes) for position, panes in manifest.items()}
        logger.debug("Dispatcher.on_pane_update: %d tab entries", len(self.panes))
        if not self.is_probing and not self.table.is_empty:
            self.table.update(len(self.tabs), self.panes)
        self._rebuild_mapping()
        return self._flush_queue()

    def on_timer(self, token: int) -> list[Effect]:
        if token != self._armed_token:
            logger.debug(
                "Dispatcher.on_timer: ignoring stale timer %d (armed=%s)",
                token, self._armed_token,
            )
            return []
        self._armed_token = None
        if not self.is_probing:
            return []

        effects = self._apply_probe_step(handle_probe_timer(self.probing, self.tabs))
        if self.is_probing:
            self.table.seed_identity(len(self.tabs))
        self._rebuild_mapping()
        effects.extend(self._flush_queue())
        return effects

    # ── pipe commands ────────────────────────────────────────────────

    def on_pipe(self, pipe_name: str, payload: str | None) -> list[Effect]:
        if pipe_name not in (self.config.pipe_name, RENAME_PIPE):
            logger.debug("Dispatcher.on_pipe: ignoring pipe '%s'", pipe_name)
            return []
        try:
            command = parse_command(pipe_name, payload)
            return self._execute(command)
        except TabStatusError as exc:
            logger.error("[%s] %s", pipe_name, exc)
            return [PipeOutput(pipe_name, "")]

    def _execute(self, command: PipeCommand) -> list[Effect]:
        pipe = command.pipe_name
        if command.action == "get_version":
            return [PipeOutput(pipe, __version__)]
        if command.action == "get_debug":
            dump = json.dumps(self.diagnostics(), ensure_ascii=False, sort_keys=True)
            return [PipeOutput(pipe, dump)]
        if command.action == "reprobe":
            return self.start_probe() + [PipeOutput(pipe, ACK)]

        if command.is_query:
            # The pane → tab mapping is about to be invalidated.
            if self.is_probing:
                return [PipeOutput(pipe, NOT_READY)]
            return execute_query(command, self.pane_to_tab)

        if not self.is_probing and command.pane_id in self.pane_to_tab:
            return self._run_mutation(command)

        self.queue.put(command)
        return [PipeOutput(pipe, NOT_READY)]

    def _run_mutation(self, command: PipeCommand) -> list[Effect]:
        effects = execute_mutation(command, self.pane_to_tab, self.table)
        position, new_name = self.pane_to_tab[command.pane_id]
        self._known_names[position] = new_name
        return effects

    # ── probing ──────────────────────────────────────────────────────

    def start_probe(self) -> list[Effect]:
        """Start (or restart) discovery against the live snapshot."""
        if not self.tabs:
            logger.info("Dispatcher.start_probe: no tabs yet, nothing to probe")
            return []
        if self.probing is not None:
            logger.info(
                "Dispatcher.start_probe: replacing in-flight probe at candidate %d",
                self.probing.candidate,
            )
        self.probing, step = begin_probe(self.tabs, self._known_names, self.config)
        self.phase = Phase.PROBING
        self.table.seed_identity(len(self.tabs))
        return self._apply_probe_step(step)

    def _apply_probe_step(self, step: ProbeStep) -> list[Effect]:
        effects: list[Effect] = list(step.renames)
        if step.outcome is ProbeOutcome.FINALIZE:
            effects.extend(self._finish_probe())
        elif step.outcome is ProbeOutcome.FALLBACK:
            self._finish_with_fallback()
        elif step.arm_timer:
            effects.append(self._arm_timer())
        return effects

    def _finish_probe(self) -> list[Effect]:
        state = self.probing
        positions = sorted(state.found_positions)
        if positions != list(range(len(self.tabs))):
            logger.warning(
                "Dispatcher: tabs changed while probing (found positions %s, "
                "%d tabs now), probing again",
                positions, len(self.tabs),
            )
            return self.start_probe()
        self.table.assign(state.discovered_indices(), self.panes)
        self._leave_probing()
        logger.info(
            "Probing: complete, index table %s (last candidate %d)",
            self.table.indices, state.candidate,
        )
        return []

    def _finish_with_fallback(self) -> None:
        self.table.assign(list(range(1, len(self.tabs) + 1)), self.panes)
        self._leave_probing()
        logger.warning("Probing: fallback index table %s", self.table.indices)

    def _leave_probing(self) -> None:
        self.probing = None
        self.phase = Phase.READY
        self._armed_token = None

    def _arm_timer(self) -> ArmTimer:
        self._timer_seq += 1
        self._armed_token = self._timer_seq
        return ArmTimer(self._armed_token, self.config.probe_timeout_seconds)

    def _restore_leaked_markers(self, tabs: list[TabInfo]) -> list[Effect]:
        """Undo markers that show up after probing already finished.

        The marker names its own index, so the restore goes straight to it.
        """
        renames: list[Effect] = []
        for tab in tabs:
            candidate = parse_marker(tab.name)
            if candidate is None:
                continue
            name = self._known_names.get(tab.position, default_tab_name(tab.position))
            logger.warning(
                "Dispatcher: leaked probe marker '%s' at position %d, restoring '%s'",
                tab.name, tab.position, name,
            )
            renames.append(RenameTab(candidate, name))
        return renames

    # ── mapping ──────────────────────────────────────────────────────

    def _remember_names(self, tabs: list[TabInfo]) -> None:
        names = {
            position: name
            for position, name in self._known_names.items()
            if position < len(tabs)
        }
        for tab in tabs:
            if parse_marker(tab.name) is None:
                names[tab.position] = tab.name
        self._known_names = names

    def _rebuild_mapping(self) -> None:
        mapping: PaneTabMap = {}
        for tab in self.tabs:
            name = tab.name
            if parse_marker(name) is not None:
                name = self._known_names.get(tab.position, name)
            for pane in self.panes.get(tab.position, []):
                if pane.is_plugin:
                    continue
                mapping[pane.pane_id] = (tab.position, name)
        self.pane_to_tab = mapping
        logger.debug("Dispatcher: total mappings %d", len(mapping))

    def _flush_queue(self) -> list[Effect]:
        if self.is_probing or not self.pane_to_tab or not len(self.queue):
            return []
        effects: list[Effect] = []

        def execute(command: PipeCommand) -> None:
            try:
                # The caller was already answered "not ready".
                effects.extend(
                    effect for effect in self._run_mutation(command)
                    if not isinstance(effect, PipeOutput)
                )
            except TabStatusError as exc:
                logger.error(
                    "Dispatcher: dropping queued %s for pane %d: %s",
                    command.action, command.pane_id, exc,
                )

        self.queue.flush(lambda pane_id: pane_id in self.pane_to_tab, execute)
        return effects

    # ── diagnostics ──────────────────────────────────────────────────

    def diagnostics(self) -> dict:
        return {
            "version": __version__,
            "phase": self.phase.value,
            "tabs": [[tab.position, tab.name] for tab in self.tabs],
            "index_table": self.table.indices,
            "index_table_temporary": self.table.is_temporary,
            "next_index": self.table.next_index,
            "anchors": {str(k): v for k, v in sorted(self.table.anchors.items())},
            "pane_to_tab": {
                str(pane_id): [position, name]
                for pane_id, (position, name) in sorted(self.pane_to_tab.items())
            },
            "pending": self.queue.pane_ids,
            "probing": self.probing.snapshot() if self.probing else None,
        }
