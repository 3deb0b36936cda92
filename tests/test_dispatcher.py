from __future__ import annotations

import json
from collections import deque

import pytest

from tabstatus import __version__
from tabstatus.adapters.host import SimulatedHost
from tabstatus.engine.config import EngineConfig
from tabstatus.engine.dispatcher import Dispatcher
from tabstatus.engine.models import (
    ACK,
    NOT_READY,
    ArmTimer,
    Effect,
    Phase,
    PipeOutput,
    RenameTab,
    TabInfo,
    marker,
    parse_marker,
)

PIPE = "tab-status"


class Harness:
    """Drives a Dispatcher against a SimulatedHost synchronously."""

    def __init__(self, host: SimulatedHost, config: EngineConfig | None = None) -> None:
        self.host = host
        self.dispatcher = Dispatcher(config)
        self.events: deque = deque()
        self.outputs: list[str] = []
        self.timers: list[int] = []
        # (table length, tab count) after every delivered snapshot
        self.table_sizes: list[tuple[int, int]] = []

    def publish(self) -> None:
        self.events.append(("tabs", self.host.snapshot()))
        self.events.append(("panes", self.host.manifest()))
        self.pump()

    def publish_tabs(self) -> None:
        self.events.append(("tabs", self.host.snapshot()))
        self.pump()

    def publish_panes(self) -> None:
        self.events.append(("panes", self.host.manifest()))
        self.pump()

    def pump(self) -> None:
        while self.events:
            kind, data = self.events.popleft()
            if kind == "tabs":
                self.apply(self.dispatcher.on_tab_update(data))
            else:
                self.apply(self.dispatcher.on_pane_update(data))
            self.table_sizes.append((len(self.dispatcher.table), len(self.dispatcher.tabs)))

    def apply(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, RenameTab):
                if self.host.apply_rename(effect.tab_index, effect.name):
                    self.events.append(("tabs", self.host.snapshot()))
            elif isinstance(effect, PipeOutput):
                self.outputs.append(effect.output)
            elif isinstance(effect, ArmTimer):
                self.timers.append(effect.token)

    def fire_timer(self) -> None:
        self.apply(self.dispatcher.on_timer(self.timers[-1]))
        self.pump()

    def settle(self, max_timers: int = 200) -> int:
        fired = 0
        while self.dispatcher.is_probing:
            assert fired < max_timers, "probing did not converge"
            self.fire_timer()
            fired += 1
        return fired

    def pipe(self, pipe_name: str = PIPE, /, **payload) -> str | None:
        sent = len(self.outputs)
        self.apply(self.dispatcher.on_pipe(pipe_name, json.dumps(payload)))
        self.pump()
        return self.outputs[sent] if len(self.outputs) > sent else None


def _host(*names: str, gaps: tuple[int, ...] = ()) -> SimulatedHost:
    host = SimulatedHost()
    for name in names:
        host.open_tab(name)
    for _ in gaps:
        host.open_tab()
    for index in sorted(gaps, reverse=True):
        position = next(p for p, tab in enumerate(host.tabs) if tab.index == index)
        host.close_tab(position)
    return host


def _ready(*names: str, gaps: tuple[int, ...] = ()) -> Harness:
    harness = Harness(_host(*names, gaps=gaps))
    harness.publish()
    harness.settle()
    return harness


def _truth(host: SimulatedHost) -> list[int]:
    return [tab.index for tab in host.tabs]


# ── discovery ────────────────────────────────────────────────────────


def test_two_tabs_discovered_without_timeouts() -> None:
    harness = Harness(_host("Work", "Deploy"))
    harness.publish()
    assert harness.dispatcher.phase is Phase.READY
    assert harness.dispatcher.table.indices == [1, 2]
    assert [tab.name for tab in harness.host.tabs] == ["Work", "Deploy"]


def test_first_snapshot_starts_probe_with_identity_seed() -> None:
    dispatcher = Dispatcher()
    effects = dispatcher.on_tab_update([TabInfo(0, "Work"), TabInfo(1, "Deploy")])
    assert dispatcher.is_probing
    assert dispatcher.table.indices == [1, 2]
    assert dispatcher.table.is_temporary
    assert effects[0] == RenameTab(1, marker(1))
    assert isinstance(effects[1], ArmTimer)


def test_timeout_without_hit_advances_candidate() -> None:
    dispatcher = Dispatcher()
    effects = dispatcher.on_tab_update([TabInfo(0, "Work"), TabInfo(1, "Deploy")])
    token = effects[-1].token

    effects = dispatcher.on_timer(token)

    assert effects[0] == RenameTab(2, marker(2))
    assert isinstance(effects[1], ArmTimer)
    assert dispatcher.probing.candidate == 2


def test_stale_timer_is_ignored() -> None:
    dispatcher = Dispatcher()
    first = dispatcher.on_tab_update([TabInfo(0, "A"), TabInfo(1, "B")])[-1].token
    second = dispatcher.on_timer(first)[-1].token
    assert second != first

    assert dispatcher.on_timer(first) == []
    assert dispatcher.probing.candidate == 2
    assert dispatcher.armed_token == second


def test_no_tabs_no_probe() -> None:
    dispatcher = Dispatcher()
    assert dispatcher.on_tab_update([]) == []
    assert not dispatcher.is_probing
    assert dispatcher.table.is_empty


@pytest.mark.parametrize(
    "names, gaps",
    [
        (("A",), ()),
        (("A", "B", "C"), ()),
        (("A", "B"), (1,)),
        (("A", "B", "C"), (2, 3)),
        (("A", "B", "C", "D"), (1, 4, 5)),
    ],
)
def test_discovery_converges_to_host_indices(names, gaps) -> None:
    host = _host(*names, gaps=gaps)
    before = [tab.name for tab in host.tabs]
    harness = Harness(host)
    harness.publish()
    fired = harness.settle()

    tab_count = len(host.tabs)
    probed = [parse_marker(name) for _, name in host.renames if parse_marker(name) is not None]
    assert max(probed) <= 3 * tab_count
    assert fired <= 3 * tab_count

    assert harness.dispatcher.table.indices == _truth(host)
    assert not harness.dispatcher.table.is_temporary
    assert [tab.name for tab in host.tabs] == before
    assert len(set(zip(range(len(host.tabs)), harness.dispatcher.table.indices))) == len(host.tabs)


def test_discovery_restores_every_original_name() -> None:
    harness = _ready("Work", "Deploy", "Logs", gaps=(2,))
    assert [tab.name for tab in harness.host.tabs] == ["Work", "Logs", "Tab #4"]
    assert harness.dispatcher.table.indices == [1, 3, 4]


def test_dropped_restore_is_retried() -> None:
    host = _host("A", "B")
    harness = Harness(host)
    harness.apply(harness.dispatcher.on_tab_update(host.snapshot()))
    host.drop_renames = 1
    harness.pump()
    assert host.tab_at(0).name == marker(1)

    harness.settle()

    assert [tab.name for tab in host.tabs] == ["A", "B"]
    assert harness.dispatcher.table.indices == [1, 2]


def test_dropped_probe_rename_falls_back_to_identity() -> None:
    host = _host("A", "B")
    host.drop_renames = 1
    harness = Harness(host)
    harness.publish()
    fired = harness.settle()

    assert harness.dispatcher.phase is Phase.READY
    assert harness.dispatcher.table.indices == [1, 2]
    assert fired <= 3 * 2 + 1


def test_fallback_when_host_ignores_all_renames() -> None:
    host = _host("A", "B", "C")
    host.drop_renames = 10_000
    harness = Harness(host)
    harness.publish()
    harness.settle()
    assert harness.dispatcher.table.indices == [1, 2, 3]
    assert harness.dispatcher.phase is Phase.READY


def test_tabs_opened_while_probing_trigger_new_probe() -> None:
    host = _host("A", "B")
    harness = Harness(host)
    harness.apply(harness.dispatcher.on_tab_update(host.snapshot()))
    host.open_tab("C")
    harness.publish()
    harness.settle()
    assert harness.dispatcher.table.indices == [1, 2, 3]


# ── incremental updates ──────────────────────────────────────────────


def test_closing_first_tab_keeps_indices_without_probe() -> None:
    harness = _ready("A", "B", "C")
    harness.host.close_tab(0)
    harness.publish()
    assert not harness.dispatcher.is_probing
    assert harness.dispatcher.table.indices == [2, 3]

    assert harness.pipe(pane_id=2, action="set_name", name="Last") == ACK
    assert [tab.name for tab in harness.host.tabs] == ["B", "Last"]


def test_new_tab_after_close_gets_host_index() -> None:
    harness = _ready("A", "B", "C")
    harness.host.close_tab(1)
    harness.publish()
    harness.host.open_tab("D")
    harness.publish()
    assert harness.dispatcher.table.indices == _truth(harness.host) == [1, 3, 4]


def test_moved_tab_keeps_index() -> None:
    harness = _ready("A", "B", "C")
    harness.host.move_tab(2, 0)
    harness.publish()
    assert harness.dispatcher.table.indices == [3, 1, 2]


def test_tab_update_before_pane_update_settles() -> None:
    harness = _ready("A", "B", "C")
    harness.host.close_tab(0)
    harness.publish_tabs()
    assert len(harness.dispatcher.table) == 2
    harness.publish_panes()
    assert harness.dispatcher.table.indices == [2, 3]


# ── pipe commands ────────────────────────────────────────────────────


def test_set_status_and_queries() -> None:
    harness = _ready("Work", "Deploy")
    pane = harness.host.tab_at(1).pane_ids[0]

    assert harness.pipe(pane_id=str(pane), action="set_status", emoji="🤖") == ACK
    assert harness.host.tab_at(1).name == "🤖 Deploy"
    assert harness.pipe(pane_id=pane, action="get_status") == "🤖"
    assert harness.pipe(pane_id=pane, action="get_name") == "Deploy"
    assert harness.pipe(pane_id=pane, action="clear_status") == ACK
    assert harness.host.tab_at(1).name == "Deploy"


def test_legacy_rename_pipe() -> None:
    harness = _ready("Work")
    pane = harness.host.tab_at(0).pane_ids[0]
    assert harness.pipe("tab-rename", pane_id=str(pane), name="Build") == ACK
    assert harness.host.tab_at(0).name == "Build"


def test_mutation_for_unknown_pane_is_queued_until_mapped() -> None:
    harness = _ready("A", "B")
    new_tab = harness.host.open_tab()
    pane = new_tab.pane_ids[0]

    assert harness.pipe(pane_id=pane, action="set_status", emoji="🤖") == NOT_READY
    assert pane in harness.dispatcher.queue

    harness.publish()

    assert pane not in harness.dispatcher.queue
    assert harness.host.tab_at(2).name == "🤖 Tab #3"
    assert harness.outputs.count(NOT_READY) == 1


def test_mutation_while_probing_runs_after_discovery() -> None:
    host = _host("A", "B")
    harness = Harness(host)
    harness.apply(harness.dispatcher.on_tab_update(host.snapshot()))
    pane = host.tab_at(1).pane_ids[0]

    assert harness.pipe(pane_id=pane, action="set_name", name="First") == NOT_READY
    assert harness.pipe(pane_id=pane, action="set_name", name="Second") == NOT_READY
    assert len(harness.dispatcher.queue) == 1

    harness.publish()
    harness.settle()

    assert [tab.name for tab in host.tabs] == ["A", "Second"]
    assert len(harness.dispatcher.queue) == 0


def test_queries_not_ready_while_probing() -> None:
    host = _host("A")
    harness = Harness(host)
    harness.apply(harness.dispatcher.on_tab_update(host.snapshot()))
    assert harness.pipe(pane_id=0, action="get_status") == NOT_READY
    assert len(harness.dispatcher.queue) == 0


def test_version_and_debug_always_answered() -> None:
    dispatcher = Dispatcher()
    dispatcher.on_tab_update([TabInfo(0, "A")])
    assert dispatcher.is_probing

    assert dispatcher.on_pipe(PIPE, '{"action": "get_version"}') == [PipeOutput(PIPE, __version__)]
    [output] = dispatcher.on_pipe(PIPE, '{"action": "get_debug"}')
    dump = json.loads(output.output)
    assert dump["phase"] == "probing"
    assert dump["probing"]["candidate"] == 1
    assert dump["index_table_temporary"] is True


def test_bad_payloads_answer_empty() -> None:
    harness = _ready("A")
    sent = len(harness.outputs)
    harness.apply(harness.dispatcher.on_pipe(PIPE, "{broken"))
    harness.apply(harness.dispatcher.on_pipe(PIPE, None))
    assert harness.outputs[sent:] == ["", ""]
    assert harness.pipe(pane_id=999, action="get_name") == ""
    assert harness.pipe(pane_id=0, action="dance") == ""
    assert harness.pipe(pane_id="²", action="get_status") == ""
    assert harness.pipe(pane_id="²", action="set_name", name="X") == ""
    assert len(harness.dispatcher.queue) == 0


def test_other_pipes_are_ignored() -> None:
    harness = _ready("A")
    assert harness.dispatcher.on_pipe("someone-else", '{"action": "get_version"}') == []


def test_reprobe_rediscovers_table() -> None:
    harness = _ready("A", "B", gaps=(2,))
    assert harness.pipe(action="reprobe") == ACK
    harness.settle()
    assert harness.dispatcher.table.indices == [1, 3]
    assert [tab.name for tab in harness.host.tabs] == ["A", "Tab #3"]


# ── safety net ───────────────────────────────────────────────────────


def test_leaked_marker_restored_in_ready() -> None:
    harness = _ready("Work", "Deploy")
    harness.host.apply_rename(2, marker(2))

    harness.publish()

    assert harness.host.tab_at(1).name == "Deploy"
    assert not harness.dispatcher.is_probing


def test_mapping_hides_leaked_marker_name() -> None:
    harness = _ready("Work", "Deploy")
    pane = harness.host.tab_at(1).pane_ids[0]
    effects = harness.dispatcher.on_tab_update([TabInfo(0, "Work"), TabInfo(1, marker(2))])
    assert RenameTab(2, "Deploy") in effects
    assert harness.dispatcher.pane_to_tab[pane] == (1, "Deploy")


def test_mapping_skips_plugin_panes() -> None:
    host = SimulatedHost()
    host.open_tab("A", panes=1, plugin_panes=1)
    harness = Harness(host)
    harness.publish()
    harness.settle()
    assert set(harness.dispatcher.pane_to_tab) == set(host.tab_at(0).pane_ids)


def test_diagnostics_ready_shape() -> None:
    harness = _ready("A", "B")
    dump = harness.dispatcher.diagnostics()
    assert dump["phase"] == "ready"
    assert dump["index_table"] == [1, 2]
    assert dump["next_index"] == 3
    assert dump["probing"] is None
    assert dump["pending"] == []
    assert dump["tabs"] == [[0, "A"], [1, "B"]]


# ── invariants ───────────────────────────────────────────────────────


def test_table_length_tracks_tabs_after_every_event() -> None:
    harness = _ready("A", "B", "C")
    host = harness.host

    host.close_tab(0)
    harness.publish_tabs()
    harness.publish_panes()
    host.open_tab("D", panes=2)
    harness.publish_tabs()
    harness.publish_panes()
    host.move_tab(0, 2)
    harness.publish()
    host.close_tab(2)
    harness.publish_tabs()
    harness.publish_panes()

    assert harness.table_sizes
    assert all(table == tabs for table, tabs in harness.table_sizes)
    table = harness.dispatcher.table
    assert table.indices == _truth(host)
    assert len(set(table.indices)) == len(table)
    assert max(table.indices) <= table.next_index - 1


def test_mapping_rebuild_is_idempotent() -> None:
    harness = _ready("A", "B")
    harness.host.open_tab("C", panes=2, plugin_panes=1)
    harness.publish()
    dispatcher = harness.dispatcher
    mapping = dict(dispatcher.pane_to_tab)
    indices = dispatcher.table.indices

    dispatcher._rebuild_mapping()
    dispatcher._rebuild_mapping()
    assert dispatcher.pane_to_tab == mapping

    assert dispatcher.on_pane_update(harness.host.manifest()) == []
    assert dispatcher.on_tab_update(harness.host.snapshot()) == []
    assert dispatcher.pane_to_tab == mapping
    assert dispatcher.table.indices == indices


def test_tab_named_like_a_marker_with_superscript_digits() -> None:
    harness = _ready("Work", "⍟²")
    assert harness.dispatcher.table.indices == [1, 2]
    assert harness.host.tab_at(1).name == "⍟²"

    effects = harness.dispatcher.on_tab_update(harness.host.snapshot())
    assert not any(isinstance(effect, RenameTab) for effect in effects)
    pane = harness.host.tab_at(1).pane_ids[0]
    assert harness.dispatcher.pane_to_tab[pane] == (1, "⍟²")
