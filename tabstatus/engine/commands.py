"""Pipe command parsing and execution.

Payloads arrive as JSON objects on the ``tab-status`` pipe:

    {"pane_id": "12", "action": "set_status", "emoji": "🤖"}
    {"pane_id": "12", "action": "set_name", "name": "Build"}
    {"action": "get_version"}

The legacy ``tab-rename`` pipe carries ``{"pane_id", "name"}`` and is
treated as ``set_name``.

Execution is pure: given the current pane → tab map and index table it
returns the effects to issue and updates the cached tab name so
back-to-back commands compose.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import (
    InvalidPaneIdError,
    MissingParameterError,
    PayloadError,
    UnknownActionError,
    UnknownPaneError,
)
from .models import ACK, Effect, PaneTabMap, PipeOutput, RenameTab
from .status_utils import extract_base_name, extract_status, with_status

if TYPE_CHECKING:
    from .index_table import IndexTable

logger = logging.getLogger(__name__)

RENAME_PIPE = "tab-rename"

MUTATING_ACTIONS = frozenset({"set_status", "clear_status", "set_name"})
QUERY_ACTIONS = frozenset({"get_status", "get_name"})
GLOBAL_ACTIONS = frozenset({"get_version", "get_debug", "reprobe"})
KNOWN_ACTIONS = sorted(MUTATING_ACTIONS | QUERY_ACTIONS | GLOBAL_ACTIONS)


@dataclass(frozen=True)
class PipeCommand:
    """A parsed pipe request."""
    pipe_name: str
    action: str
    pane_id: int | None = None
    emoji: str = ""
    name: str = ""

    @property
    def is_mutation(self) -> bool:
        return self.action in MUTATING_ACTIONS

    @property
    def is_query(self) -> bool:
        return self.action in QUERY_ACTIONS


def parse_pane_id(value: Any) -> int:
    """Accept a non-negative int or a string of digits."""
    if isinstance(value, bool):
        raise InvalidPaneIdError(value)
    if isinstance(value, int):
        if value < 0:
            raise InvalidPaneIdError(value)
        return value
    if isinstance(value, str):
        digits = value.strip()
        # ASCII digits only; isdigit() alone accepts "²"
        if digits.isascii() and digits.isdigit():
            return int(digits)
    raise InvalidPaneIdError(value)


def parse_command(pipe_name: str, payload: str | None) -> PipeCommand:
    """Parse a raw pipe payload. Raises a PayloadError subclass on bad input."""
    if payload is None or not payload.strip():
        raise PayloadError("missing payload")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise PayloadError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadError("payload must be a JSON object")

    if pipe_name == RENAME_PIPE:
        action = "set_name"
    else:
        action = str(data.get("action", "")).strip()
        if action not in KNOWN_ACTIONS:
            raise UnknownActionError(action, KNOWN_ACTIONS)

    pane_id = None
    if action not in GLOBAL_ACTIONS:
        if "pane_id" not in data:
            raise MissingParameterError(action, "pane_id")
        pane_id = parse_pane_id(data["pane_id"])

    emoji = str(data.get("emoji") or "")
    name = str(data.get("name") or "")
    if action == "set_status" and not emoji:
        raise MissingParameterError(action, "emoji")
    if action == "set_name" and not name:
        raise MissingParameterError(action, "name")

    return PipeCommand(
        pipe_name=pipe_name,
        action=action,
        pane_id=pane_id,
        emoji=emoji,
        name=name,
    )


def lookup_pane(pane_to_tab: PaneTabMap, pane_id: int) -> tuple[int, str]:
    try:
        return pane_to_tab[pane_id]
    except KeyError:
        raise UnknownPaneError(pane_id, sorted(pane_to_tab)) from None


def execute_query(command: PipeCommand, pane_to_tab: PaneTabMap) -> list[Effect]:
    """Answer get_status / get_name from the cached tab name."""
    _, current_name = lookup_pane(pane_to_tab, command.pane_id)
    if command.action == "get_status":
        output = extract_status(current_name)
    else:
        output = extract_base_name(current_name)
    logger.debug("%s pane=%d: '%s'", command.action, command.pane_id, output)
    return [PipeOutput(command.pipe_name, output)]


def execute_mutation(
    command: PipeCommand,
    pane_to_tab: PaneTabMap,
    table: IndexTable,
) -> list[Effect]:
    """Rename the pane's tab and refresh the cached name.

    Returns the rename plus an acknowledgement on the caller's pipe.
    """
    position, current_name = lookup_pane(pane_to_tab, command.pane_id)

    if command.action == "set_status":
        new_name = with_status(command.emoji, current_name)
    elif command.action == "clear_status":
        new_name = extract_base_name(current_name)
    else:
        new_name = command.name

    tab_index = table.index_at(position)
    logger.info(
        "%s on tab %d (position %d): '%s' -> '%s'",
        command.action, tab_index, position, current_name, new_name,
    )

    # Every pane sharing the tab sees the new name.
    for pane_id, (pane_position, _) in pane_to_tab.items():
        if pane_position == position:
            pane_to_tab[pane_id] = (position, new_name)

    return [RenameTab(tab_index, new_name), PipeOutput(command.pipe_name, ACK)]
