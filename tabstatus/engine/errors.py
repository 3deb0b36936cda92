"""Exception hierarchy for the tab-status engine.

Raised while parsing and executing pipe commands. The dispatcher
catches TabStatusError at the pipe boundary and answers with an
empty response; nothing here is allowed to reach the host.
"""
from __future__ import annotations


class TabStatusError(Exception):
    """Base exception for all tab-status errors."""


class PayloadError(TabStatusError):
    """Pipe payload is missing or is not a JSON object."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid payload: {reason}")


class MissingParameterError(PayloadError):
    """A required parameter is absent or empty for the requested action."""
    def __init__(self, action: str, parameter: str):
        self.action = action
        self.parameter = parameter
        super().__init__(f"'{parameter}' is required for '{action}'")


class InvalidPaneIdError(PayloadError):
    """pane_id is not a non-negative integer."""
    def __init__(self, value: object):
        self.value = value
        super().__init__(f"pane_id must be a number, got {value!r}")


class UnknownActionError(TabStatusError):
    """Action name is not part of the pipe protocol."""
    def __init__(self, action: str, known: list[str]):
        self.action = action
        self.known = known
        super().__init__(
            f"Unknown action '{action}'. Use one of: {', '.join(known)}"
        )


class UnknownPaneError(TabStatusError):
    """Pane is not present in the current pane → tab mapping."""
    def __init__(self, pane_id: int, known: list[int]):
        self.pane_id = pane_id
        self.known = known
        super().__init__(f"Pane {pane_id} not found. Known panes: {known}")
