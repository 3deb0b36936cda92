"""Status prefix helpers.

A status is the first grapheme cluster of a tab name when it is
followed by a space. Grapheme-aware so flags (🇺🇸) and skin-tone
sequences (👋🏻) count as a single status.

    "🤖 Working" -> status "🤖", base "Working"
    "! Alert"    -> status "!",  base "Alert"
    "Working"    -> status "",   base "Working"
"""
from __future__ import annotations

import regex

_STATUS_PREFIX = regex.compile(r"^(\X) ")


def extract_status(name: str) -> str:
    match = _STATUS_PREFIX.match(name)
    return match.group(1) if match else ""


def extract_base_name(name: str) -> str:
    """Strip one status layer. "! ! Tab" -> "! Tab"."""
    match = _STATUS_PREFIX.match(name)
    return name[match.end():] if match else name


def with_status(status: str, name: str) -> str:
    """Replace any existing status on *name* with *status*."""
    return f"{status} {extract_base_name(name)}"
