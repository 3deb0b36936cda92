"""Tab-status engine: persistent tab index discovery and pipe commands."""
from .models import (
    ACK,
    NOT_READY,
    PROBE_MARKER_GLYPH,
    ArmTimer,
    Effect,
    PaneInfo,
    PaneManifest,
    PaneTabMap,
    Phase,
    PipeOutput,
    RenameTab,
    TabInfo,
    marker,
    parse_marker,
)
from .config import EngineConfig
from .errors import (
    InvalidPaneIdError,
    MissingParameterError,
    PayloadError,
    TabStatusError,
    UnknownActionError,
    UnknownPaneError,
)
from .commands import PipeCommand, parse_command
from .index_table import IndexTable
from .mutation_queue import MutationQueue
from .probing import ProbeOutcome, ProbeStep, ProbingState
from .dispatcher import Dispatcher
from .yaml_config import load_yaml_config

__all__ = [
    # Dispatcher
    "Dispatcher",
    # Models
    "ACK",
    "NOT_READY",
    "PROBE_MARKER_GLYPH",
    "ArmTimer",
    "Effect",
    "PaneInfo",
    "PaneManifest",
    "PaneTabMap",
    "Phase",
    "PipeOutput",
    "RenameTab",
    "TabInfo",
    "marker",
    "parse_marker",
    # State
    "IndexTable",
    "MutationQueue",
    "ProbeOutcome",
    "ProbeStep",
    "ProbingState",
    # Commands
    "PipeCommand",
    "parse_command",
    # Config
    "EngineConfig",
    "load_yaml_config",
    # Errors
    "TabStatusError",
    "PayloadError",
    "MissingParameterError",
    "InvalidPaneIdError",
    "UnknownActionError",
    "UnknownPaneError",
]
