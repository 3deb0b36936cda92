"""tab-status: tab renaming and status annotation for terminal session managers."""

__version__ = "0.4.0"
