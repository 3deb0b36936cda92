"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via TAB_STATUS_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Tab-status engine configuration."""

    # Single-shot timeout armed after every probe or restore rename.
    # A probe that sees no marker within this window is treated as a gap.
    probe_timeout_seconds: float = 1.0
    # Timer firings tolerated while waiting for a marker to be cleared
    # before the prober force-advances to the next candidate.
    max_restore_retries: int = 5
    # Candidates beyond multiplier × tab count abort to the identity fallback.
    candidate_multiplier: int = 3

    # Pipe the plugin answers on; "tab-rename" is always accepted too.
    pipe_name: str = "tab-status"

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    def max_candidate(self, tab_count: int) -> int:
        return tab_count * self.candidate_multiplier

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from TAB_STATUS_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("TAB_STATUS_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: TAB_STATUS_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no TAB_STATUS_* env vars set, using defaults")

        config = cls(
            probe_timeout_seconds=float(os.getenv(
                "TAB_STATUS_PROBE_TIMEOUT", str(cls.probe_timeout_seconds)
            )),
            max_restore_retries=int(os.getenv(
                "TAB_STATUS_MAX_RESTORE_RETRIES", str(cls.max_restore_retries)
            )),
            candidate_multiplier=int(os.getenv(
                "TAB_STATUS_CANDIDATE_MULTIPLIER", str(cls.candidate_multiplier)
            )),
            pipe_name=os.getenv("TAB_STATUS_PIPE_NAME", cls.pipe_name),
            log_level=os.getenv("TAB_STATUS_LOG_LEVEL", cls.log_level),
            log_file=os.getenv("TAB_STATUS_LOG_FILE") or None,
        )
        logger.info(
            "EngineConfig.from_env: probe_timeout=%.2fs max_restore_retries=%d "
            "candidate_multiplier=%d log_level=%s",
            config.probe_timeout_seconds, config.max_restore_retries,
            config.candidate_multiplier, config.log_level,
        )
        return config
