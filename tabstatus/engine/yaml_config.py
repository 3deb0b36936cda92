"""YAML configuration loader.

Loads a single YAML file on top of the TAB_STATUS_* environment.
Keys missing from the file keep the value from the environment
(or the dataclass default).

Example YAML:
    engine:
      probe_timeout_seconds: 0.5
      max_restore_retries: 5
      candidate_multiplier: 3
      pipe_name: tab-status

    logging:
      level: DEBUG
      file: ~/.tab-status/logs/tab-status.log
"""
from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path

import yaml

from .config import EngineConfig

logger = logging.getLogger(__name__)

_ENGINE_FIELDS = {
    "probe_timeout_seconds": float,
    "max_restore_retries": int,
    "candidate_multiplier": int,
    "pipe_name": str,
}


def load_yaml_config(
    path: str | Path,
    base: EngineConfig | None = None,
) -> EngineConfig:
    """Load and parse a YAML config file into an EngineConfig.

    *base* supplies values for keys the file does not set; by default
    it is read from the environment.
    """
    path = Path(path).expanduser()
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise yaml.YAMLError(
            f"{path}: top level must be a mapping, got {type(raw).__name__}"
        )

    config = base if base is not None else EngineConfig.from_env()
    values = {f.name: getattr(config, f.name) for f in fields(config)}

    engine_raw = raw.get("engine") or {}
    for key, value in engine_raw.items():
        caster = _ENGINE_FIELDS.get(key)
        if caster is None:
            logger.warning("load_yaml_config: ignoring unknown engine key '%s'", key)
            continue
        values[key] = caster(value)

    logging_raw = raw.get("logging") or {}
    if "level" in logging_raw:
        values["log_level"] = str(logging_raw["level"]).upper()
    if logging_raw.get("file"):
        values["log_file"] = str(Path(logging_raw["file"]).expanduser())

    logger.info(
        "Parsed YAML config %s: sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )
    return EngineConfig(**values)
