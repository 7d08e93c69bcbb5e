"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

EOF_POLICIES = ("error", "keep")

DEFAULTS: dict[str, Any] = {
    "tape_cells": 30000,
    "tape_chunk": 4096,
    "eof_policy": "error",
    "tick_limit": None,
    "lenient_log": False,
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        cfg["tape_cells"] = int(cfg.get("tape_cells", DEFAULTS["tape_cells"]))
        cfg["tape_chunk"] = int(cfg.get("tape_chunk", DEFAULTS["tape_chunk"]))

        # eof_policy (case-insensitive string)
        v = cfg.get("eof_policy")
        cfg["eof_policy"] = DEFAULTS["eof_policy"] if v is None else str(v).strip().lower()

        # tick_limit (None means unbounded)
        v = cfg.get("tick_limit")
        if v is None:
            cfg["tick_limit"] = None
        else:
            cfg["tick_limit"] = int(v)

        # lenient_log (bool coercion)
        cfg["lenient_log"] = bool(cfg.get("lenient_log", DEFAULTS["lenient_log"]))
    except (TypeError, ValueError) as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if cfg["tape_cells"] <= 0:
        msg = "tape_cells must be positive"
        raise ConfigError(msg)

    if cfg["tape_chunk"] <= 0:
        msg = "tape_chunk must be positive"
        raise ConfigError(msg)

    if cfg["eof_policy"] not in EOF_POLICIES:
        msg = f"eof_policy must be one of {', '.join(EOF_POLICIES)} (got {cfg['eof_policy']!r})"
        raise ConfigError(msg)

    if cfg["tick_limit"] is not None and cfg["tick_limit"] <= 0:
        msg = "tick_limit must be positive or null"
        raise ConfigError(msg)


def load_config(path_or_dict: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str (path) -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, str):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    unknown = sorted(set(cfg) - set(DEFAULTS))
    if unknown:
        msg = f"Unknown config keys: {', '.join(map(str, unknown))}"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
