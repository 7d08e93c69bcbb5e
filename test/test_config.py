"""Config loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from config import DEFAULTS, ConfigError, load_config


def test_none_returns_defaults() -> None:
    cfg = load_config(None)
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_dict_overlay_and_type_coercion() -> None:
    cfg = load_config({"tape_cells": "64", "eof_policy": "KEEP", "tick_limit": "1000"})
    assert cfg["tape_cells"] == 64
    assert cfg["eof_policy"] == "keep"
    assert cfg["tick_limit"] == 1000
    assert cfg["tape_chunk"] == DEFAULTS["tape_chunk"]


def test_yaml_file(tmp_path: Path) -> None:
    p = tmp_path / "machine.yaml"
    p.write_text("tape_cells: 16\ntape_chunk: 8\ntick_limit: null\nlenient_log: true\n", encoding="utf-8")
    cfg = load_config(str(p))
    assert cfg["tape_cells"] == 16
    assert cfg["tape_chunk"] == 8
    assert cfg["tick_limit"] is None
    assert cfg["lenient_log"] is True


def test_empty_yaml_file_gives_defaults(tmp_path: Path) -> None:
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_config(str(p)) == DEFAULTS


@pytest.mark.parametrize(
    "overlay",
    [
        {"tape_cells": 0},
        {"tape_chunk": -1},
        {"eof_policy": "wrap"},
        {"tick_limit": 0},
        {"tape_cells": "many"},
        {"no_such_key": 1},
    ],
)
def test_invalid_values_are_rejected(overlay: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        load_config(overlay)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "missing.yaml"))


def test_non_mapping_file(tmp_path: Path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(p))


def test_broken_yaml(tmp_path: Path) -> None:
    p = tmp_path / "broken.yaml"
    p.write_text("tape_cells: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to load"):
        load_config(str(p))


def test_unsupported_input() -> None:
    with pytest.raises(ConfigError):
        load_config(42)  # type: ignore[arg-type]
