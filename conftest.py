"""Shared pytest configuration: golden-file parametrization and helpers."""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import yaml

GOLDEN_DEFAULT = "golden/*.yaml"


def pytest_configure(config: Any) -> None:
    """Configure the tests."""
    config.addinivalue_line(
        "markers",
        "golden_test(pattern): parameterize test with YAML files matching pattern",
    )


def _iter_marker_patterns(node: Any) -> Iterator[str]:
    """Yield pattern strings from golden_test markers on `node`."""
    for m in node.iter_markers(name="golden_test"):
        yield m.args[0] if m.args else GOLDEN_DEFAULT


def _load_golden(p: Path) -> dict[str, Any]:
    """Load one golden record; a broken file becomes a record that fails loudly."""
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        data = {"__yaml_load_error__": str(e)}
    if not isinstance(data, dict):
        data = {"__yaml_load_error__": f"{p.name} does not contain a mapping"}
    data.setdefault("__path__", str(p))
    data.setdefault("__name__", p.name)
    return data


def pytest_generate_tests(metafunc: Any) -> None:
    """Generate tests (parametrization) from YAML golden files."""
    if "golden" not in metafunc.fixturenames:
        return

    patterns: list[str] = list(_iter_marker_patterns(metafunc.definition)) or [GOLDEN_DEFAULT]
    root = Path(metafunc.config.rootpath)

    files: list[Path] = []
    for pat in patterns:
        files.extend(sorted(root.glob(pat)))

    metafunc.parametrize("golden", [_load_golden(p) for p in files], ids=[p.name for p in files])


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Iterator[None]:
    """Drop handlers installed by init_logging so tests don't leak log files."""
    root = logging.getLogger()
    level = root.level
    yield
    for h in list(root.handlers):
        if isinstance(h, (logging.FileHandler, logging.NullHandler)) or type(h) is logging.StreamHandler:
            h.close()
            root.removeHandler(h)
    root.setLevel(level)


@pytest.fixture
def run_bf() -> Callable[..., tuple[bytes, int, str]]:
    """Return a helper that runs source text and captures its output bytes."""
    from processor import run_source

    def _run(source: str, stdin: bytes = b"", **config: Any) -> tuple[bytes, int, str]:
        out = io.BytesIO()
        ticks, state = run_source(source, config or None, io.BytesIO(stdin), out)
        return out.getvalue(), ticks, state

    return _run
