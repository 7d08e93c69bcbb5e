"""Golden-test runner for the source -> tape machine pipeline.

This test loads golden YAML records, translates and runs each program with
debug logging on, then compares produced outputs (stdout bytes, listing,
ticks, state, raised error, log lines) against the expectations.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import processor
import pytest
from errors import MachineError
from isa import listing
from translator import translate


@pytest.mark.golden_test("golden/*.yaml")
def test_translator_and_vm(golden: Any, tmp_path: Path) -> None:
    """Run one golden record: translate, run and compare outputs."""
    assert "__yaml_load_error__" not in golden, golden.get("__yaml_load_error__")

    src = golden.get("in_source")
    if src is None:
        pytest.skip("No source provided in golden record")
    stdin = golden.get("in_stdin", "") or ""
    cfg = golden.get("config")
    expect = golden.get("expect") or {}

    log_path = tmp_path / "processor.log"
    processor.init_logging(logfile=str(log_path), debug=True, console=False)

    code_hex: str | None = None
    try:
        code_hex = listing(translate(src))
    except MachineError:
        code_hex = None

    out = io.BytesIO()
    ticks: int | None = None
    state: str | None = None
    error: MachineError | None = None
    try:
        ticks, state = processor.run_source(src, cfg, io.BytesIO(stdin.encode("latin-1")), out)
    except MachineError as e:
        error = e

    processor._flush_logging_handlers()
    log_text = log_path.read_text(encoding="utf-8") if log_path.exists() else ""

    def _mismatch(msg_title: str, got_text: str, expected_text: str) -> str:
        return f"{msg_title}\n--- got ---\n{got_text}\n--- expected ---\n{expected_text}"

    # 1) error kind
    if "error" in expect:
        assert error is not None, f"expected {expect['error']}, run finished with state {state}"
        assert type(error).__name__ == expect["error"]
    elif error is not None:
        raise AssertionError(f"unexpected machine error: {error!r}")

    # 2) stdout (exact bytes, expectations written as latin-1 text)
    if "out_stdout" in expect:
        got = out.getvalue().decode("latin-1")
        if got != expect["out_stdout"]:
            raise AssertionError(_mismatch("stdout mismatch", repr(got), repr(expect["out_stdout"])))

    # 3) listing, and the out.lst artifact written beside the debug log
    if "out_code_hex" in expect:
        assert code_hex is not None, "program failed to translate"
        exp_code_hex = (expect["out_code_hex"] or "").strip()
        if code_hex.strip() != exp_code_hex:
            raise AssertionError(_mismatch("code listing mismatch", code_hex, exp_code_hex))

    lst_path = tmp_path / processor.LISTING_FILE
    if code_hex is not None:
        assert lst_path.exists(), "debug run must write out.lst"
        assert lst_path.read_text(encoding="utf-8").strip() == code_hex.strip()
        assert (tmp_path / processor.TAPE_DUMP_FILE).exists()

    # 4) ticks/state
    if "ticks" in expect:
        assert ticks == int(expect["ticks"]), f"ticks mismatch: got {ticks} expected {expect['ticks']}"
    if "state" in expect:
        assert state == expect["state"], f"state mismatch: got {state} expected {expect['state']}"

    # 5) processor log
    for line in expect.get("log_contains", []) or []:
        assert line in log_text, _mismatch("log line missing", log_text[:4000], line)
