"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides tape-machine execution, logging initialization and optional debug
output files (out.lst / tape_dump.txt) emitted when debug logging is enabled.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, BinaryIO

from config import DEFAULTS, EOF_POLICIES, ConfigError, load_config
from errors import InputExhaustedError, MachineError, TapeUnderflowError
from instrument import measure
from isa import Instruction, OpCode, listing, mnemonic
from translator import read_source, translate

LOGFILE = "processor.log"
LISTING_FILE = "out.lst"
TAPE_DUMP_FILE = "tape_dump.txt"


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile` when debug is on.

    Without debug nothing is logged and no file is created. If console=True
    (with debug) also echo logs to stderr, since stdout carries program bytes.

    NOTE: when debug=True we use a compact log format without timestamp so that
    entries look like:
        DEBUG root:processor.py:301 ControlUnit: start, 12 instructions
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        if isinstance(h, logging.FileHandler):
            h.close()
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    # plain runs write no files: the log file only exists in debug mode
    if not debug:
        root.addHandler(logging.NullHandler())
        return

    file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"

    # Indents all but the first formatted record so the trace reads as one block.
    class _IndentOnceFormatter(logging.Formatter):
        def __init__(self, fmt: str | None = None):
            super().__init__(fmt)
            self._seen_first = False

        def format(self, record: logging.LogRecord) -> str:
            s = super().format(record)
            if not self._seen_first:
                self._seen_first = True
                return s
            return "    " + s

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(_IndentOnceFormatter(file_fmt))
    root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


# --- debug output helpers ---
def _flush_logging_handlers() -> None:
    for h in list(logging.getLogger().handlers):
        h.flush()


def _artifact_dir() -> Path:
    """Directory of the active log file; debug artifacts are written beside it."""
    for h in logging.getLogger().handlers:
        if isinstance(h, logging.FileHandler):
            return Path(h.baseFilename).parent
    return Path.cwd()


def _write_listing(instructions: list[Instruction], path: Path) -> None:
    try:
        path.write_text(listing(instructions) + "\n", encoding="utf-8")
    except OSError as e:
        logging.debug("Failed to write %s: %s", path, e)


def _write_tape_dump(dp: Datapath, path: Path) -> None:
    # dump up to the last non-zero cell or the pointer, whichever is further
    last = dp.PTR
    for i in range(len(dp.tape) - 1, dp.PTR, -1):
        if dp.tape[i]:
            last = i
            break
    try:
        with path.open("w", encoding="utf-8") as f:
            f.write("=== TAPE DUMP ===\n")
            f.write(f"tape_len: {len(dp.tape)}  PTR: {dp.PTR}  PC: {dp.PC}  ticks: {dp.tick}\n\n")
            for i in range(last + 1):
                v = dp.tape[i]
                ch = chr(v) if 32 <= v < 127 else "."
                marker = "  <- PTR" if i == dp.PTR else ""
                f.write(f"{i:08d}: {v:3d} 0x{v:02X} {ch}{marker}\n")
            f.write("\n=== END DUMP ===\n")
    except OSError as e:
        logging.debug("Failed to write %s: %s", path, e)


def _write_debug_out_files(dp: Datapath) -> None:
    if logging.getLogger().getEffectiveLevel() != logging.DEBUG:
        return
    _flush_logging_handlers()
    outdir = _artifact_dir()
    _write_listing(dp.instructions, outdir / LISTING_FILE)
    _write_tape_dump(dp, outdir / TAPE_DUMP_FILE)


class Datapath:
    """Datapath (tape + registers + byte streams) for the tape machine."""

    instructions: list[Instruction]
    tape: bytearray
    tape_chunk: int

    PC: int  # index of the next instruction
    PTR: int  # index of the addressed cell

    tick: int
    tick_limit: int | None
    eof_policy: str
    lenient_log: bool

    in_stream: BinaryIO | None
    out_stream: BinaryIO | None
    output_count: int

    def __init__(
        self,
        instructions: list[Instruction],
        in_stream: BinaryIO | None = None,
        out_stream: BinaryIO | None = None,
        tape_cells: int = 30000,
        tape_chunk: int = 4096,
        eof_policy: str = "error",
        tick_limit: int | None = None,
        lenient_log: bool = False,
    ) -> None:
        """Initialize Datapath state with a zeroed tape."""
        self.instructions = list(instructions)

        if eof_policy not in EOF_POLICIES:
            err = f"eof_policy must be one of {', '.join(EOF_POLICIES)} (got {eof_policy!r})"
            raise ValueError(err)
        if int(tape_cells) <= 0:
            err = "tape_cells must be positive"
            raise ValueError(err)
        self.tape = bytearray(int(tape_cells))
        self.tape_chunk = max(1, int(tape_chunk))

        # registers/state
        self.PC = 0
        self.PTR = 0
        self.tick = 0
        self.tick_limit = tick_limit
        self.eof_policy = eof_policy
        self.lenient_log = bool(lenient_log)

        self.in_stream = in_stream
        self.out_stream = out_stream
        self.output_count = 0
        logging.debug(
            "Datapath: %d instructions, tape of %d cells (chunk %d), eof_policy=%s",
            len(self.instructions),
            len(self.tape),
            self.tape_chunk,
            self.eof_policy,
        )

    # --- cell access ---
    def read_cell(self) -> int:
        """Return the value of the addressed cell."""
        return self.tape[self.PTR]

    def write_cell(self, value: int) -> None:
        """Store `value` modulo 256 into the addressed cell."""
        self.tape[self.PTR] = value & 0xFF

    # --- pointer movement ---
    def _grow(self, need: int) -> None:
        """Extend the tape with zero cells so that index `need` is valid.

        New length is at least double the old one, so repeated growth costs
        amortized constant time per cell.
        """
        old_len = len(self.tape)
        new_len = max(old_len * 2, need + 1 + self.tape_chunk)
        self.tape.extend(bytes(new_len - old_len))
        logging.debug("Datapath: tape grown %d -> %d cells (PTR=%d)", old_len, new_len, need)

    def move_right(self, n: int) -> None:
        """Move the pointer right by `n` cells, growing the tape if needed."""
        ptr = self.PTR + n
        if ptr >= len(self.tape):
            self._grow(ptr)
        self.PTR = ptr

    def move_left(self, n: int) -> None:
        """Move the pointer left by `n` cells.

        Raises TapeUnderflowError instead of moving past cell 0.
        """
        ptr = self.PTR - n
        if ptr < 0:
            raise TapeUnderflowError(self.PC, self.instructions[self.PC], ptr)
        self.PTR = ptr

    # --- byte streams ---
    def output_cell(self) -> None:
        """Write the addressed cell as one byte and flush it right away."""
        v = self.tape[self.PTR]
        self.output_count += 1
        if self.out_stream is None:
            return
        self.out_stream.write(bytes((v,)))
        self.out_stream.flush()

    def input_cell(self) -> None:
        """Read one byte from the input stream into the addressed cell.

        On end of input either raise InputExhaustedError (eof_policy "error")
        or leave the cell unchanged (eof_policy "keep").
        """
        b = self.in_stream.read(1) if self.in_stream is not None else b""
        if b:
            self.tape[self.PTR] = b[0]
            return
        if self.eof_policy == "keep":
            logging.debug("IN: input exhausted at pc %d -> cell %d left unchanged", self.PC, self.PTR)
            return
        raise InputExhaustedError(self.PC, self.instructions[self.PC])


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp

    def _log_step(self, step: str, instr: Instruction) -> None:
        dp = self.dp
        logging.debug(
            f"STEP: {step:<9} TICK: {dp.tick:6d} PC: {dp.PC:5d} PTR: {dp.PTR:5d} "
            f"CELL: {dp.tape[dp.PTR]:3d}\tINSTR: {mnemonic(instr)}"
        )

    def run(self) -> tuple[int, str]:
        """Execute until PC runs off the end of the program or the tick limit is hit.

        Returns (ticks, state) where state is "halted" or "tick_limit".
        Machine errors propagate to the caller unchanged.
        """
        dp = self.dp
        program = dp.instructions
        end = len(program)
        trace = logging.getLogger().isEnabledFor(logging.DEBUG) and not dp.lenient_log
        logging.debug("ControlUnit: start, %d instructions", end)

        while dp.PC < end:
            if dp.tick_limit is not None and dp.tick >= dp.tick_limit:
                logging.debug("Tick limit %d reached at PC %d", dp.tick_limit, dp.PC)
                return dp.tick, "tick_limit"

            instr = program[dp.PC]
            if trace:
                self._log_step("FETCH", instr)

            self.exec(instr)
            dp.tick += 1

            if trace:
                self._log_step("EXECUTED", instr)

        logging.debug("HALT: PC %d reached end of program after %d ticks", dp.PC, dp.tick)
        return dp.tick, "halted"

    def exec(self, instr: Instruction) -> None:
        """Execute one instruction and advance PC."""
        dp = self.dp
        opcode = instr.opcode
        arg = instr.arg

        if opcode == OpCode.INC:
            dp.write_cell(dp.read_cell() + arg)
            dp.PC += 1
            return

        if opcode == OpCode.DEC:
            dp.write_cell(dp.read_cell() - arg)
            dp.PC += 1
            return

        if opcode == OpCode.RIGHT:
            dp.move_right(arg)
            dp.PC += 1
            return

        if opcode == OpCode.LEFT:
            dp.move_left(arg)
            dp.PC += 1
            return

        # both brackets jump to just past their partner
        if opcode == OpCode.OPEN:
            dp.PC = arg + 1 if dp.read_cell() == 0 else dp.PC + 1
            return

        if opcode == OpCode.CLOSE:
            dp.PC = arg + 1 if dp.read_cell() != 0 else dp.PC + 1
            return

        if opcode == OpCode.OUT:
            dp.output_cell()
            dp.PC += 1
            return

        if opcode == OpCode.IN:
            dp.input_cell()
            dp.PC += 1
            return

        err = f"Unhandled opcode: {opcode!r}"
        raise RuntimeError(err)


# ---------- Public API ----------
def make_datapath(
    instructions: list[Instruction],
    config: dict[str, Any] | None,
    in_stream: BinaryIO | None,
    out_stream: BinaryIO | None,
) -> Datapath:
    """Build a Datapath for `instructions` from a (possibly partial) config dict."""
    cfg = dict(DEFAULTS)
    if config is not None:
        cfg.update(config)
    return Datapath(
        instructions,
        in_stream,
        out_stream,
        tape_cells=cfg["tape_cells"],
        tape_chunk=cfg["tape_chunk"],
        eof_policy=cfg["eof_policy"],
        tick_limit=cfg["tick_limit"],
        lenient_log=cfg["lenient_log"],
    )


def run_source(
    source: str,
    config: dict[str, Any] | None = None,
    in_stream: BinaryIO | None = None,
    out_stream: BinaryIO | None = None,
    optimize: bool = True,
) -> tuple[int, str]:
    """Translate and run `source`; return (ticks, state).

    Output bytes go to `out_stream` as they are produced, so anything written
    before a machine error stays written.
    """
    program = translate(source, optimize=optimize)
    dp = make_datapath(program, load_config(config), in_stream, out_stream)
    try:
        return ControlUnit(dp).run()
    finally:
        _write_debug_out_files(dp)


# ---------- CLI ----------
def _detach_stdout() -> None:
    """Point stdout at devnull so the interpreter's exit-time flush can't fail again."""
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except (AttributeError, OSError, ValueError):
        pass


def main(argv: list[str] | None = None) -> int:
    """Run a program file; return the process exit code."""
    ap = argparse.ArgumentParser(
        prog="bf-run",
        description="Tape-machine interpreter. Program output goes to stdout, program input comes from stdin.",
    )
    ap.add_argument("program", nargs="?", help="program source file")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--no-opt", action="store_true", help="disable run-length folding")
    ap.add_argument("--stats", action="store_true", help="print elapsed time and instruction count to stderr")

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to stderr (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args(argv)

    if args.program is None:
        print(f"Usage: {ap.prog} <filename>")
        return 0

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    try:
        program = translate(read_source(args.program), optimize=not args.no_opt)
    except MachineError as e:
        logging.debug("Load failed: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1

    dp = make_datapath(program, cfg, sys.stdin.buffer, sys.stdout.buffer)
    cu = ControlUnit(dp)
    try:
        if args.stats:
            stats = measure(cu)
            print(stats.summary(), file=sys.stderr)
        else:
            cu.run()
    except MachineError as e:
        logging.debug("Run aborted: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except BrokenPipeError:
        # reader went away (e.g. `| head -c1`); the rest of the output is unwanted
        logging.debug("Run aborted: stdout closed by reader at PC %d", dp.PC)
        _detach_stdout()
        return 1
    finally:
        _write_debug_out_files(dp)
    return 0


if __name__ == "__main__":
    sys.exit(main())
