"""Module: turn tape-machine source text into a resolved instruction list.

This module contains:
- tokenize(s) -> list of primitive instructions (count 1 each)
- fold(instructions) -> run-length folded instructions
- resolve_brackets(instructions) -> instructions with loop jump targets
- translate(s) -> the whole pipeline
- read_source(path) -> program text
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from errors import SourceReadError, UnbalancedBracketsError
from isa import FOLDABLE, SYMBOLS, Instruction, OpCode, listing


def tokenize(s: str) -> list[Instruction]:
    """Map every command character to an instruction; everything else is a comment."""
    return [Instruction(SYMBOLS[ch], 1, i) for i, ch in enumerate(s) if ch in SYMBOLS]


def fold(instructions: list[Instruction]) -> list[Instruction]:
    """Merge runs of the same INC/DEC/RIGHT/LEFT into one counted instruction.

    Single forward pass. Loop brackets, OUT and IN are never merged.
    Folding an already folded list returns an equal list.
    """
    out: list[Instruction] = []
    for ins in instructions:
        if out and ins.opcode in FOLDABLE and out[-1].opcode == ins.opcode:
            prev = out[-1]
            out[-1] = prev._replace(arg=prev.arg + ins.arg)
            continue
        out.append(ins)
    return out


def resolve_brackets(instructions: list[Instruction]) -> list[Instruction]:
    """Return a copy where each OPEN/CLOSE holds the index of its partner.

    Raises UnbalancedBracketsError when a `]` has no opener or a `[` is
    never closed.
    """
    resolved = list(instructions)
    stack: list[int] = []
    for idx, ins in enumerate(resolved):
        if ins.opcode == OpCode.OPEN:
            stack.append(idx)
        elif ins.opcode == OpCode.CLOSE:
            if not stack:
                raise UnbalancedBracketsError(ins.pos, "unmatched ']'")
            start = stack.pop()
            resolved[start] = resolved[start]._replace(arg=idx)
            resolved[idx] = ins._replace(arg=start)

    if stack:
        # report the innermost unclosed bracket
        raise UnbalancedBracketsError(resolved[stack[-1]].pos, "unclosed '['")
    return resolved


def translate(s: str, optimize: bool = True) -> list[Instruction]:
    """Tokenize, optionally fold and resolve `s` into a runnable program."""
    instructions = tokenize(s)
    logging.debug("translate: %d primitive instructions from %d chars", len(instructions), len(s))
    if optimize:
        instructions = fold(instructions)
        logging.debug("translate: %d instructions after folding", len(instructions))
    return resolve_brackets(instructions)


def read_source(path: str) -> str:
    """Read a program file as text.

    Bytes that are not valid UTF-8 can only be comments, so they are
    replaced instead of rejected.
    """
    p = Path(path)
    try:
        raw = p.read_bytes()
    except OSError as e:
        reason = e.strerror or str(e)
        raise SourceReadError(path, reason) from e
    return raw.decode("utf-8", errors="replace")


# --- CLI ---
if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Translate tape-machine source and print the program listing")
    ap.add_argument("input", help="source file")
    ap.add_argument("--no-opt", action="store_true", help="skip run-length folding")
    args = ap.parse_args()

    print(listing(translate(read_source(args.input), optimize=not args.no_opt)))
