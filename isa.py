"""ISA: instruction kinds, the source symbol table and listing helpers."""

from __future__ import annotations

from enum import IntEnum
from typing import NamedTuple


class OpCode(IntEnum):
    """Keeps opcodes for all tape-machine operations."""

    INC = 1  # cell += arg (mod 256)
    DEC = 2  # cell -= arg (mod 256)
    RIGHT = 3  # PTR += arg
    LEFT = 4  # PTR -= arg

    OPEN = 10  # if cell == 0: PC = arg + 1
    CLOSE = 11  # if cell != 0: PC = arg + 1

    OUT = 20  # write cell to output stream
    IN = 21  # read one byte from input stream into cell


SYMBOLS: dict[str, OpCode] = {
    "+": OpCode.INC,
    "-": OpCode.DEC,
    ">": OpCode.RIGHT,
    "<": OpCode.LEFT,
    "[": OpCode.OPEN,
    "]": OpCode.CLOSE,
    ".": OpCode.OUT,
    ",": OpCode.IN,
}

# opcodes whose consecutive runs may be merged into one counted instruction
FOLDABLE = frozenset({OpCode.INC, OpCode.DEC, OpCode.RIGHT, OpCode.LEFT})

LOOPS = frozenset({OpCode.OPEN, OpCode.CLOSE})


class Instruction(NamedTuple):
    """One decoded instruction.

    `arg` is a repeat count for INC/DEC/RIGHT/LEFT and the index of the
    matching bracket for OPEN/CLOSE once brackets are resolved.
    `pos` is the source offset the instruction starts at (-1 if unknown).
    """

    opcode: OpCode
    arg: int = 1
    pos: int = -1


def mnemonic(instr: Instruction) -> str:
    """Get instruction mnemonic."""
    if instr.opcode in FOLDABLE or instr.opcode in LOOPS:
        return f"{instr.opcode.name} {instr.arg}"
    return instr.opcode.name


def listing(instructions: list[Instruction]) -> str:
    """Render a program as `<index> - <mnemonic>` lines."""
    return "\n".join(f"{i} - {mnemonic(ins)}" for i, ins in enumerate(instructions))
