"""Fatal load-time and run-time errors of the tape machine."""

from __future__ import annotations

from isa import Instruction, mnemonic


class MachineError(Exception):
    """Base class for errors that abort a run."""

    pass


class SourceReadError(MachineError):
    """Raised when the program file is missing or unreadable."""

    def __init__(self, path: str, reason: str) -> None:
        """Remember the path and the reason the read failed."""
        self.path = path
        self.reason = reason
        super().__init__(f"cannot read {path}: {reason}")


class UnbalancedBracketsError(MachineError):
    """Raised when loop brackets don't pair up."""

    def __init__(self, pos: int, kind: str) -> None:
        """`kind` is "unmatched ']'" or "unclosed '['"; `pos` is its source offset."""
        self.pos = pos
        self.kind = kind
        super().__init__(f"{kind} at offset {pos}")


class TapeUnderflowError(MachineError):
    """Raised when the cell pointer would move left of cell 0."""

    def __init__(self, pc: int, instr: Instruction, pointer: int) -> None:
        """Store the failing instruction and the pointer it would produce."""
        self.pc = pc
        self.instr = instr
        self.pointer = pointer
        msg = f"pc {pc} ({mnemonic(instr)}, offset {instr.pos}): cell pointer would become {pointer}"
        super().__init__(msg)


class InputExhaustedError(MachineError):
    """Raised when IN finds no more bytes on the input stream."""

    def __init__(self, pc: int, instr: Instruction) -> None:
        """Store the failing instruction."""
        self.pc = pc
        self.instr = instr
        super().__init__(f"pc {pc} ({mnemonic(instr)}, offset {instr.pos}): input stream exhausted")
