"""Timing wrapper around a ControlUnit run.

It only reads the machine after the run; execution itself is untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from processor import ControlUnit


@dataclass(frozen=True)
class RunStats:
    """Wall-clock duration and retired instruction count of one run."""

    elapsed_ns: int
    instructions: int
    state: str

    @property
    def seconds(self) -> float:
        """Elapsed wall-clock time in seconds."""
        return self.elapsed_ns / 1e9

    @property
    def ns_per_instruction(self) -> float:
        """Average nanoseconds per retired instruction (0 for an empty run)."""
        if self.instructions == 0:
            return 0.0
        return self.elapsed_ns / self.instructions

    @property
    def mips(self) -> float:
        """Millions of instructions per second."""
        if self.elapsed_ns == 0:
            return 0.0
        return self.instructions * 1e3 / self.elapsed_ns

    def summary(self) -> str:
        """One-line human-readable report."""
        return (
            f"state: {self.state}  elapsed: {self.seconds:.6f} s  "
            f"instructions: {self.instructions}  "
            f"{self.ns_per_instruction:.1f} ns/instr  {self.mips:.2f} MIPS"
        )


def measure(cu: ControlUnit) -> RunStats:
    """Run `cu` to completion and return its timing.

    Machine errors propagate; no stats are produced for a failed run.
    """
    start_tick = cu.dp.tick
    start = time.perf_counter_ns()
    _, state = cu.run()
    elapsed = time.perf_counter_ns() - start
    stats = RunStats(elapsed_ns=elapsed, instructions=cu.dp.tick - start_tick, state=state)
    logging.debug("measure: %s", stats.summary())
    return stats
