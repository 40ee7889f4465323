"""Register types and the instruction interface used by register allocation."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional


class OpKind(enum.Enum):
    """Whether an instruction reads, writes, or both reads and writes a register."""

    USE = "use"
    DEF = "def"
    USE_DEF = "use_def"


@dataclass(frozen=True, order=True)
class VReg:
    """A virtual register produced by instruction selection."""

    index: int

    def __str__(self) -> str:
        return f"v{self.index}"


@dataclass(frozen=True, order=True)
class PReg:
    """A physical register identified by its hardware encoding."""

    hw: int

    def __str__(self) -> str:
        return f"p{self.hw}"


@dataclass(frozen=True)
class RegOp:
    """A register operand declaration for the allocator."""

    vreg: VReg
    kind: OpKind


class RegAllocInst:
    """Interface instructions implement for liveness analysis and allocation.

    The defaults describe an ordinary instruction with no register operands
    that is not a label, branch, call or terminator.
    """

    def reg_operands(self) -> Iterable[RegOp]:
        """Register operands of this instruction."""
        return ()

    def label_id(self) -> Optional[int]:
        """The label id if this is a label pseudo-instruction, else None."""
        return None

    def branch_targets(self) -> Iterable[int]:
        """Label ids this instruction may branch to (fallthrough is implicit)."""
        return ()

    def clobbers(self) -> Iterable[PReg]:
        """Physical registers destroyed by this instruction (e.g. by a call)."""
        return ()

    def is_terminator(self) -> bool:
        """Whether this instruction ends a basic block."""
        return False

    def falls_through(self) -> bool:
        """Whether execution can continue with the next instruction."""
        return True