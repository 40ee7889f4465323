"""Target-independent building blocks for instruction selection.

IR values are any objects with an integer ``index`` attribute and a boolean
``is_block_arg`` attribute; block arguments and instruction results live in
separate index spaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, TypeVar

from tuffy.regs import PReg, VReg

T = TypeVar("T")
CC = TypeVar("CC")
I = TypeVar("I")  # noqa: E741


class _Value(Protocol):
    index: int
    is_block_arg: bool


def _check_index(index: int, size: int, what: str) -> int:
    if not 0 <= index < size:
        raise IndexError(f"{what} index {index} out of range for capacity {size}")
    return index


def _lookup(slots: list[Optional[T]], index: int) -> Optional[T]:
    return slots[index] if 0 <= index < len(slots) else None


class VRegMap:
    """Map from IR value to virtual register."""

    def __init__(self, inst_capacity: int, block_arg_capacity: int) -> None:
        self._values: list[Optional[VReg]] = [None] * inst_capacity
        self._block_args: list[Optional[VReg]] = [None] * block_arg_capacity

    def _slots(self, val: _Value) -> list[Optional[VReg]]:
        return self._block_args if val.is_block_arg else self._values

    def assign(self, val: _Value, vreg: VReg) -> None:
        """Record that ``val`` lives in ``vreg``. Raises IndexError past capacity."""
        slots = self._slots(val)
        slots[_check_index(val.index, len(slots), "value")] = vreg

    def get(self, val: _Value) -> Optional[VReg]:
        """The virtual register of ``val``, or None if it has none."""
        return _lookup(self._slots(val), val.index)


class StackMap:
    """Stack slot allocations as negative offsets from the frame pointer."""

    def __init__(self, inst_capacity: int, block_arg_capacity: int) -> None:
        self._values: list[Optional[int]] = [None] * inst_capacity
        self._block_args: list[Optional[int]] = [None] * block_arg_capacity
        self.frame_size = 0

    def _slots(self, val: _Value) -> list[Optional[int]]:
        return self._block_args if val.is_block_arg else self._values

    def alloc(self, val: _Value, nbytes: int) -> int:
        """Reserve ``nbytes`` for ``val`` and return its frame offset."""
        slots = self._slots(val)
        index = _check_index(val.index, len(slots), "value")
        self.frame_size += nbytes
        # Natural alignment, at least 8 bytes for pointers.
        align = max(nbytes, 8)
        self.frame_size = (self.frame_size + align - 1) & ~(align - 1)
        offset = -self.frame_size
        slots[index] = offset
        return offset

    def get(self, val: _Value) -> Optional[int]:
        """The frame offset of ``val``, or None if it has no slot."""
        return _lookup(self._slots(val), val.index)


class CmpMap(Generic[CC]):
    """Comparison results, so conditional branches can emit fused jumps."""

    def __init__(self, capacity: int) -> None:
        self._codes: list[Optional[CC]] = [None] * capacity

    def set(self, val: _Value, cc: CC) -> None:
        """Record the condition code computed by ``val``."""
        self._codes[_check_index(val.index, len(self._codes), "value")] = cc

    def get(self, val: _Value) -> Optional[CC]:
        """The condition code of ``val``, or None. Raises IndexError past capacity."""
        return self._codes[_check_index(val.index, len(self._codes), "value")]


@dataclass
class VRegAlloc:
    """Sequential virtual register allocator."""

    next: int = 0
    constraints: list[Optional[PReg]] = field(default_factory=list)
    """Fixed physical register per VReg index; None leaves the choice free."""

    def alloc(self) -> VReg:
        """Allocate a fresh unconstrained virtual register."""
        return self._new(None)

    def alloc_fixed(self, preg: PReg) -> VReg:
        """Allocate a fresh virtual register constrained to ``preg``."""
        return self._new(preg)

    def _new(self, constraint: Optional[PReg]) -> VReg:
        vreg = VReg(self.next)
        self.next += 1
        self.constraints.append(constraint)
        return vreg


@dataclass
class IselResult(Generic[I]):
    """Result of instruction selection for a single function."""

    name: str
    insts: list[I] = field(default_factory=list)
    vreg_count: int = 0
    constraints: list[Optional[PReg]] = field(default_factory=list)
    isel_frame_size: int = 0
    """Stack frame size from stack slot operations only (not spills)."""
    has_calls: bool = False