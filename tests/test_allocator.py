from dataclasses import dataclass
from typing import Optional

import pytest

from tuffy.allocator import allocate
from tuffy.regs import OpKind, PReg, RegAllocInst, RegOp, VReg


@dataclass
class TInst(RegAllocInst):
    kind: str
    dst: Optional[int] = None
    src: Optional[int] = None
    target: Optional[int] = None
    clobbered: tuple = ()

    def reg_operands(self):
        if self.kind == "def":
            return [RegOp(VReg(self.dst), OpKind.DEF)]
        if self.kind == "use":
            return [RegOp(VReg(self.src), OpKind.USE)]
        if self.kind == "mov":
            return [RegOp(VReg(self.dst), OpKind.DEF), RegOp(VReg(self.src), OpKind.USE)]
        if self.kind == "add":
            return [RegOp(VReg(self.dst), OpKind.USE_DEF), RegOp(VReg(self.src), OpKind.USE)]
        return []

    def label_id(self):
        return self.target if self.kind == "label" else None

    def branch_targets(self):
        return [self.target] if self.kind in ("jmp", "jcc") else []

    def clobbers(self):
        return list(self.clobbered)

    def is_terminator(self):
        return self.kind in ("ret", "jmp", "jcc")

    def falls_through(self):
        return self.kind not in ("ret", "jmp")


def d(n):
    return TInst("def", dst=n)


def u(n):
    return TInst("use", src=n)


def mov(dst, src):
    return TInst("mov", dst=dst, src=src)


def call(*clobbered):
    return TInst("call", clobbered=clobbered)


RET = TInst("ret")
SPILL = PReg(9)


def test_alloc_simple_no_conflicts():
    insts = [d(0), u(0), d(1), u(1), RET]
    regs = [PReg(0), PReg(1)]
    result = allocate(insts, 2, [None, None], regs, [], PReg(2))
    assert len(result.assignments) == 2
    assert result.assignments[0] in regs
    assert result.assignments[1] in regs


def test_alloc_fixed_constraint():
    insts = [d(0), mov(1, 0), u(1), RET]
    regs = [PReg(0), PReg(1)]
    result = allocate(insts, 2, [PReg(1), None], regs, [], PReg(2))
    assert result.assignments[0] == PReg(1)
    assert result.assignments[1] in regs


def test_alloc_overlapping_intervals():
    insts = [d(0), d(1), u(0), u(1), RET]
    result = allocate(insts, 2, [None, None], [PReg(0), PReg(1)], [], PReg(2))
    assert len(result.assignments) == 2
    assert result.assignments[0] != result.assignments[1]
    assert result.spill_slots == 0


def test_zero_vregs_gives_empty_result():
    result = allocate([RET], 0, [], [PReg(0)], [], SPILL)
    assert result.assignments == []
    assert result.spill_slots == 0
    assert result.spill_map == {}
    assert result.used_callee_saved == []


def test_empty_pool_is_rejected():
    with pytest.raises(ValueError):
        allocate([d(0), u(0), RET], 1, [None], [], [], SPILL)


def test_spill_when_out_of_registers():
    insts = [d(0), d(1), u(0), u(1), RET]
    result = allocate(insts, 2, [None, None], [PReg(0)], [], SPILL)
    assert result.assignments == [PReg(0), SPILL]
    assert result.spill_slots == 1
    assert result.spill_map == {1: 0}


def test_spill_slots_numbered_in_order():
    insts = [d(0), d(1), d(2), d(3), u(0), u(1), u(2), u(3), RET]
    result = allocate(insts, 4, [None] * 4, [PReg(0), PReg(1)], [], SPILL)
    assert result.assignments == [PReg(0), PReg(1), SPILL, SPILL]
    assert result.spill_slots == 2
    assert result.spill_map == {2: 0, 3: 1}


def test_unused_vreg_gets_first_register():
    result = allocate([d(0), u(0), RET], 2, [None, None], [PReg(3), PReg(4)], [], SPILL)
    assert result.assignments == [PReg(3), PReg(3)]


def test_non_allocatable_fixed_register_is_shared():
    insts = [d(0), d(1), u(0), u(1), RET]
    result = allocate(insts, 2, [PReg(5), PReg(5)], [PReg(0), PReg(1)], [], SPILL)
    assert result.assignments == [PReg(5), PReg(5)]
    assert result.spill_map == {}


def test_free_vreg_avoids_future_fixed_constraint():
    insts = [d(0), d(1), u(0), u(1), RET]
    result = allocate(insts, 2, [None, PReg(0)], [PReg(0), PReg(1)], [], SPILL)
    assert result.assignments == [PReg(1), PReg(0)]


def test_fixed_constraint_evicts_and_spills_occupant():
    insts = [d(0), d(1), u(0), u(1), RET]
    result = allocate(insts, 2, [None, PReg(0)], [PReg(0)], [], SPILL)
    assert result.assignments == [SPILL, PReg(0)]
    assert result.spill_map == {0: 0}
    assert result.spill_slots == 1


def test_value_across_call_gets_callee_saved_register():
    insts = [d(0), call(PReg(0)), u(0), RET]
    result = allocate(insts, 1, [None], [PReg(0), PReg(1)], [PReg(1)], SPILL)
    assert result.assignments == [PReg(1)]
    assert result.used_callee_saved == [PReg(1)]


def test_value_without_call_prefers_caller_saved_register():
    insts = [d(0), u(0), RET]
    result = allocate(insts, 1, [None], [PReg(0), PReg(1)], [PReg(1)], SPILL)
    assert result.assignments == [PReg(0)]
    assert result.used_callee_saved == []


def test_callee_saved_register_freed_for_call_spanning_value():
    insts = [d(0), d(1), u(0), d(2), u(1), call(PReg(0)), u(2), RET]
    result = allocate(insts, 3, [None] * 3, [PReg(0), PReg(1)], [PReg(1)], SPILL)
    assert result.assignments == [PReg(0), SPILL, PReg(1)]
    assert result.spill_map == {1: 0}
    assert result.used_callee_saved == [PReg(1)]


def test_overlapping_unspilled_vregs_never_share_a_register():
    insts = [d(0), d(1), d(2), u(0), d(3), u(1), u(2), u(3), RET]
    regs = [PReg(0), PReg(1), PReg(2)]
    result = allocate(insts, 4, [None, PReg(1), None, None], regs, [], SPILL)
    intervals = {0: (0, 4), 1: (1, 6), 2: (2, 7), 3: (4, 8)}
    live = [v for v in intervals if v not in result.spill_map]
    for a in live:
        for b in live:
            if a < b:
                sa, ea = intervals[a]
                sb, eb = intervals[b]
                if sa < eb and sb < ea:
                    assert result.assignments[a] != result.assignments[b]
    assert result.assignments[1] == PReg(1)
    assert result.spill_slots == len(result.spill_map)