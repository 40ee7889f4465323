from dataclasses import dataclass
from typing import Optional

import pytest

from tuffy.liveness import LiveRange, compute_live_ranges
from tuffy.regs import OpKind, RegAllocInst, RegOp, VReg


@dataclass
class TInst(RegAllocInst):
    """Simple test instruction."""

    kind: str
    dst: Optional[VReg] = None
    src: Optional[VReg] = None
    target: Optional[int] = None

    def reg_operands(self):
        if self.kind == "def":
            return [RegOp(self.dst, OpKind.DEF)]
        if self.kind == "use":
            return [RegOp(self.src, OpKind.USE)]
        if self.kind == "mov":
            return [RegOp(self.dst, OpKind.DEF), RegOp(self.src, OpKind.USE)]
        if self.kind == "add":
            return [RegOp(self.dst, OpKind.USE_DEF), RegOp(self.src, OpKind.USE)]
        return []

    def label_id(self):
        return self.target if self.kind == "label" else None

    def branch_targets(self):
        return [self.target] if self.kind in ("jmp", "jcc") else []

    def is_terminator(self):
        return self.kind in ("ret", "jmp", "jcc")

    def falls_through(self):
        return self.kind not in ("ret", "jmp")


def v(n):
    return VReg(n)


def Def(dst):
    return TInst("def", dst=dst)


def Use(src):
    return TInst("use", src=src)


def Mov(dst, src):
    return TInst("mov", dst=dst, src=src)


def Add(dst, src):
    return TInst("add", dst=dst, src=src)


def Label(id_):
    return TInst("label", target=id_)


def Jmp(target):
    return TInst("jmp", target=target)


def Jcc(target):
    return TInst("jcc", target=target)


def Ret():
    return TInst("ret")


def find(ranges, vreg):
    return next(r for r in ranges if r.vreg == vreg)


def test_liveness_simple_straight_line():
    insts = [Def(v(0)), Def(v(1)), Add(v(0), v(1)), Use(v(0)), Ret()]
    ranges = compute_live_ranges(insts, 2)

    assert len(ranges) == 2
    r0 = find(ranges, v(0))
    assert (r0.start, r0.end) == (0, 4)
    r1 = find(ranges, v(1))
    assert (r1.start, r1.end) == (1, 3)


def test_liveness_branch():
    insts = [Def(v(0)), Jcc(1), Label(1), Use(v(0)), Ret()]
    ranges = compute_live_ranges(insts, 1)

    assert len(ranges) == 1
    r0 = find(ranges, v(0))
    assert r0.start == 0
    assert r0.end >= 4


def test_liveness_empty():
    assert compute_live_ranges([], 0) == []


def test_zero_vregs_gives_no_ranges():
    assert compute_live_ranges([Ret()], 0) == []


def test_loop_back_edge_extends_range():
    insts = [Def(v(0)), Label(1), Use(v(0)), Jcc(1), Ret()]
    ranges = compute_live_ranges(insts, 1)
    assert ranges == [LiveRange(v(0), 0, 4)]


def test_unused_vreg_has_no_range():
    insts = [Def(v(0)), Use(v(0)), Def(v(2)), Use(v(2)), Ret()]
    ranges = compute_live_ranges(insts, 3)
    assert [r.vreg for r in ranges] == [v(0), v(2)]


def test_ranges_sorted_by_start():
    insts = [Def(v(1)), Def(v(0)), Mov(v(2), v(1)), Use(v(0)), Use(v(2)), Ret()]
    ranges = compute_live_ranges(insts, 3)
    starts = [r.start for r in ranges]
    assert starts == sorted(starts)
    assert ranges[0].vreg == v(1)


def test_ranges_cover_every_mention():
    insts = [Def(v(0)), Def(v(1)), Add(v(1), v(0)), Use(v(1)), Ret()]
    ranges = compute_live_ranges(insts, 2)
    for i, inst in enumerate(insts):
        for op in inst.reg_operands():
            r = find(ranges, op.vreg)
            assert r.start <= i < r.end


def test_value_live_across_jump_to_later_block():
    insts = [Def(v(0)), Jmp(2), Label(1), Ret(), Label(2), Use(v(0)), Ret()]
    ranges = compute_live_ranges(insts, 1)
    r0 = find(ranges, v(0))
    assert r0.start == 0
    assert r0.end >= 6


def test_out_of_range_vreg_raises():
    with pytest.raises(ValueError):
        compute_live_ranges([Def(v(5)), Ret()], 2)