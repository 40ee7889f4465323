"""Liveness analysis for virtual registers.

Builds a control-flow graph from a linear instruction list, runs backward
dataflow to get per-block live-in/live-out sets, then merges the results
into one [start, end) interval per virtual register.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from tuffy.regs import OpKind, RegAllocInst, RegOp, VReg


@dataclass(frozen=True)
class LiveRange:
    """A live range for a single VReg: [start, end) in instruction indices."""

    vreg: VReg
    start: int
    end: int


@dataclass
class _Block:
    start: int
    end: int
    label: Optional[int]
    successors: list[int] = field(default_factory=list)


def _build_blocks(insts: Sequence[RegAllocInst]) -> list[_Block]:
    """Split the stream at labels and after terminators, then link successors."""
    if not insts:
        return []

    blocks: list[_Block] = []
    block_start = 0
    label = insts[0].label_id()

    for i, inst in enumerate(insts):
        lid = inst.label_id()
        if i > block_start and lid is not None:
            blocks.append(_Block(block_start, i - 1, label))
            block_start = i
            label = lid
            continue

        if inst.is_terminator():
            blocks.append(_Block(block_start, i, label))
            block_start = i + 1
            label = insts[i + 1].label_id() if i + 1 < len(insts) else None

    if block_start < len(insts):
        blocks.append(_Block(block_start, len(insts) - 1, label))

    label_to_block = {b.label: idx for idx, b in enumerate(blocks) if b.label is not None}

    for bi, block in enumerate(blocks):
        last = insts[block.end]
        succs = [label_to_block[t] for t in last.branch_targets() if t in label_to_block]
        if last.falls_through() and bi + 1 < len(blocks):
            succs.append(bi + 1)
        block.successors = succs

    return blocks


def _block_gen_kill(
    operands: Sequence[list[RegOp]], block: _Block
) -> tuple[set[VReg], set[VReg]]:
    """VRegs used before definition in the block, and VRegs defined in it."""
    gen: set[VReg] = set()
    kill: set[VReg] = set()
    for ops in operands[block.start : block.end + 1]:
        for op in ops:
            if op.kind in (OpKind.USE, OpKind.USE_DEF) and op.vreg not in kill:
                gen.add(op.vreg)
            if op.kind in (OpKind.DEF, OpKind.USE_DEF):
                kill.add(op.vreg)
    return gen, kill


def compute_live_ranges(insts: Sequence[RegAllocInst], vreg_count: int) -> list[LiveRange]:
    """Compute one conservative live range per used VReg, sorted by start.

    Raises ValueError if an instruction refers to a VReg outside
    ``range(vreg_count)``.
    """
    if not insts or vreg_count == 0:
        return []

    blocks = _build_blocks(insts)
    if not blocks:
        return []

    operands = [list(inst.reg_operands()) for inst in insts]
    for ops in operands:
        for op in ops:
            if not 0 <= op.vreg.index < vreg_count:
                raise ValueError(f"{op.vreg} is out of range for {vreg_count} vregs")

    gen_kill = [_block_gen_kill(operands, b) for b in blocks]

    live_in: list[set[VReg]] = [set() for _ in blocks]
    live_out: list[set[VReg]] = [set() for _ in blocks]

    changed = True
    while changed:
        changed = False
        for bi in reversed(range(len(blocks))):
            new_out: set[VReg] = set()
            for si in blocks[bi].successors:
                new_out |= live_in[si]
            gen, kill = gen_kill[bi]
            new_in = gen | (new_out - kill)
            if new_in != live_in[bi] or new_out != live_out[bi]:
                changed = True
                live_in[bi] = new_in
                live_out[bi] = new_out

    starts: list[Optional[int]] = [None] * vreg_count
    ends = [0] * vreg_count

    def _extend_start(idx: int, pos: int) -> None:
        current = starts[idx]
        starts[idx] = pos if current is None else min(current, pos)

    for i, ops in enumerate(operands):
        for op in ops:
            v = op.vreg.index
            _extend_start(v, i)
            ends[v] = max(ends[v], i + 1)

    for bi, block in enumerate(blocks):
        for v in live_in[bi]:
            _extend_start(v.index, block.start)
        for v in live_out[bi]:
            ends[v.index] = max(ends[v.index], block.end + 1)

    ranges = [
        LiveRange(VReg(v), start, ends[v])
        for v, start in enumerate(starts)
        if start is not None
    ]
    ranges.sort(key=lambda r: r.start)
    return ranges