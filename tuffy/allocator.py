"""Linear scan register allocator.

Assigns physical registers to virtual registers using live range intervals.
Fixed-register constraints from instruction selection are respected, and
virtual registers are spilled to stack slots when register pressure exceeds
the available registers. Values live across calls are steered towards
callee-saved registers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from tuffy.liveness import LiveRange, compute_live_ranges
from tuffy.regs import PReg, RegAllocInst


@dataclass
class AllocResult:
    """Result of register allocation."""

    assignments: list[PReg] = field(default_factory=list)
    """Assigned physical register per VReg index."""
    spill_slots: int = 0
    """Number of spill slots used."""
    used_callee_saved: list[PReg] = field(default_factory=list)
    """Callee-saved registers actually holding a live range."""
    spill_map: dict[int, int] = field(default_factory=dict)
    """Spilled VReg index mapped to its 0-based spill slot."""


def _spans_any_call(rng: LiveRange, call_positions: Iterable[int]) -> bool:
    return any(rng.start <= p < rng.end for p in call_positions)


def _overlaps(rng: LiveRange, start: int, end: int) -> bool:
    return rng.start < end and rng.end > start


class _LinearScan:
    """Mutable state of one allocation run."""

    def __init__(
        self,
        insts: Sequence[RegAllocInst],
        ranges: list[LiveRange],
        vreg_count: int,
        constraints: Sequence[Optional[PReg]],
        allocatable: Sequence[PReg],
        callee_saved: Sequence[PReg],
        spill_reg: PReg,
    ) -> None:
        self.ranges = ranges
        self.range_of = {r.vreg.index: r for r in ranges}
        self.constraints = constraints
        self.allocatable = allocatable
        self.spill_reg = spill_reg

        self.call_positions = [i for i, inst in enumerate(insts) if any(True for _ in inst.clobbers())]
        self.callee_saved_set = {p.hw for p in callee_saved}
        self.caller_saved_set = {p.hw for p in allocatable if p.hw not in self.callee_saved_set}
        self.alloc_set = {p.hw for p in allocatable}

        self.free: set[int] = set(self.alloc_set)
        self.active: list[tuple[int, int]] = []
        self.assignments: list[Optional[PReg]] = [None] * vreg_count
        self.spill_map: dict[int, int] = {}
        self.spill_slot_count = 0

    # -- helpers -----------------------------------------------------------

    def _constraint(self, vi: int) -> Optional[PReg]:
        return self.constraints[vi] if vi < len(self.constraints) else None

    def _activate(self, end: int, vi: int) -> None:
        self.active.append((end, vi))
        self.active.sort(key=lambda entry: entry[0])

    def _spill(self, vi: int) -> None:
        self.spill_map[vi] = self.spill_slot_count
        self.spill_slot_count += 1
        self.assignments[vi] = self.spill_reg

    def _expire_old(self, pos: int) -> None:
        kept = []
        for end, vi in self.active:
            if end <= pos:
                preg = self.assignments[vi]
                if preg is not None and preg.hw in self.alloc_set:
                    self.free.add(preg.hw)
            else:
                kept.append((end, vi))
        self.active = kept

    def _conflicts_with(self, candidate: int, start: int, end: int) -> bool:
        for r in self.ranges:
            if not _overlaps(r, start, end):
                continue
            ri = r.vreg.index
            assigned = self.assignments[ri]
            if assigned is not None and assigned.hw == candidate:
                return True
            if assigned is None and self._constraint(ri) == PReg(candidate):
                return True
        return False

    # -- main loop ---------------------------------------------------------

    def run(self) -> None:
        for rng in self.ranges:
            vi = rng.vreg.index
            self._expire_old(rng.start)
            fixed = self.constraints[vi]
            if fixed is not None:
                if fixed.hw not in self.alloc_set:
                    # Non-allocatable registers (e.g. a frame pointer) may be shared.
                    self.assignments[vi] = fixed
                else:
                    self._handle_fixed(fixed, rng)
            else:
                self._allocate_free(rng)
        self._resolve_remaining_conflicts()

    def _allocate_free(self, rng: LiveRange) -> None:
        vi = rng.vreg.index
        spans_call = _spans_any_call(rng, self.call_positions)

        future_conflict = {
            c.hw
            for r in self.ranges
            if self.assignments[r.vreg.index] is None
            and _overlaps(r, rng.start, rng.end)
            and (c := self._constraint(r.vreg.index)) is not None
        }
        free_sorted = sorted(self.free)
        safe_free = [r for r in free_sorted if r not in future_conflict]

        def first(candidates: list[int], pred=lambda _r: True) -> Optional[int]:
            return next((r for r in candidates if pred(r)), None)

        not_clobbered = lambda r: r not in self.caller_saved_set  # noqa: E731
        clobbered = lambda r: r in self.caller_saved_set  # noqa: E731

        if spans_call:
            picked = first(safe_free, not_clobbered)
            if picked is None:
                picked = first(free_sorted, not_clobbered)
            if picked is None:
                picked = self._evict_callee_saved_for_call()
        else:
            picked = first(safe_free, clobbered)
            if picked is None:
                picked = first(safe_free)
            if picked is None:
                picked = first(free_sorted, clobbered)
            if picked is None:
                picked = first(free_sorted)

        if picked is not None:
            self.free.discard(picked)
            self.assignments[vi] = PReg(picked)
            self._activate(rng.end, vi)
        else:
            self._spill_at(rng)

    def _handle_fixed(self, fixed: PReg, rng: LiveRange) -> None:
        vi = rng.vreg.index
        if fixed.hw in self.free:
            self.free.remove(fixed.hw)
            self.assignments[vi] = fixed
            self._activate(rng.end, vi)
            return

        pos = next(
            (i for i, (_, avi) in enumerate(self.active) if self.assignments[avi] == fixed),
            None,
        )
        if pos is not None:
            evict_end, evict_vi = self.active.pop(pos)
            evict_range = self.range_of[evict_vi]
            evict_spans_call = _spans_any_call(evict_range, self.call_positions)

            def try_assign(candidates: Iterable[int], call_safe: bool) -> bool:
                for candidate in candidates:
                    if call_safe and candidate in self.caller_saved_set:
                        continue
                    if not self._conflicts_with(candidate, evict_range.start, evict_range.end):
                        self.free.discard(candidate)
                        self.assignments[evict_vi] = PReg(candidate)
                        self._activate(evict_end, evict_vi)
                        return True
                return False

            reassigned = try_assign(sorted(self.free), evict_spans_call)
            if not reassigned and evict_spans_call:
                reassigned = try_assign(sorted(self.free), False)
            if not reassigned:
                reassigned = try_assign((p.hw for p in self.allocatable if p != fixed), False)
            if not reassigned:
                self._spill(evict_vi)

        self.assignments[vi] = fixed
        self._activate(rng.end, vi)

    def _evict_callee_saved_for_call(self) -> Optional[int]:
        """Free a callee-saved register by moving a non-call-spanning interval."""
        caller_reg = next((r for r in sorted(self.free) if r in self.caller_saved_set), None)
        if caller_reg is None:
            return None

        best: Optional[tuple[int, int]] = None
        for idx, (_, avi) in enumerate(self.active):
            preg = self.assignments[avi]
            if preg is None:
                return None
            if preg.hw not in self.callee_saved_set:
                continue
            evict_range = self.range_of.get(avi)
            if evict_range is None:
                return None
            if _spans_any_call(evict_range, self.call_positions):
                continue
            best = (idx, preg.hw)
            break

        if best is None:
            return None
        idx, callee_reg = best
        evict_end, evict_vi = self.active.pop(idx)
        self.free.discard(caller_reg)
        self.assignments[evict_vi] = PReg(caller_reg)
        self._activate(evict_end, evict_vi)
        return callee_reg

    def _spill_at(self, rng: LiveRange) -> None:
        vi = rng.vreg.index
        for p in self.allocatable:
            if not self._conflicts_with(p.hw, rng.start, rng.end):
                self.assignments[vi] = p
                self._activate(rng.end, vi)
                return
        self._spill(vi)

    def _find_conflict(self) -> Optional[int]:
        for i, r1 in enumerate(self.ranges):
            if r1.vreg.index in self.spill_map:
                continue
            p1 = self.assignments[r1.vreg.index]
            if p1 is None or p1.hw not in self.alloc_set:
                continue
            for r2 in self.ranges[i + 1 :]:
                if r2.vreg.index in self.spill_map:
                    continue
                p2 = self.assignments[r2.vreg.index]
                if p2 is None or p1 != p2 or r1.start >= r2.end or r2.start >= r1.end:
                    continue
                if r1.end - r1.start >= r2.end - r2.start:
                    return r1.vreg.index
                return r2.vreg.index
        return None

    def _resolve_remaining_conflicts(self) -> None:
        """Spill the longer-lived vreg of every pair still sharing a register."""
        while (victim := self._find_conflict()) is not None:
            self._spill(victim)

    # -- result ------------------------------------------------------------

    def result(self) -> AllocResult:
        default_reg = self.allocatable[0]
        final = [
            self.spill_reg if i in self.spill_map else (opt if opt is not None else default_reg)
            for i, opt in enumerate(self.assignments)
        ]
        assigned = {p.hw for p in final}
        used_callee_saved = [
            p
            for p in self.allocatable
            if p.hw in self.callee_saved_set
            and p.hw in assigned
            and any(
                r.vreg.index not in self.spill_map and final[r.vreg.index].hw == p.hw
                for r in self.ranges
            )
        ]
        return AllocResult(
            assignments=final,
            spill_slots=self.spill_slot_count,
            used_callee_saved=used_callee_saved,
            spill_map=dict(self.spill_map),
        )


def allocate(
    insts: Sequence[RegAllocInst],
    vreg_count: int,
    constraints: Sequence[Optional[PReg]],
    allocatable: Sequence[PReg],
    callee_saved: Sequence[PReg],
    spill_reg: PReg,
) -> AllocResult:
    """Assign physical registers to ``vreg_count`` virtual registers.

    ``constraints`` holds an optional fixed register per VReg index,
    ``allocatable`` is the register pool, ``callee_saved`` the subset of it
    preserved across calls, and ``spill_reg`` a register outside the pool
    reserved for spill traffic. Raises ValueError if the pool is empty.
    """
    if vreg_count == 0:
        return AllocResult()
    if not allocatable:
        raise ValueError("no allocatable registers")

    ranges = compute_live_ranges(insts, vreg_count)
    scan = _LinearScan(insts, ranges, vreg_count, constraints, allocatable, callee_saved, spill_reg)
    scan.run()
    return scan.result()