"""Generate instruction-selection dispatch source from parsed rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from tuffy.schema import (
    AnnGuard,
    BinopPattern,
    CmpFlagsResult,
    EmitInst,
    IcmpPattern,
    IrPattern,
    IselRule,
    RegRef,
    RegRefKind,
    RegResult,
    UnopPattern,
)


class CodegenError(ValueError):
    """Raised when a rule refers to something the generator cannot emit."""


_HEADER = (
    "// @generated by tuffy_isel_gen -- DO NOT EDIT",
    "",
    "use crate::inst::{CondCode, MInst, OpSize};",
    "use crate::reg::Gpr;",
    "use tuffy_ir::instruction::{ICmpOp, Op};",
    "use tuffy_ir::types::Annotation;",
    "use tuffy_ir::value::ValueRef;",
    "use tuffy_regalloc::VReg;",
    "",
)

_FIXED_REGS = {
    "rax": "Gpr::Rax.to_preg()",
    "rcx": "Gpr::Rcx.to_preg()",
    "rdx": "Gpr::Rdx.to_preg()",
    "rbp": "Gpr::Rbp.to_preg()",
}

_SIZES = {
    "s8": "OpSize::S8",
    "s16": "OpSize::S16",
    "s32": "OpSize::S32",
    "s64": "OpSize::S64",
}

_COND_CODES = {
    "e": "CondCode::E",
    "ne": "CondCode::Ne",
    "l": "CondCode::L",
    "le": "CondCode::Le",
    "g": "CondCode::G",
    "ge": "CondCode::Ge",
    "b": "CondCode::B",
    "be": "CondCode::Be",
    "a": "CondCode::A",
    "ae": "CondCode::Ae",
}

_OP_VARIANTS = {
    "Add": "Op::Add(lhs, rhs)",
    "Sub": "Op::Sub(lhs, rhs)",
    "Mul": "Op::Mul(lhs, rhs)",
    "Or": "Op::Or(lhs, rhs)",
    "And": "Op::And(lhs, rhs)",
    "Xor": "Op::Xor(lhs, rhs)",
    "Shl": "Op::Shl(lhs, rhs)",
    "Shr": "Op::Shr(lhs, rhs)",
    "Min": "Op::Min(lhs, rhs)",
    "Max": "Op::Max(lhs, rhs)",
    "CountOnes": "Op::CountOnes(val)",
    "CountLeadingZeros": "Op::CountLeadingZeros(val)",
    "CountTrailingZeros": "Op::CountTrailingZeros(val)",
    "PtrAdd": "Op::PtrAdd(ptr, offset)",
    "PtrDiff": "Op::PtrDiff(lhs, rhs)",
}

_BINARY = (("l", "lhs"), ("r", "rhs"))
_UNARY = (("s", "val"),)
_OP_OPERANDS: dict[str, tuple[tuple[str, str], ...]] = {
    **{op: _BINARY for op in ("Add", "Sub", "Mul", "Or", "And", "Xor", "Shl", "Shr", "Min", "Max", "PtrDiff")},
    **{op: _UNARY for op in ("CountOnes", "CountLeadingZeros", "CountTrailingZeros")},
    "PtrAdd": (("p", "ptr"), ("o", "offset")),
}

# Instructions whose fields are written with struct shorthand where possible.
_SHORTHAND_INSTS = frozenset({"Popcnt", "Lzcnt", "Tzcnt"})

_ANN_ARMS = {
    AnnGuard.SIGNED: "Some(Annotation::Signed(_))",
    AnnGuard.UNSIGNED: "Some(Annotation::Unsigned(_))",
    AnnGuard.ANY: "_",
}


def _lookup(table: dict[str, str], key: str, what: str) -> str:
    try:
        return table[key]
    except KeyError:
        raise CodegenError(f"unknown {what}: {key}") from None


class _RegEnv:
    """Maps register names to generated variable names, allocating fresh ones."""

    def __init__(self, params: Sequence[str]) -> None:
        self.names: dict[str, str] = {p: p for p in params}
        self._counter = 0

    def _fresh(self, ref: RegRef, alloc_expr: str, out: list[str]) -> str:
        existing = self.names.get(ref.name)
        if existing is not None:
            return existing
        var = f"v{self._counter}"
        self._counter += 1
        out.append(f"    let {var} = {alloc_expr};")
        self.names[ref.name] = var
        return var

    def resolve(self, ref: RegRef, out: list[str]) -> str:
        if ref.kind is RegRefKind.NAMED:
            return ref.name
        if ref.kind is RegRefKind.FRESH:
            return self._fresh(ref, "ctx.alloc.alloc()", out)
        if ref.name in self.names:
            return self.names[ref.name]
        preg = _lookup(_FIXED_REGS, ref.reg or "rcx", "fixed register")
        return self._fresh(ref, f"ctx.alloc.alloc_fixed({preg})", out)


def _pattern_params(pattern: IrPattern) -> list[str]:
    if isinstance(pattern, UnopPattern):
        return [pattern.val.reg]
    return [pattern.lhs.reg, pattern.rhs.reg]


def _field(name: str, var: str) -> str:
    return name if name == var else f"{name}: {var}"


def _emit_inst(inst: EmitInst, env: _RegEnv) -> list[str]:
    allocs: list[str] = []
    resolved = [(name, env.resolve(ref, allocs)) for name, ref in inst.operands]
    parts = []
    if inst.size is not None:
        parts.append(f"size: {_lookup(_SIZES, inst.size, 'size')}")
    if inst.cc is not None:
        parts.append(f"cc: {_lookup(_COND_CODES, inst.cc, 'condition code')}")
    shorthand = inst.inst in _SHORTHAND_INSTS
    for name, var in resolved:
        parts.append(_field(name, var) if shorthand else f"{name}: {var}")
    allocs.append(f"    ctx.out.push(MInst::{inst.inst} {{ {', '.join(parts)} }});")
    return allocs


def _rule_fn(rule: IselRule) -> list[str]:
    params = _pattern_params(rule.pattern)
    param_list = ", ".join(f"{p}: VReg" for p in params)
    extra = ", cmp_op: ICmpOp, lhs_ann: Option<Annotation>" if rule.icmp_cc_from_op else ""
    lines = [
        f"fn gen_{rule.name}(ctx: &mut super::IselCtx, vref: ValueRef, "
        f"{param_list}{extra}) -> Option<()> {{"
    ]
    env = _RegEnv(params)
    for inst in rule.emit:
        lines.extend(_emit_inst(inst, env))

    result = rule.result
    if isinstance(result, RegResult):
        var = env.names.get(result.name)
        if var is None:
            raise CodegenError(f"result reg not found in env: {result.name}")
        lines.append(f"    ctx.regs.assign(vref, {var});")
    elif isinstance(result, CmpFlagsResult):
        lines.append("    let cc = super::icmp_to_cc(cmp_op, lhs_ann);")
        lines.append("    ctx.cmps.set(vref, cc);")

    lines.extend(["    Some(())", "}", ""])
    return lines


@dataclass
class _OpGroup:
    op_name: str
    rules: list[tuple[AnnGuard, str]] = field(default_factory=list)


def _group_rules(rules: Sequence[IselRule]) -> tuple[list[_OpGroup], Optional[IselRule]]:
    groups: list[_OpGroup] = []
    icmp_rule: Optional[IselRule] = None
    for rule in rules:
        pattern = rule.pattern
        if isinstance(pattern, BinopPattern):
            group = next((g for g in groups if g.op_name == pattern.op), None)
            if group is None:
                group = _OpGroup(pattern.op)
                groups.append(group)
            group.rules.append((pattern.lhs.ann, rule.name))
        elif isinstance(pattern, UnopPattern):
            groups.append(_OpGroup(pattern.op, [(AnnGuard.ANY, rule.name)]))
        elif isinstance(pattern, IcmpPattern):
            icmp_rule = rule
    return groups, icmp_rule


def _group_arm(group: _OpGroup) -> list[str]:
    variant = _lookup(_OP_VARIANTS, group.op_name, "op")
    operands = _OP_OPERANDS[group.op_name]
    args = ", ".join(var for var, _ in operands)
    lines = [f"        {variant} => {{"]
    lines.extend(
        f"            let {var} = ctx.ensure_in_reg({fld}.value)?;" for var, fld in operands
    )

    if len(group.rules) == 1 and group.rules[0][0] is AnnGuard.ANY:
        lines.append(f"            gen_{group.rules[0][1]}(ctx, vref, {args})")
    else:
        lines.append(f"            match {operands[0][1]}.annotation {{")
        for guard, rule_name in group.rules:
            lines.append(f"                {_ANN_ARMS[guard]} => gen_{rule_name}(ctx, vref, {args}),")
        if all(guard is not AnnGuard.ANY for guard, _ in group.rules):
            default = next(
                (name for guard, name in group.rules if guard is AnnGuard.UNSIGNED),
                group.rules[0][1],
            )
            lines.append(f"                _ => gen_{default}(ctx, vref, {args}),")
        lines.append("            }")

    lines.append("        }")
    return lines


def _dispatch(rules: Sequence[IselRule]) -> list[str]:
    lines = [
        "#[allow(unused_variables)]",
        "pub(super) fn try_select_generated(",
        "    ctx: &mut super::IselCtx,",
        "    vref: ValueRef,",
        "    op: &Op,",
        ") -> Option<()> {",
        "    match op {",
    ]
    groups, icmp_rule = _group_rules(rules)
    for group in groups:
        lines.extend(_group_arm(group))

    if icmp_rule is not None:
        lines.extend(
            [
                "        Op::ICmp(cmp_op, lhs, rhs) => {",
                "            let l = ctx.ensure_in_reg(lhs.value)?;",
                "            let r = ctx.ensure_in_reg(rhs.value)?;",
                f"            gen_{icmp_rule.name}(ctx, vref, l, r, *cmp_op, lhs.annotation)",
                "        }",
            ]
        )

    lines.extend(["        _ => None,", "    }", "}"])
    return lines


def generate(rules: Sequence[IselRule]) -> str:
    """Return the complete generated dispatch source for ``rules``."""
    lines = list(_HEADER)
    for rule in rules:
        lines.extend(_rule_fn(rule))
    lines.extend(_dispatch(rules))
    return "\n".join(lines) + "\n"