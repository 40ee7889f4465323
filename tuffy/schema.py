"""Rule schema for instruction-selection rules exported as JSON.

Each rule describes an IR pattern to match, the machine instructions to
emit for it, and where the result of the matched value ends up.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


class SchemaError(ValueError):
    """Raised when rule data does not match the expected schema."""


class AnnGuard(enum.Enum):
    """Annotation a pattern operand must carry for the rule to apply."""

    ANY = "any"
    SIGNED = "signed"
    UNSIGNED = "unsigned"


class RegRefKind(enum.Enum):
    """How a register reference in an emitted instruction is obtained."""

    NAMED = "named"
    FRESH = "fresh"
    FRESH_FIXED = "fresh_fixed"


@dataclass(frozen=True)
class OperandPat:
    """A pattern operand: the register it binds and its annotation guard."""

    reg: str
    ann: AnnGuard


@dataclass(frozen=True)
class BinopPattern:
    """A two-operand IR operation such as ``Add``."""

    op: str
    lhs: OperandPat
    rhs: OperandPat


@dataclass(frozen=True)
class UnopPattern:
    """A one-operand IR operation such as ``CountOnes``."""

    op: str
    val: OperandPat


@dataclass(frozen=True)
class IcmpPattern:
    """An integer comparison."""

    lhs: OperandPat
    rhs: OperandPat


IrPattern = Union[BinopPattern, UnopPattern, IcmpPattern]


@dataclass(frozen=True)
class RegResult:
    """The matched value lives in the named register."""

    name: str


@dataclass(frozen=True)
class CmpFlagsResult:
    """The matched value is a comparison held in the flags."""


@dataclass(frozen=True)
class NoResult:
    """The rule produces no value."""


ResultKind = Union[RegResult, CmpFlagsResult, NoResult]


@dataclass(frozen=True)
class RegRef:
    """A register operand of an emitted instruction."""

    kind: RegRefKind
    name: str
    reg: Optional[str] = None


@dataclass(frozen=True)
class EmitInst:
    """A machine instruction to emit.

    ``operands`` holds the register fields in the instruction's own order,
    as ``(field_name, RegRef)`` pairs.
    """

    inst: str
    operands: tuple[tuple[str, RegRef], ...]
    size: Optional[str] = None
    cc: Optional[str] = None


@dataclass(frozen=True)
class IselRule:
    """One instruction-selection rule."""

    name: str
    pattern: IrPattern
    emit: tuple[EmitInst, ...]
    result: ResultKind
    icmp_cc_from_op: bool = False


# inst name -> (has size, has condition code, register fields in order)
_RR = (True, False, ("dst", "src"))
_SHIFT = (True, False, ("dst",))
_BITCOUNT = (False, False, ("dst", "src"))
_INST_LAYOUTS: dict[str, tuple[bool, bool, tuple[str, ...]]] = {
    "MovRR": _RR,
    "AddRR": _RR,
    "SubRR": _RR,
    "ImulRR": _RR,
    "OrRR": _RR,
    "AndRR": _RR,
    "XorRR": _RR,
    "ShlRCL": _SHIFT,
    "ShrRCL": _SHIFT,
    "SarRCL": _SHIFT,
    "CmpRR": (True, False, ("src1", "src2")),
    "CMOVcc": (True, True, ("dst", "src")),
    "Popcnt": _BITCOUNT,
    "Lzcnt": _BITCOUNT,
    "Tzcnt": _BITCOUNT,
}


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SchemaError(f"{what}: expected an object")
    return value


def _field(obj: Mapping[str, Any], key: str, what: str) -> Any:
    if key not in obj:
        raise SchemaError(f"{what}: missing field `{key}`")
    return obj[key]


def _string(obj: Mapping[str, Any], key: str, what: str) -> str:
    value = _field(obj, key, what)
    if not isinstance(value, str):
        raise SchemaError(f"{what}: field `{key}` must be a string")
    return value


def _enum(cls: type[enum.Enum], obj: Mapping[str, Any], key: str, what: str) -> Any:
    value = _string(obj, key, what)
    try:
        return cls(value)
    except ValueError:
        raise SchemaError(f"{what}: unknown {key} `{value}`") from None


def _operand(value: Any, what: str) -> OperandPat:
    obj = _mapping(value, what)
    return OperandPat(reg=_string(obj, "reg", what), ann=_enum(AnnGuard, obj, "ann", what))


def _pattern(value: Any) -> IrPattern:
    obj = _mapping(value, "pattern")
    kind = _string(obj, "kind", "pattern")
    if kind == "binop":
        return BinopPattern(
            op=_string(obj, "op", "pattern"),
            lhs=_operand(_field(obj, "lhs", "pattern"), "lhs"),
            rhs=_operand(_field(obj, "rhs", "pattern"), "rhs"),
        )
    if kind == "unop":
        return UnopPattern(
            op=_string(obj, "op", "pattern"),
            val=_operand(_field(obj, "val", "pattern"), "val"),
        )
    if kind == "icmp":
        return IcmpPattern(
            lhs=_operand(_field(obj, "lhs", "pattern"), "lhs"),
            rhs=_operand(_field(obj, "rhs", "pattern"), "rhs"),
        )
    raise SchemaError(f"pattern: unknown kind `{kind}`")


def _result(value: Any) -> ResultKind:
    obj = _mapping(value, "result")
    kind = _string(obj, "kind", "result")
    if kind == "reg":
        return RegResult(name=_string(obj, "name", "result"))
    if kind == "cmp_flags":
        return CmpFlagsResult()
    if kind == "none":
        return NoResult()
    raise SchemaError(f"result: unknown kind `{kind}`")


def _reg_ref(value: Any, what: str) -> RegRef:
    obj = _mapping(value, what)
    reg = obj.get("reg")
    if reg is not None and not isinstance(reg, str):
        raise SchemaError(f"{what}: field `reg` must be a string or null")
    return RegRef(
        kind=_enum(RegRefKind, obj, "kind", what),
        name=_string(obj, "name", what),
        reg=reg,
    )


def _emit_inst(value: Any) -> EmitInst:
    obj = _mapping(value, "emit")
    inst = _string(obj, "inst", "emit")
    layout = _INST_LAYOUTS.get(inst)
    if layout is None:
        raise SchemaError(f"emit: unknown instruction `{inst}`")
    has_size, has_cc, reg_fields = layout
    what = f"emit {inst}"
    return EmitInst(
        inst=inst,
        operands=tuple((f, _reg_ref(_field(obj, f, what), f"{what}.{f}")) for f in reg_fields),
        size=_string(obj, "size", what) if has_size else None,
        cc=_string(obj, "cc", what) if has_cc else None,
    )


def parse_rule(obj: Any) -> IselRule:
    """Build an :class:`IselRule` from a decoded JSON object."""
    rule = _mapping(obj, "rule")
    emit = _field(rule, "emit", "rule")
    if not isinstance(emit, list):
        raise SchemaError("rule: field `emit` must be a list")
    flag = rule.get("icmp_cc_from_op", False)
    if not isinstance(flag, bool):
        raise SchemaError("rule: field `icmp_cc_from_op` must be a boolean")
    return IselRule(
        name=_string(rule, "name", "rule"),
        pattern=_pattern(_field(rule, "pattern", "rule")),
        emit=tuple(_emit_inst(e) for e in emit),
        result=_result(_field(rule, "result", "rule")),
        icmp_cc_from_op=flag,
    )


def parse_rules(data: Any) -> list[IselRule]:
    """Parse a list of rules from JSON text or an already decoded list."""
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise SchemaError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise SchemaError("expected a list of rules")
    rules = []
    for index, obj in enumerate(data):
        try:
            rules.append(parse_rule(obj))
        except SchemaError as exc:
            raise SchemaError(f"rule {index}: {exc}") from exc
    return rules