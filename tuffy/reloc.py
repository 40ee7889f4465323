"""Relocation types shared between target backends and the code generator."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class RelocKind(enum.Enum):
    """Kind of relocation."""

    CALL = "call"
    """PC-relative call (e.g. R_X86_64_PLT32 on x86-64)."""
    PC_REL = "pc_rel"
    """PC-relative data reference (e.g. R_X86_64_PC32 on x86-64)."""
    ABS64 = "abs64"
    """Absolute 64-bit address (e.g. R_X86_64_64 on x86-64)."""


@dataclass
class Relocation:
    """A reference to an external symbol that the linker must patch."""

    offset: int
    """Byte offset in the buffer where the displacement starts."""
    symbol: str
    """Name of the symbol this relocation targets."""
    kind: RelocKind


@dataclass
class EncodeResult:
    """Result of encoding a function."""

    code: bytes = b""
    """Encoded machine code."""
    relocations: list[Relocation] = field(default_factory=list)
    """Relocations for external symbol references."""