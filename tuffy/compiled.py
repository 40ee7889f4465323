"""Compiled code and static data ready for object file emission."""

from __future__ import annotations

from dataclasses import dataclass, field

from tuffy.reloc import Relocation


@dataclass
class CompiledFunction:
    """A compiled function ready for object file emission."""

    name: str
    code: bytes = b""
    relocations: list[Relocation] = field(default_factory=list)
    weak: bool = False
    """Emit with weak binding so identical instantiations can be merged."""
    local: bool = False
    """Emit with local scope so the symbol stays private to its object file."""


@dataclass
class StaticData:
    """A static data blob to be placed in a read-only section."""

    name: str
    data: bytes = b""
    relocations: list[Relocation] = field(default_factory=list)
    """Relocations within the data (e.g. function pointers in vtables)."""