import pytest

from tuffy.reloc import EncodeResult, Relocation, RelocKind


def test_relocation_fields():
    r = Relocation(offset=3, symbol="memcpy", kind=RelocKind.CALL)
    assert (r.offset, r.symbol, r.kind) == (3, "memcpy", RelocKind.CALL)


def test_relocation_equality():
    a = Relocation(1, "f", RelocKind.PC_REL)
    assert a == Relocation(1, "f", RelocKind.PC_REL)
    assert a != Relocation(1, "f", RelocKind.ABS64)


def test_relocations_of_each_kind_differ():
    relocs = [
        Relocation(0, "s", RelocKind.CALL),
        Relocation(0, "s", RelocKind.PC_REL),
        Relocation(0, "s", RelocKind.ABS64),
    ]
    assert [r.kind for r in relocs] == [
        RelocKind.CALL,
        RelocKind.PC_REL,
        RelocKind.ABS64,
    ]
    assert relocs[0] != relocs[1]
    assert relocs[1] != relocs[2]
    assert relocs[0] != relocs[2]


def test_encode_result_defaults_not_shared():
    a = EncodeResult()
    b = EncodeResult()
    a.relocations.append(Relocation(0, "g", RelocKind.CALL))
    assert b.relocations == []
    assert a.code == b""


@pytest.mark.parametrize("kind", list(RelocKind))
def test_encode_result_holds_relocations(kind):
    rel = Relocation(5, "sym", kind)
    res = EncodeResult(code=b"\xc3", relocations=[rel])
    assert res.relocations[0].kind is kind
    assert res.code == b"\xc3"