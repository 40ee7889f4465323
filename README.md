# tuffy

Building blocks for a compiler backend: liveness analysis, a linear scan
register allocator, data structures for instruction selection, and a generator
that turns JSON instruction-selection rules into selector dispatch source.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `tuffy.regs`: `VReg` and `PReg` (printed as `v3`, `p5`), `OpKind`
  (`USE`, `DEF`, `USE_DEF`), `RegOp`, and the `RegAllocInst` base class.
- `tuffy.liveness`: `compute_live_ranges(insts, vreg_count)` returns one
  `LiveRange(vreg, start, end)` per used virtual register. Each range is a
  half-open `[start, end)` interval of instruction indices, and the list is
  sorted by start.
- `tuffy.allocator`: `allocate(...)` returns an `AllocResult`.
- `tuffy.isel`: `VRegMap`, `StackMap`, `CmpMap`, `VRegAlloc`, `IselResult`.
- `tuffy.reloc`: `RelocKind` (`CALL`, `PC_REL`, `ABS64`), `Relocation`,
  `EncodeResult`.
- `tuffy.compiled`: `CompiledFunction` and `StaticData`.
- `tuffy.schema`: `parse_rules` and `parse_rule`, the rule dataclasses, and
  `SchemaError`.
- `tuffy.codegen`: `generate(rules)` and `CodegenError`.
- `tuffy.cli`: the `tuffy-isel-gen` command.

## Register allocation

Instructions take part by subclassing `tuffy.regs.RegAllocInst` and overriding
what applies to them:

- `reg_operands()`
- `label_id()`
- `branch_targets()`
- `clobbers()`
- `is_terminator()`
- `falls_through()`

The defaults describe a plain instruction. It has no operands, it is not a
label, it does not branch, it clobbers nothing, and it falls through.

How the stream is analysed:

- Blocks are split at labels and after terminators.
- Liveness is computed by backward dataflow. Live ranges are then widened across
  block boundaries.
- `compute_live_ranges` raises `ValueError` for a `VReg` outside
  `range(vreg_count)`.

```python
from tuffy.allocator import allocate
from tuffy.regs import PReg

result = allocate(
    insts,
    vreg_count=2,
    constraints=[None, None],
    allocatable=[PReg(0), PReg(1)],
    callee_saved=[],
    spill_reg=PReg(2),
)
print(result.assignments, result.spill_slots, result.spill_map, result.used_callee_saved)
```

How `allocate` works:

- **Fixed constraints.** A register in the pool is taken by evicting and
  reassigning its current holder. A fixed register outside the pool, such as a
  frame pointer, is assigned directly and may be shared.
- **Calls.** An instruction that reports `clobbers()` counts as a call. Ranges
  that span a call get callee-saved registers. Other ranges prefer caller-saved
  ones.
- **Spilling.** When no register fits, the virtual register goes to a stack
  slot. `spill_map` maps its index to the slot, and its assignment is
  `spill_reg`.
- **Conflict cleanup.** Any overlap left after the scan is resolved by spilling
  the longer-lived range.
- **Unused registers.** Virtual registers with no live range get the first
  allocatable register.
- **Errors.** An empty `allocatable` pool raises `ValueError`, unless
  `vreg_count` is 0.

## Instruction selection helpers

`tuffy.isel` works with IR values. An IR value is any object with an integer
`index` attribute and a boolean `is_block_arg` attribute. Block arguments and
instruction results have separate index spaces.

- **`VRegMap`** maps values to virtual registers.
  - `assign` raises `IndexError` past capacity.
  - `get` returns `None` for unknown values.
- **`StackMap.alloc(val, nbytes)`** grows `frame_size` and returns the value's
  negative frame offset.
  - The frame is aligned to `max(nbytes, 8)`.
- **`CmpMap`** records condition codes.
  - Both `set` and `get` raise `IndexError` past capacity.
- **`VRegAlloc`** hands out sequential registers.
  - `alloc()` returns an unconstrained register.
  - `alloc_fixed(preg)` returns a register constrained to `preg`.
  - The constraints are kept in `constraints`.

## Generating a selector from rules

```
tuffy-isel-gen rules.json isel_gen.rs
```

The input is a JSON array of rules. Each rule has:

- a `name`
- a `pattern`, which is `binop`, `unop` or `icmp`
- a list of `emit` instructions
- a `result`, which is `reg`, `cmp_flags` or `none`
- an optional `icmp_cc_from_op`

The command writes one function per rule and a `try_select_generated`
dispatch function. Rules for the same binary op are dispatched on the left
operand's signed/unsigned annotation. It prints `Generated N rules -> <path>`
on standard error and exits with status 0. A wrong argument count exits with
status 1 and prints a usage line. So do read, parse, generation and write
errors, each with a message.

From Python:

```python
import json
from tuffy.schema import parse_rules
from tuffy.codegen import generate

with open("rules.json") as f:
    source = generate(parse_rules(json.load(f)))
```

`parse_rules` also accepts the JSON text directly. `SchemaError` is raised for
malformed rules. `CodegenError` is raised for unknown:

- ops
- sizes
- condition codes
- fixed registers
- result registers

## What this package does not do

- It has no IR of its own and no instruction set.
- It does not select instructions itself.
- It does not encode machine code and does not write object files.
  `EncodeResult`, `CompiledFunction` and `StaticData` only hold such output.
- The generated selector source refers to types of a backend that this package
  does not provide, such as `MInst`, `OpSize`, `CondCode`, `Gpr` and `IselCtx`.
  It is meant to be compiled as part of that backend.