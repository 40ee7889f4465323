"""Command line tool: read rules JSON and write the generated dispatch source."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Sequence

from tuffy.codegen import CodegenError, generate
from tuffy.schema import SchemaError, parse_rules

USAGE = "Usage: tuffy_isel_gen <input.json> <output.rs>"


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the generator; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2:
        print(USAGE, file=sys.stderr)
        return 1

    input_path, output_path = Path(args[0]), Path(args[1])

    try:
        text = input_path.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"failed to read {input_path}: {exc}", file=sys.stderr)
        return 1

    try:
        rules = parse_rules(text)
    except SchemaError as exc:
        print(f"failed to parse JSON: {exc}", file=sys.stderr)
        return 1

    try:
        source = generate(rules)
    except CodegenError as exc:
        print(f"failed to generate code: {exc}", file=sys.stderr)
        return 1

    try:
        output_path.write_text(source, encoding="utf-8")
    except OSError as exc:
        print(f"failed to write {output_path}: {exc}", file=sys.stderr)
        return 1

    print(f"Generated {len(rules)} rules -> {output_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())