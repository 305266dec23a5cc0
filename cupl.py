"""CUPL entry point: run program trees dumped as JSON."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from cuplio import DEFAULT_FIELDWIDTH, DEFAULT_LINEWIDTH
from interpreter import MAX_DEPTH, Interpreter, TracebackFormatter, prepare
from nodes import DEBUG_EXECUTE, CuplError, CuplRuntimeError
from treefile import loads


def run_file(text: str, filename: str, args: argparse.Namespace) -> int:
    interpreter: Optional[Interpreter] = None
    try:
        tree, symbols = loads(text)
        interpreter = prepare(
            tree,
            symbols,
            linewidth=args.linewidth,
            fieldwidth=args.fieldwidth,
            verbose=args.verbose,
            seed=args.seed,
            max_depth=args.max_depth,
        )
        interpreter.run()
    except CuplError as error:
        sys.stdout.flush()
        if interpreter is None or not isinstance(error, CuplRuntimeError):
            print(f"cupl: {filename}: {error}", file=sys.stderr)
            return 1
        formatter = TracebackFormatter(interpreter)
        if args.verbose >= DEBUG_EXECUTE:
            print(formatter.format_text(error), file=sys.stderr)
        else:
            print(formatter.format_line(error), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="cupl", description="CUPL tree interpreter")
    parser.add_argument("files", nargs="*", help="JSON program trees; standard input when none are given")
    parser.add_argument("-v", "--verbose", type=int, default=0, help="Diagnostic level (2 check dump, 3 trace, 4 allocation)")
    parser.add_argument("-w", "--linewidth", type=int, default=DEFAULT_LINEWIDTH, help="Output line width")
    parser.add_argument("-f", "--fieldwidth", type=int, default=DEFAULT_FIELDWIDTH, help="Output field width")
    parser.add_argument("--seed", type=int, default=None, help="Seed for RAND")
    parser.add_argument("--max-depth", type=int, default=MAX_DEPTH, help="Bound on nested PERFORMs")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    if args.fieldwidth < 4 or args.linewidth < args.fieldwidth:
        parser.error("line width must be at least one field wide and fields at least 4 columns")

    if not args.files:
        return run_file(sys.stdin.read(), "<stdin>", args)

    for filename in args.files:
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            print(f"cupl: can't open file {filename}: {exc}", file=sys.stderr)
            return 1
        status = run_file(text, filename, args)
        if status:
            return status
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
