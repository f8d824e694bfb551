from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List

from .ast_printer import format_program
from .checker import Checker
from .diagnostics import Diagnostic, Span
from .errors import MetaError
from .interp import Interpreter, RunOptions
from .lexer import tokenize
from .parser import parse_program

logger = logging.getLogger(__name__)


class PhaseTimer:
    """Wall-clock duration of each pipeline phase, in microseconds."""

    def __init__(self) -> None:
        self.durations: Dict[str, int] = {}

    @contextmanager
    def phase(self, name: str) -> Iterator[None]:
        logger.debug("phase %s: start", name)
        start = time.perf_counter_ns()
        try:
            yield
        finally:
            self.durations[name] = (time.perf_counter_ns() - start) // 1000
            logger.debug("phase %s: done in %dus", name, self.durations[name])

    def report(self, file=None) -> None:
        if file is None:
            file = sys.stderr
        for name, micros in self.durations.items():
            print(f"{name}: {micros}us", file=file)


def _report(diags: List[Diagnostic], source_path: Path, as_json: bool) -> int:
    if as_json:
        payload = {
            "exit_code": 1,
            "diagnostics": [d.to_json(str(source_path)) for d in diags],
        }
        print(json.dumps(payload))
    else:
        for d in diags:
            print(d.format(str(source_path)), file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    """
    Run a metalang program: lex, parse, check, then execute `main`.

    The exit status is the i32 returned by `main` (0 when it returns nothing),
    or 1 when any phase reports an error. With --json, errors are printed as
    structured diagnostics on stdout; otherwise as `file:line:col: error: msg`
    lines on stderr.
    """
    ap = argparse.ArgumentParser(prog="metalang", description="metalang: run a .mt program")
    ap.add_argument("source", type=Path, help="metalang source file")
    ap.add_argument("--json", action="store_true", help="Emit diagnostics as JSON")
    ap.add_argument("--dump-tokens", action="store_true", help="Print the token stream and stop")
    ap.add_argument("--dump-ast", action="store_true", help="Print the parsed program and stop")
    ap.add_argument("--check-only", action="store_true", help="Stop after the checker")
    ap.add_argument("--time", action="store_true", help="Report per-phase durations on stderr")
    ap.add_argument(
        "--max-call-depth",
        type=int,
        default=RunOptions.max_call_depth,
        help="Maximum nesting of procedure calls (default: %(default)s)",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    if args.max_call_depth < 1:
        ap.error("--max-call-depth must be at least 1")

    source_path: Path = args.source
    try:
        source = source_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        diag = Diagnostic(message=f"cannot read source: {exc}", code="IOError", phase="driver", span=Span(file=str(source_path)))
        return _report([diag], source_path, args.json)

    timer = PhaseTimer()
    try:
        if args.dump_tokens:
            with timer.phase("lex"):
                tokens = list(tokenize(source))
            for token in tokens:
                print(token)
            print(f"{len(tokens) - 1} tokens")
            return 0
        with timer.phase("parse"):
            program = parse_program(source)
        if args.dump_ast:
            print(format_program(program))
            return 0
        with timer.phase("check"):
            checked = Checker().check(program)
        if args.check_only:
            return 0
        interpreter = Interpreter(checked, options=RunOptions(max_call_depth=args.max_call_depth))
        with timer.phase("run"):
            result = interpreter.run()
    except MetaError as exc:
        logger.debug("%s failed: %s", exc.phase, exc)
        return _report([exc.to_diagnostic()], source_path, args.json)
    finally:
        if args.time:
            timer.report()
    sys.stdout.flush()
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    raise SystemExit(main())
