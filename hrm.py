"""HRM replay entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from lexer import HRMParseError
from levels import HRMLevelError, Level, builtin_level, load_level
from parser import parse_program
from replay import Replay
from statelog import TracebackFormatter


def format_parse_error(source: str, error: HRMParseError) -> str:
    """Show the offending line with a caret under the failing column."""
    lines = ["Error occurred while parsing:"]
    source_lines = source.splitlines()
    if error.line is not None and 0 < error.line <= len(source_lines):
        lines.append(source_lines[error.line - 1])
        lines.append(" " * max((error.column or 1) - 1, 0) + "^")
    lines.append(f"ParseError: {error}")
    return "\n".join(lines)


def _resolve_level(level_arg: str) -> Level:
    if level_arg.isdigit():
        return builtin_level(int(level_arg))
    return load_level(level_arg)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a Human Resource Machine program against a level")
    parser.add_argument("level", help="Built-in level number or path to a level JSON file")
    parser.add_argument("program", help="Program save file path, or literal program text with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal program text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Include floor snapshots in traces")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON trace on runtime errors")
    parser.add_argument("--step-limit", type=int, default=None, help="Override the level's step limit")
    args = parser.parse_args(argv)

    try:
        level = _resolve_level(args.level)
    except HRMLevelError as error:
        print(f"LevelError: {error}", file=sys.stderr)
        return 1

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        program = parse_program(source_text, filename)
    except HRMParseError as error:
        print(format_parse_error(source_text, error), file=sys.stderr)
        return 1

    if args.step_limit is not None and args.step_limit <= 0:
        print("--step-limit must be positive", file=sys.stderr)
        return 1

    replay = Replay(program, level, verbose=args.verbose, step_limit=args.step_limit)
    report = replay.run()
    print(report.summary())
    if report.error is not None:
        formatter = TracebackFormatter(report.log)
        print(formatter.format_text(report.error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(report.error), file=sys.stderr)
    return 0 if report.passed else 1


if __name__ == "__main__":
    raise SystemExit(run_cli())
