#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
regionck/__main__.py
====================

Command-line front end for the region inference engine.

Usage
-----
    python -m regionck <command> [options] <body-file>

Commands
--------
    check       Infer regions and report borrow conflicts (exit 1 if any)
    regions     Print the solved region of every lifetime as JSON
    dot         Print a function's CFG as Graphviz DOT, annotated with regions

Body files use the textual format of :mod:`regionck.syntax`; ``-`` reads
standard input.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import textwrap
import traceback
from typing import Any, Dict, List, Optional, Sequence, TextIO

from regionck.body import FunctionBody
from regionck.config import AnalysisConfig
from regionck.engine import AnalysisReport, RegionCheckEngine, analyze_functions
from regionck.errors import RegionckError, SyntaxParseError
from regionck.explain import explain_conflict
from regionck.syntax import parse_bodies

# ═══════════════════════════════════════════════════════════════════════════
# VERSION AND METADATA
# ═══════════════════════════════════════════════════════════════════════════

__version__ = "0.1.0"
__description__ = "regionck: location-sensitive region (lifetime) inference"


# ═══════════════════════════════════════════════════════════════════════════
# TERMINAL COLORS
# ═══════════════════════════════════════════════════════════════════════════

class _Colors:
    """ANSI color codes, disabled when not writing to a TTY."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def _code(self, code: str) -> str:
        return code if self.enabled else ""

    @property
    def RESET(self) -> str:
        return self._code("\033[0m")

    @property
    def BOLD(self) -> str:
        return self._code("\033[1m")

    @property
    def RED(self) -> str:
        return self._code("\033[31m")

    @property
    def GREEN(self) -> str:
        return self._code("\033[32m")


def _get_colors(stream: TextIO = sys.stderr) -> _Colors:
    """Get color codes appropriate for the given stream."""
    is_tty = hasattr(stream, "isatty") and stream.isatty()
    return _Colors(enabled=is_tty and os.environ.get("NO_COLOR") is None)


# ═══════════════════════════════════════════════════════════════════════════
# INPUT
# ═══════════════════════════════════════════════════════════════════════════

def _load(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"body file not found: {path}")


def _load_config(args: argparse.Namespace) -> AnalysisConfig:
    data: Dict[str, Any] = {}
    if getattr(args, "config", None):
        with open(args.config, "r", encoding="utf-8") as f:
            data = json.load(f)
    config = AnalysisConfig.from_mapping(data)
    if getattr(args, "workers", None):
        config.workers = args.workers
    if getattr(args, "verbose", False):
        config.verbose = True
    return config


def _select(bodies: List[FunctionBody], name: Optional[str]) -> List[FunctionBody]:
    if name is None:
        return bodies
    chosen = [b for b in bodies if b.name == name]
    if not chosen:
        raise ValueError(f"no function named {name!r}")
    return chosen


def _load_bodies(args: argparse.Namespace) -> List[FunctionBody]:
    return _select(parse_bodies(_load(args.input)), args.function)


def _report_error(args: argparse.Namespace, exc: Exception) -> int:
    colors = _get_colors()
    if isinstance(exc, SyntaxParseError) and exc.line:
        where = f"{args.input}:{exc.line}:{exc.column}: "
    else:
        where = f"{args.input}: "
    sys.stderr.write(f"{where}{colors.RED}error:{colors.RESET} {exc}\n")
    return 1


# ═══════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════

def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    try:
        config = _load_config(args)
        bodies = _load_bodies(args)
        reports: List[AnalysisReport] = analyze_functions(bodies, config)
    except (OSError, ValueError, RegionckError) as e:
        return _report_error(args, e)

    if args.json:
        out = []
        for body, report in zip(bodies, reports):
            data = report.to_dict()
            data["narratives"] = [
                explain_conflict(c, body.graph, report.regions).to_dict()
                for c in report.conflicts
            ]
            out.append(data)
        json.dump(out, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        colors = _get_colors(sys.stdout)
        for report in reports:
            if report.ok and not args.verbose:
                sys.stdout.write(
                    f"{colors.GREEN}ok{colors.RESET} {colors.BOLD}{report.function}{colors.RESET}\n"
                )
            else:
                sys.stdout.write(report.summary() + "\n")

    return 0 if all(r.ok for r in reports) else 1


def cmd_regions(args: argparse.Namespace) -> int:
    """Handle the 'regions' command."""
    try:
        config = _load_config(args)
        config.detect_conflicts = False
        bodies = _load_bodies(args)
        reports = analyze_functions(bodies, config)
    except (OSError, ValueError, RegionckError) as e:
        return _report_error(args, e)
    out = {r.function: {lt: reg.to_list() for lt, reg in r.regions.items()} for r in reports}
    json.dump(out, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def cmd_dot(args: argparse.Namespace) -> int:
    """Handle the 'dot' command."""
    try:
        bodies = _load_bodies(args)
        if len(bodies) != 1:
            raise ValueError("several functions in input; pick one with --function")
        body = bodies[0]
        report = RegionCheckEngine(_load_config(args)).analyze(body)
    except (OSError, ValueError, RegionckError) as e:
        return _report_error(args, e)
    sys.stdout.write(body.graph.to_dot(title=body.name, regions=report.regions) + "\n")
    return 0


# ═══════════════════════════════════════════════════════════════════════════
# ARGUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the regionck CLI."""
    parser = argparse.ArgumentParser(
        prog="regionck",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s check bodies.rck
              %(prog)s check bodies.rck --json --workers 4
              %(prog)s regions bodies.rck --function main
              %(prog)s dot bodies.rck --function main | dot -Tpng > cfg.png
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="available commands",
        metavar="<command>",
    )

    def common(p: argparse.ArgumentParser) -> None:
        p.add_argument("input", help="Body file (use '-' for stdin)")
        p.add_argument("--function", help="Only analyze the named function")
        p.add_argument("--config", help="JSON file with AnalysisConfig fields")
        p.add_argument("-v", "--verbose", action="store_true", default=False,
                       help="Verbose output and INFO logging")

    # ── check ────────────────────────────────────────────────────────────
    p_check = subparsers.add_parser(
        "check",
        help="Infer regions and report borrow conflicts",
    )
    common(p_check)
    p_check.add_argument("--json", action="store_true", default=False,
                         help="Emit reports (with conflict narratives) as JSON")
    p_check.add_argument("--workers", type=int, default=None,
                         help="Analyze functions on N worker processes")
    p_check.set_defaults(func=cmd_check)

    # ── regions ──────────────────────────────────────────────────────────
    p_regions = subparsers.add_parser(
        "regions",
        help="Print solved regions as JSON",
    )
    common(p_regions)
    p_regions.set_defaults(func=cmd_regions)

    # ── dot ──────────────────────────────────────────────────────────────
    p_dot = subparsers.add_parser(
        "dot",
        help="Print the CFG of one function as Graphviz DOT",
    )
    common(p_dot)
    p_dot.set_defaults(func=cmd_dot)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the regionck CLI.

    Parameters
    ----------
    argv : sequence of str, optional
        Command-line arguments. Defaults to sys.argv[1:].

    Returns
    -------
    int
        Exit code (0 = no conflicts, 1 = conflicts or bad input,
        2 = internal error).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return 130
    except Exception as e:
        colors = _get_colors()
        sys.stderr.write(f"\n{colors.RED}Internal error:{colors.RESET} {e}\n")
        traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
