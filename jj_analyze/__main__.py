#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
jj_analyze/__main__.py
======================

Command-line entry point.

Usage
-----
    jj-analyze [options] REVSET
    python -m jj_analyze [options] REVSET

Exit codes
----------
    0    the tree was printed
    1    the query, an alias or a config file was rejected
    2    internal error
    130  interrupted
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
import traceback
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .analysis import Evaluation
from .config import Settings, load_settings
from .errors import RevsetAnalyzeError, describe_stage
from .pipeline import AnalyzeOptions, run
from .render import ColorMode

logger = logging.getLogger(__name__)

__description__ = """\
Analyze a revset and display a tree showing how it will be evaluated.

Potentially expensive operations are marked (EXPENSIVE).  With color
enabled, eager evaluation is blue, lazy evaluation is cyan and predicates
are magenta.  Nested unions, intersections and coalesces are flattened.
"""

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERNAL = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jj-analyze",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s 'latest(empty())'
              %(prog)s --context eager '::@ & mine()'
              %(prog)s -d 'immutable_heads()=none()' 'mutable()'
        """),
    )
    parser.add_argument("revset", metavar="REVSET", help="a revset to analyze")
    parser.add_argument(
        "--collapse", action="append", default=[], metavar="ALIAS",
        help="show the given alias as a leaf instead of its definition",
    )
    parser.add_argument(
        "--color", choices=[mode.value for mode in ColorMode], default=None,
        metavar="MODE", help="when to colorize output (auto, never, always)",
    )
    parser.add_argument(
        "-c", "--context", choices=[e.value for e in Evaluation.selectable()],
        default=Evaluation.LAZY.value,
        help="base evaluation context of the revset (default: lazy)",
    )
    parser.add_argument(
        "-d", "--define", action="append", default=[], metavar="NAME=EXPR",
        help="define a revset alias, e.g. 'immutable_heads()=none()'",
    )
    parser.add_argument("-A", "--no-analyze", action="store_true",
                        help="disable evaluation and cost analysis")
    parser.add_argument("-B", "--no-collapse-builtin", action="store_true",
                        help="do not collapse trunk() and builtin_immutable_heads()")
    parser.add_argument("-C", "--no-config", action="store_true",
                        help="do not load revset aliases from jj config files")
    parser.add_argument("-O", "--no-optimize", action="store_true",
                        help="disable revset optimizations")
    parser.add_argument("-R", "--repository", metavar="PATH", default=None,
                        help="repository to load revset aliases from")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log each pipeline stage to stderr")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _options_from_args(args: argparse.Namespace) -> AnalyzeOptions:
    return AnalyzeOptions(
        query=args.revset,
        context=Evaluation.from_name(args.context),
        defines=list(args.define),
        collapse=list(args.collapse),
        analyze=not args.no_analyze,
        collapse_builtins=not args.no_collapse_builtin,
        optimize=not args.no_optimize,
        color=args.color,
    )


def _run(args: argparse.Namespace) -> int:
    cwd = Path.cwd()
    start = Path(args.repository).expanduser() if args.repository else cwd
    settings: Settings = load_settings(start, load_config=not args.no_config)
    output = run(_options_from_args(args), settings, cwd)
    sys.stdout.write(output)
    sys.stdout.flush()
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return _run(args)
    except RevsetAnalyzeError as exc:
        lines: List[str] = str(exc).splitlines() or [""]
        sys.stderr.write(f"Error: {describe_stage(exc)}: {lines[0]}\n")
        for line in lines[1:]:
            sys.stderr.write(f"{line}\n")
        return EXIT_ERROR
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return EXIT_INTERRUPTED
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return EXIT_OK
    except Exception as exc:
        sys.stderr.write(f"Internal error: {exc}\n")
        traceback.print_exc()
        return EXIT_INTERNAL


if __name__ == "__main__":
    sys.exit(main())
