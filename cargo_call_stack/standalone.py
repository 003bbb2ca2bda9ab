# SPDX-License-Identifier: MIT
"""Standalone analysis entry point.

Runs the analyzer on an executable that was already built the way
cargo-call-stack builds it, skipping the build step:

    analyze-call-stack --target thumbv7m-none-eabi --format dot \\
        --elf target/thumbv7m-none-eabi/release/app \\
        --compiler-builtins-rlib-path .../libcompiler_builtins-1234.rlib \\
        --compiler-builtins-ll-path .../compiler_builtins-1234.ll
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from cargo_call_stack.analyzer import AnalysisRequest, Analyzer, CommandAnalyzer, OutputFormat
from cargo_call_stack.cli import add_format_arg, setup_logging
from cargo_call_stack.configure.config import ToolConfig
from cargo_call_stack.core.errors import CallStackError


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for analyze-call-stack."""
    parser = argparse.ArgumentParser(
        prog="analyze-call-stack",
        description="Perform whole program stack usage analysis on a built executable.",
    )
    parser.add_argument(
        "--target",
        metavar="TRIPLE",
        required=True,
        help="Target triple for which the code is compiled",
    )
    add_format_arg(parser)
    parser.add_argument(
        "--elf", metavar="ELF_PATH", required=True, help="Path to the elf file"
    )
    parser.add_argument(
        "--compiler-builtins-rlib-path",
        metavar="COMPILER_BUILTINS_RLIB_PATH",
        required=True,
        help="Path to the compiler-builtins rlib file",
    )
    parser.add_argument(
        "--compiler-builtins-ll-path",
        metavar="COMPILER_BUILTINS_LL_PATH",
        required=True,
        help="Path to the compiler-builtins ll file",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Use verbose output")
    return parser


def request_from_namespace(ns: argparse.Namespace) -> AnalysisRequest:
    return AnalysisRequest(
        elf=Path(ns.elf),
        compiler_builtins_rlib=Path(ns.compiler_builtins_rlib_path),
        compiler_builtins_ll=Path(ns.compiler_builtins_ll_path),
        target=ns.target,
        format=OutputFormat(ns.format),
    )


def main(argv: Sequence[str] | None = None, analyzer: Analyzer | None = None) -> int:
    """Main entry point for analyze-call-stack."""
    ns = build_parser().parse_args(argv)
    setup_logging(ns.verbose)

    if analyzer is None:
        analyzer = CommandAnalyzer(ToolConfig.from_environ().analyzer)
    try:
        return analyzer.analyze(request_from_namespace(ns))
    except (CallStackError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
