# SPDX-License-Identifier: MIT
"""Command-line interface for cargo-call-stack.

The same executable runs in two modes. Started by the user (usually as
``cargo call-stack``) it drives the build and hands the results to the
analyzer. Started by Cargo as ``RUSTC_WRAPPER`` during that build, it acts
as the compiler interceptor instead; see cargo_call_stack.wrapper.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from cargo_call_stack.analyzer import Analyzer, CommandAnalyzer, OutputFormat
from cargo_call_stack.build.driver import build_command, self_executable, spawn
from cargo_call_stack.build.rebuild import force_rebuild
from cargo_call_stack.build.sidechannel import collect
from cargo_call_stack.configure.config import ToolConfig
from cargo_call_stack.core.errors import CallStackError
from cargo_call_stack.core.invocation import InvocationArgs
from cargo_call_stack.core.project import ProjectMetadata
from cargo_call_stack.handoff import handoff
from cargo_call_stack.toolchains.rustc import host_triple, is_no_std
from cargo_call_stack.wrapper import Mode, run_wrapper, select_mode

# Set up logging
logger = logging.getLogger("cargo_call_stack")

# Cargo passes the subcommand name through when run as `cargo call-stack`.
CARGO_SUBCOMMAND = "call-stack"


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging based on verbosity level."""
    if debug:
        level = logging.DEBUG
        fmt = "%(levelname)s: %(name)s: %(message)s"
    elif verbose:
        level = logging.INFO
        fmt = "%(levelname)s: %(message)s"
    else:
        level = logging.WARNING
        fmt = "%(levelname)s: %(message)s"

    logging.basicConfig(level=level, format=fmt)


def strip_subcommand(argv: Sequence[str]) -> list[str]:
    """Drop the leading ``call-stack`` argument added by cargo."""
    args = list(argv)
    if args and args[0] == CARGO_SUBCOMMAND:
        return args[1:]
    return args


def add_format_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=[f.value for f in OutputFormat],
        default=OutputFormat.DOT.value,
        help="Output format (default: dot)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the build-and-analyze command."""
    parser = argparse.ArgumentParser(
        prog="cargo-call-stack",
        description="Generate a call graph and perform whole program stack usage analysis.",
    )
    from cargo_call_stack import __version__

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--target", metavar="TRIPLE", help="Target triple for which the code is compiled"
    )
    parser.add_argument("--bin", metavar="BIN", help="Build only the specified binary")
    parser.add_argument(
        "--example", metavar="NAME", help="Build only the specified example"
    )
    parser.add_argument(
        "--features", metavar="FEATURES", help="Space-separated list of features to activate"
    )
    parser.add_argument(
        "--all-features", action="store_true", help="Activate all available features"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Use verbose output")
    parser.add_argument("--debug", action="store_true", help="Debug output")
    add_format_arg(parser)
    parser.add_argument(
        "start",
        nargs="?",
        help="Consider only the call graph that starts from this node",
    )
    return parser


def run(
    args: InvocationArgs,
    tools: ToolConfig,
    analyzer: Analyzer | None = None,
) -> int:
    """Build the selected artifact and analyze it.

    Returns:
        Exit code: cargo's on a failed build, otherwise the analyzer's.
    """
    host = host_triple(tools.rustc)
    project = ProjectMetadata.query(Path.cwd(), host)
    no_std = is_no_std(project.effective_target(args.target), tools.rustc)

    command = build_command(args, project, no_std, self_executable(), cargo=tools.cargo)

    # "touch" some source file to trigger a rebuild
    force_rebuild(project.root)

    child = spawn(command)
    outcome = collect(child, sys.stderr)

    if analyzer is None:
        analyzer = CommandAnalyzer(tools.analyzer)
    return handoff(outcome, args, project, analyzer)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the cargo-call-stack CLI."""
    try:
        if select_mode() is Mode.INTERCEPT:
            return run_wrapper(argv)

        if argv is None:
            argv = sys.argv[1:]
        ns = build_parser().parse_args(strip_subcommand(argv))
        setup_logging(ns.verbose, ns.debug)

        args = InvocationArgs.from_namespace(ns)
        return run(args, ToolConfig.from_environ())
    except (CallStackError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
