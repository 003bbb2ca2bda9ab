# SPDX-License-Identifier: MIT
"""Interface to the whole-program stack analyzer.

The analyzer builds the call graph from the LLVM IR, resolves indirect
calls and computes worst-case stack usage. It is an external program; this
module only describes the request handed to it and runs it.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from cargo_call_stack.configure.config import DEFAULT_ANALYZER, find_program

logger = logging.getLogger(__name__)


class OutputFormat(Enum):
    """Output formats understood by the analyzer."""

    DOT = "dot"
    TOP = "top"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AnalysisRequest:
    """Everything the analyzer needs for one run.

    Attributes:
        elf: Path to the linked executable.
        compiler_builtins_rlib: Path to the compiler_builtins rlib.
        compiler_builtins_ll: Path to the compiler_builtins LLVM IR file.
        target: Target triple the executable was compiled for.
        prefix: Symbol prefix identifying the artifact's own crate.
        start: Only consider the call graph rooted at this node.
        format: Requested output format.
    """

    elf: Path
    compiler_builtins_rlib: Path
    compiler_builtins_ll: Path
    target: str
    prefix: str = ""
    start: str | None = None
    format: OutputFormat = OutputFormat.DOT

    def to_args(self) -> list[str]:
        """Command-line arguments for the analyzer program."""
        args = [
            "--target",
            self.target,
            "--format",
            self.format.value,
            "--elf",
            str(self.elf),
            "--compiler-builtins-rlib-path",
            str(self.compiler_builtins_rlib),
            "--compiler-builtins-ll-path",
            str(self.compiler_builtins_ll),
        ]
        if self.prefix:
            args.extend(["--prefix", self.prefix])
        if self.start is not None:
            args.extend(["--start", self.start])
        return args


@runtime_checkable
class Analyzer(Protocol):
    """Protocol for stack analyzers."""

    def analyze(self, request: AnalysisRequest) -> int:
        """Run the analysis and return the process exit code."""
        ...


class CommandAnalyzer:
    """Analyzer backed by an external program.

    The program receives the request as command-line flags (see
    AnalysisRequest.to_args) and writes its report to standard output.
    """

    def __init__(self, program: str = DEFAULT_ANALYZER) -> None:
        self.program = program

    def analyze(self, request: AnalysisRequest) -> int:
        found = find_program(self.program, required=True)
        cmd = [str(found), *request.to_args()]
        logger.info("Running: %s", " ".join(cmd))
        result = subprocess.run(cmd)
        return result.returncode

    def __repr__(self) -> str:
        return f"CommandAnalyzer({self.program!r})"
