# SPDX-License-Identifier: MIT
"""Program configuration for cargo-call-stack.

ToolConfig collects the external programs this tool runs (cargo, rustc and
the analyzer). Each one can be overridden through the environment the same
way Cargo itself does it:

    CARGO=/opt/rust/bin/cargo RUSTC=/opt/rust/bin/rustc cargo call-stack --bin app

The values are read once at startup and passed to the components that need
them.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from cargo_call_stack.core.errors import ToolNotFoundError

CARGO_ENV = "CARGO"
RUSTC_ENV = "RUSTC"
ANALYZER_ENV = "CARGO_CALL_STACK_ANALYZER"

DEFAULT_ANALYZER = "call-stack-analyzer"


@dataclass(frozen=True)
class ToolConfig:
    """External programs used by a run.

    Attributes:
        cargo: Cargo command.
        rustc: rustc command used by the toolchain probe.
        analyzer: Whole-program stack analyzer command.
    """

    cargo: str = "cargo"
    rustc: str = "rustc"
    analyzer: str = DEFAULT_ANALYZER

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> ToolConfig:
        """Read program overrides from the environment.

        Args:
            environ: Environment to read (default: os.environ).
        """
        if environ is None:
            environ = os.environ
        return cls(
            cargo=environ.get(CARGO_ENV) or "cargo",
            rustc=environ.get(RUSTC_ENV) or "rustc",
            analyzer=environ.get(ANALYZER_ENV) or DEFAULT_ANALYZER,
        )


def find_program(
    name: str,
    *,
    required: bool = False,
) -> Path | None:
    """Find a program on the system.

    Searches the PATH environment variable. A name that already contains a
    directory separator is checked as-is.

    Args:
        name: Program name or path (e.g., 'cargo', '/usr/bin/rustc').
        required: If True, raise error if not found.

    Returns:
        Path to the program if found, None otherwise.

    Raises:
        ToolNotFoundError: If required and not found.
    """
    result = shutil.which(name)
    found_path = Path(result) if result else None

    if found_path is None and required:
        raise ToolNotFoundError(name)
    return found_path
