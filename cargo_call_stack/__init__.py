# SPDX-License-Identifier: MIT
"""
cargo-call-stack: whole-program stack usage analysis for Rust programs.

Builds a binary or example with fat LTO and LLVM IR output, intercepting
rustc to locate compiler_builtins, then hands everything to the stack
analyzer.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Re-export commonly used classes for convenient imports
from cargo_call_stack.analyzer import (  # noqa: E402
    AnalysisRequest,
    Analyzer,
    CommandAnalyzer,
    OutputFormat,
)
from cargo_call_stack.core.errors import CallStackError  # noqa: E402
from cargo_call_stack.core.invocation import (  # noqa: E402
    Artifact,
    ArtifactKind,
    InvocationArgs,
)
from cargo_call_stack.core.project import ProjectMetadata  # noqa: E402

# Public API exports
__all__ = [
    # Version
    "__version__",
    # Analyzer interface
    "AnalysisRequest",
    "Analyzer",
    "CommandAnalyzer",
    "OutputFormat",
    # Core types
    "Artifact",
    "ArtifactKind",
    "CallStackError",
    "InvocationArgs",
    "ProjectMetadata",
]
