# SPDX-License-Identifier: MIT
"""Hand the build results over to the analyzer."""

from __future__ import annotations

import logging
from pathlib import Path

from cargo_call_stack.analyzer import AnalysisRequest, Analyzer
from cargo_call_stack.build.sidechannel import BuildOutcome
from cargo_call_stack.core.errors import MissingArtifactError
from cargo_call_stack.core.invocation import InvocationArgs
from cargo_call_stack.core.project import ProjectMetadata

logger = logging.getLogger(__name__)


def symbol_prefix(name: str) -> str:
    """Prefix of the mangled symbols that belong to an artifact's crate.

    rustc turns hyphens in crate names into underscores.
    """
    return f"{name.replace('-', '_')}-"


def handoff(
    outcome: BuildOutcome,
    args: InvocationArgs,
    project: ProjectMetadata,
    analyzer: Analyzer,
) -> int:
    """Run the analyzer on a finished build.

    Args:
        outcome: Result of the build step.
        args: Validated command-line arguments.
        project: Project metadata.
        analyzer: Analyzer to invoke.

    Returns:
        cargo's exit code if the build failed, otherwise the analyzer's.

    Raises:
        MissingArtifactError: If the build succeeded without reporting
            both compiler_builtins paths.
    """
    if not outcome.success:
        logger.info("Build failed with exit code %d; skipping analysis", outcome.returncode)
        return outcome.returncode

    rlib = outcome.compiler_builtins_rlib
    if rlib is None:
        raise MissingArtifactError("rlib")
    ll = outcome.compiler_builtins_ll
    if ll is None:
        raise MissingArtifactError("LLVM IR")

    request = AnalysisRequest(
        elf=project.artifact_path(args.artifact, args.target),
        compiler_builtins_rlib=Path(rlib),
        compiler_builtins_ll=Path(ll),
        target=project.effective_target(args.target),
        prefix=symbol_prefix(args.artifact.name),
        start=args.start,
        format=args.format,
    )
    logger.debug("%r", request)
    return analyzer.analyze(request)
