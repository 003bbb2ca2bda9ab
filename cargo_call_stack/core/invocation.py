# SPDX-License-Identifier: MIT
"""Resolved command-line arguments for a cargo-call-stack run.

InvocationArgs is the validated form of the CLI flags. It is built once in
the CLI and passed down to the build driver and the handoff step.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from enum import Enum

from cargo_call_stack.analyzer import OutputFormat
from cargo_call_stack.core.errors import ConfigurationError


class ArtifactKind(Enum):
    """Kind of compiled output selected for analysis."""

    BIN = "bin"
    EXAMPLE = "example"


@dataclass(frozen=True)
class Artifact:
    """A binary or example target of the current package.

    Attributes:
        kind: Whether this is a binary or an example.
        name: Target name as written in Cargo.toml.
    """

    kind: ArtifactKind
    name: str

    @property
    def flag(self) -> str:
        """The cargo flag that selects this artifact."""
        return f"--{self.kind.value}"


@dataclass(frozen=True)
class InvocationArgs:
    """Arguments of a normal (non-interceptor) run.

    Attributes:
        artifact: The artifact to build and analyze.
        target: Target triple passed with --target, if any.
        features: Space-separated feature list, if any.
        all_features: Activate all features.
        format: Output format requested from the analyzer.
        start: Only consider the call graph rooted at this node.
    """

    artifact: Artifact
    target: str | None = None
    features: str | None = None
    all_features: bool = False
    format: OutputFormat = OutputFormat.DOT
    start: str | None = None

    @classmethod
    def from_namespace(cls, ns: argparse.Namespace) -> InvocationArgs:
        """Validate parsed CLI flags.

        Raises:
            ConfigurationError: If neither or both of --bin and --example
                were given.
        """
        return cls(
            artifact=select_artifact(ns.bin, ns.example),
            target=ns.target,
            features=ns.features,
            all_features=ns.all_features,
            format=OutputFormat(ns.format),
            start=ns.start,
        )


def select_artifact(bin_name: str | None, example: str | None) -> Artifact:
    """Resolve the artifact selector to exactly one artifact."""
    if example is not None and bin_name is None:
        return Artifact(ArtifactKind.EXAMPLE, example)
    if bin_name is not None and example is None:
        return Artifact(ArtifactKind.BIN, bin_name)
    raise ConfigurationError("Please specify either --example <NAME> or --bin <NAME>.")
