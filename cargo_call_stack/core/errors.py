# SPDX-License-Identifier: MIT
"""Custom exceptions for cargo-call-stack.

All exceptions inherit from CallStackError. The CLI catches CallStackError
once, in main(), and reports it as a single ``error: ...`` line.
"""

from __future__ import annotations


class CallStackError(Exception):
    """Base class for all cargo-call-stack exceptions.

    Attributes:
        message: The error message.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(CallStackError):
    """Invalid or contradictory command-line input or environment.

    Raised before any subprocess is spawned.
    """


class ToolNotFoundError(ConfigurationError):
    """Required program was not found.

    Attributes:
        tool: The name of the program that was not found.
    """

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"tool not found: {tool}")


class ToolchainProbeError(CallStackError):
    """rustc could not be queried or its output could not be decoded."""


class RebuildError(CallStackError):
    """Walking the source tree to force a rebuild failed.

    Attributes:
        path: The path where the walk failed.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"failed to scan {path}: {reason}")


class BuildError(CallStackError):
    """The cargo process could not be started."""


class MissingArtifactError(CallStackError):
    """The build succeeded but a required artifact path was never reported.

    Attributes:
        artifact: Which artifact is missing.
    """

    def __init__(self, artifact: str) -> None:
        self.artifact = artifact
        super().__init__(
            f"runtime-support library `compiler_builtins` not found: "
            f"no {artifact} path was reported by the build"
        )


class WrapperError(CallStackError):
    """The compiler interceptor was invoked with an unusable argument vector."""
