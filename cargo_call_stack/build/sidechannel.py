# SPDX-License-Identifier: MIT
"""Stderr side channel between the compiler interceptor and the driver.

The interceptor runs inside Cargo as a rustc wrapper and has no other way
to talk to the process that started Cargo, so it prints marker lines on
stderr. Cargo forwards rustc's stderr to its own, which the driver reads
line by line: marker lines are consumed, everything else is echoed to the
user as it arrives.

A marker line is a fixed prefix followed immediately by an absolute path,
without quoting:

    cargo-call-stack: compiler-builtins-rlib=/path/to/libcompiler_builtins-1234.rlib
    cargo-call-stack: compiler-builtins-ll=/path/to/compiler_builtins-1234.ll
"""

from __future__ import annotations

import io
import logging
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)


class MarkerKind(Enum):
    """Artifacts reported over the side channel."""

    COMPILER_BUILTINS_RLIB = "rlib"
    COMPILER_BUILTINS_LL = "ll"


MARKERS: tuple[tuple[str, MarkerKind], ...] = (
    ("cargo-call-stack: compiler-builtins-rlib=", MarkerKind.COMPILER_BUILTINS_RLIB),
    ("cargo-call-stack: compiler-builtins-ll=", MarkerKind.COMPILER_BUILTINS_LL),
)


def marker_prefix(kind: MarkerKind) -> str:
    """Get the line prefix for a marker kind."""
    for prefix, marker_kind in MARKERS:
        if marker_kind is kind:
            return prefix
    raise KeyError(kind)


def format_marker(kind: MarkerKind, path: Path | str) -> str:
    """Format a marker line, without the line terminator."""
    return f"{marker_prefix(kind)}{path}"


def parse_marker(line: str) -> tuple[MarkerKind, str] | None:
    """Split a marker line into its kind and path.

    Returns:
        (kind, path) if the line starts with a marker prefix, else None.
    """
    for prefix, kind in MARKERS:
        if line.startswith(prefix):
            return kind, line[len(prefix) :]
    return None


def _strip_newline(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
    return line


def read_side_channel(lines: Iterable[str], echo: TextIO) -> dict[MarkerKind, str]:
    """Consume a diagnostic stream, separating markers from output.

    Non-marker lines are written to echo unchanged, in order, as soon as
    they are read; a final line without a terminator gets one. Only the
    line terminator is removed from a marker value.

    Args:
        lines: The stream to read, one line per item.
        echo: Where non-marker lines go (normally sys.stderr).

    Returns:
        The marker values seen, keyed by kind.
    """
    found: dict[MarkerKind, str] = {}
    for raw in lines:
        line = _strip_newline(raw)
        marker = parse_marker(line)
        if marker is None:
            echo.write(raw if raw.endswith("\n") else raw + "\n")
            echo.flush()
            continue
        kind, value = marker
        if kind in found and found[kind] != value:
            logger.warning(
                "compiler_builtins %s reported more than once: %s replaces %s",
                kind.value,
                value,
                found[kind],
            )
        found[kind] = value
        logger.debug("Found compiler_builtins %s: %s", kind.value, value)
    return found


@dataclass
class BuildOutcome:
    """Result of the build step.

    Attributes:
        returncode: Exit status of cargo.
        markers: Marker values reported by the interceptor.
    """

    returncode: int
    markers: dict[MarkerKind, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def compiler_builtins_rlib(self) -> str | None:
        return self.markers.get(MarkerKind.COMPILER_BUILTINS_RLIB)

    @property
    def compiler_builtins_ll(self) -> str | None:
        return self.markers.get(MarkerKind.COMPILER_BUILTINS_LL)


def collect(child: subprocess.Popen[bytes], echo: TextIO) -> BuildOutcome:
    """Read a child's stderr to the end, then wait for it to exit.

    The child must have been started with ``stderr=subprocess.PIPE`` in
    binary mode. Lines are split on ``\\n`` only so that carriage returns
    inside cargo's output survive.
    """
    assert child.stderr is not None
    stream = io.TextIOWrapper(
        child.stderr, encoding="utf-8", errors="surrogateescape", newline="\n"
    )
    with stream:
        markers = read_side_channel(stream, echo)
    returncode = child.wait()
    if returncode < 0:
        logger.warning("cargo was terminated by signal %d", -returncode)
        returncode = 1
    return BuildOutcome(returncode=returncode, markers=markers)
