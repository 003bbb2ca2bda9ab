# SPDX-License-Identifier: MIT
"""Compiler interceptor.

During an analysis build Cargo runs this program as ``RUSTC_WRAPPER``, i.e.
as ``cargo-call-stack /path/to/rustc ARGS...``, for every rustc invocation.
The invocation is forwarded to the real rustc. When it is the one that
compiles compiler_builtins, the interceptor also asks rustc for the LLVM IR
of the crate and reports where the rlib and the ``.ll`` file end up, using
the marker lines described in cargo_call_stack.build.sidechannel. Crates
that link compiler_builtins report the same paths, taken from ``--extern``,
for runs in which Cargo reuses a cached compiler_builtins.

The decision part (intercept) is a pure function of the invocation; only
run_wrapper touches processes.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TextIO

from cargo_call_stack.build.driver import WRAPPER_SENTINEL_ENV
from cargo_call_stack.build.sidechannel import MarkerKind, format_marker
from cargo_call_stack.core.errors import WrapperError

logger = logging.getLogger(__name__)

COMPILER_BUILTINS = "compiler_builtins"

# Crate types whose output is an rlib.
_LIBRARY_CRATE_TYPES = {"lib", "rlib"}


class Mode(Enum):
    """What this process was started to do."""

    NORMAL = "normal"
    INTERCEPT = "intercept"


def select_mode(environ: Mapping[str, str] | None = None) -> Mode:
    """Pick the mode from the sentinel environment variable."""
    if environ is None:
        environ = os.environ
    if WRAPPER_SENTINEL_ENV in environ:
        return Mode.INTERCEPT
    return Mode.NORMAL


def option_values(args: Sequence[str], name: str) -> list[str]:
    """Collect the values of a rustc option.

    Handles both ``--name value`` and ``--name=value``; for ``-C`` the
    attached form ``-Cvalue`` is recognized too.
    """
    values: list[str] = []
    short = name if len(name) == 2 else None
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == name:
            if i + 1 < len(args):
                values.append(args[i + 1])
            i += 2
            continue
        if arg.startswith(name + "="):
            values.append(arg[len(name) + 1 :])
        elif short is not None and arg.startswith(short) and len(arg) > 2:
            values.append(arg[2:])
        i += 1
    return values


def codegen_option(args: Sequence[str], key: str) -> str | None:
    """Get the last value of a ``-C key=value`` codegen option."""
    value: str | None = None
    for option in option_values(args, "-C") + option_values(args, "--codegen"):
        k, sep, v = option.partition("=")
        if k == key and sep:
            value = v
    return value


def extern_path(args: Sequence[str], crate: str) -> str | None:
    """Get the path given for a crate with ``--extern [OPTS:]NAME=PATH``."""
    path: str | None = None
    for value in option_values(args, "--extern"):
        name, sep, location = value.partition("=")
        if sep and name.rpartition(":")[2] == crate:
            path = location
    return path


def is_compiler_builtins_invocation(args: Sequence[str]) -> bool:
    """Check whether a rustc invocation compiles the compiler_builtins library.

    Args:
        args: rustc arguments, without the rustc path itself.

    Returns:
        True for the invocation producing compiler_builtins' rlib; False for
        every other crate, for compiler_builtins' build script, and for
        queries such as ``rustc -vV``.
    """
    if option_values(args, "--crate-name")[-1:] != [COMPILER_BUILTINS]:
        return False
    crate_types = {
        crate_type
        for value in option_values(args, "--crate-type")
        for crate_type in value.split(",")
    }
    return not crate_types or bool(crate_types & _LIBRARY_CRATE_TYPES)


def with_llvm_ir(args: Sequence[str]) -> list[str]:
    """Add ``llvm-ir`` to the outputs requested with ``--emit``.

    Other outputs and every other argument are left as they are.
    """
    result = list(args)
    for i, arg in enumerate(result):
        if arg.startswith("--emit="):
            kinds = arg[len("--emit=") :].split(",")
            if "llvm-ir" not in kinds:
                result[i] = arg + ",llvm-ir"
            return result
        if arg == "--emit" and i + 1 < len(result):
            kinds = result[i + 1].split(",")
            if "llvm-ir" not in kinds:
                result[i + 1] += ",llvm-ir"
            return result
    result.append("--emit=link,llvm-ir")
    return result


def with_single_codegen_unit(args: Sequence[str]) -> list[str]:
    """Append ``-C codegen-units=1`` so rustc writes one ``.ll`` file.

    With more codegen units rustc writes one ``*.rcgu.ll`` per unit and no
    combined file. The last ``-C codegen-units`` given wins.
    """
    return [*args, "-C", "codegen-units=1"]


@dataclass
class WrapperInvocation:
    """One rustc invocation received from Cargo.

    Attributes:
        argv: The real rustc followed by its arguments.
        cwd: Working directory of the invocation.
    """

    argv: list[str]
    cwd: Path = field(default_factory=Path.cwd)

    @property
    def rustc(self) -> str:
        if not self.argv:
            raise WrapperError(
                "no compiler given; this program must be run by cargo as RUSTC_WRAPPER"
            )
        return self.argv[0]

    @property
    def args(self) -> list[str]:
        return self.argv[1:]


@dataclass
class InterceptResult:
    """What the interceptor does with an invocation.

    Attributes:
        forward_argv: Command to run in place of the invocation.
        markers: Marker lines to report once the command succeeds.
        outputs: Files the markers point at; they must exist before the
            markers are reported.
    """

    forward_argv: list[str]
    markers: list[str] = field(default_factory=list)
    outputs: list[Path] = field(default_factory=list)


def compiler_builtins_outputs(invocation: WrapperInvocation) -> tuple[Path, Path]:
    """Paths of the rlib and the LLVM IR rustc writes for compiler_builtins.

    Raises:
        WrapperError: If the invocation has no ``--out-dir``.
    """
    out_dirs = option_values(invocation.args, "--out-dir")
    if not out_dirs:
        raise WrapperError(
            f"no --out-dir in {COMPILER_BUILTINS} invocation: {' '.join(invocation.args)}"
        )
    out_dir = invocation.cwd / out_dirs[-1]
    extra = codegen_option(invocation.args, "extra-filename") or ""
    rlib = out_dir / f"lib{COMPILER_BUILTINS}{extra}.rlib"
    ll = out_dir / f"{COMPILER_BUILTINS}{extra}.ll"
    return rlib, ll


def linked_compiler_builtins(invocation: WrapperInvocation) -> tuple[Path, Path] | None:
    """Paths of a compiler_builtins built earlier, as linked by this invocation.

    Crates that depend on compiler_builtins receive its rlib with
    ``--extern``. The LLVM IR of an intercepted build sits next to it. This
    covers runs where Cargo reuses compiler_builtins from its cache and never
    compiles it.
    """
    location = extern_path(invocation.args, COMPILER_BUILTINS)
    if location is None:
        return None
    rlib = invocation.cwd / location
    if not (rlib.name.startswith("lib") and rlib.suffix == ".rlib"):
        return None
    ll = rlib.with_name(rlib.name[len("lib") : -len(".rlib")] + ".ll")
    return rlib, ll


def _markers(rlib: Path, ll: Path) -> list[str]:
    return [
        format_marker(MarkerKind.COMPILER_BUILTINS_RLIB, rlib),
        format_marker(MarkerKind.COMPILER_BUILTINS_LL, ll),
    ]


def intercept(invocation: WrapperInvocation) -> InterceptResult:
    """Decide how to run one rustc invocation.

    Every invocation is forwarded to the real rustc. The compiler_builtins
    one additionally emits LLVM IR from a single codegen unit and produces
    the two marker lines. An invocation linking compiler_builtins is
    forwarded unchanged and reports the paths it links against.
    """
    if not is_compiler_builtins_invocation(invocation.args):
        result = InterceptResult(forward_argv=[invocation.rustc, *invocation.args])
        linked = linked_compiler_builtins(invocation)
        if linked is not None:
            result.markers = _markers(*linked)
            result.outputs = list(linked)
        return result

    rlib, ll = compiler_builtins_outputs(invocation)
    return InterceptResult(
        forward_argv=[
            invocation.rustc,
            *with_single_codegen_unit(with_llvm_ir(invocation.args)),
        ],
        markers=_markers(rlib, ll),
        outputs=[rlib, ll],
    )


def run_wrapper(
    argv: Sequence[str] | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Entry point of the interceptor mode.

    Args:
        argv: Real rustc and its arguments (default: sys.argv[1:]).
        stderr: Stream for marker lines (default: sys.stderr).

    Returns:
        The exit code of the real rustc.

    Raises:
        WrapperError: If no compiler was given or it cannot be run.
    """
    if argv is None:
        argv = sys.argv[1:]
    if stderr is None:
        stderr = sys.stderr

    result = intercept(WrapperInvocation(argv=list(argv)))
    try:
        returncode = subprocess.run(result.forward_argv).returncode
    except OSError as e:
        raise WrapperError(f"failed to run {result.forward_argv[0]}: {e}") from e
    if returncode < 0:
        returncode = 1

    if returncode != 0:
        return returncode

    missing = [path for path in result.outputs if not path.is_file()]
    if missing:
        for path in missing:
            logger.warning("%s does not exist; compiler_builtins not reported", path)
        return returncode
    for marker in result.markers:
        stderr.write(marker + "\n")
    stderr.flush()
    return returncode
