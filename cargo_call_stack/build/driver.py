# SPDX-License-Identifier: MIT
"""Build driver: runs ``cargo rustc`` with this program installed as wrapper.

The build is configured so that:

- the selected bin or example is compiled in release mode,
- the standard library is rebuilt from source (``-Zbuild-std``) so that
  compiler_builtins goes through the wrapper too,
- rustc emits LLVM IR next to the object code, with embedded bitcode and
  fat LTO so the whole program ends up in a single ``.ll`` module,
- every rustc invocation goes through ``RUSTC_WRAPPER``, which points back
  at this program with the interceptor sentinel set.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cargo_call_stack.configure.config import find_program
from cargo_call_stack.core.errors import BuildError, ConfigurationError
from cargo_call_stack.core.invocation import InvocationArgs
from cargo_call_stack.core.project import ProjectMetadata

logger = logging.getLogger(__name__)

WRAPPER_SENTINEL_ENV = "CARGO_CALL_STACK_RUSTC_WRAPPER"
RUSTC_WRAPPER_ENV = "RUSTC_WRAPPER"

SCRIPT_NAME = "cargo-call-stack"

# Crates rebuilt from source for targets without an operating system.
NO_STD_CRATES = ("core", "alloc", "compiler_builtins")

RUSTC_FLAGS = (
    # .ll file
    "--emit=llvm-ir,obj",
    # needed to produce a single .ll file
    "-C",
    "embed-bitcode=yes",
    "-C",
    "lto=fat",
)


@dataclass
class BuildCommand:
    """A fully assembled cargo invocation.

    Attributes:
        argv: Command and arguments.
        env: Complete environment for the child.
    """

    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return " ".join(shlex.quote(arg) for arg in self.argv)


def build_std_flag(no_std: bool) -> str:
    """The ``-Zbuild-std`` flag for a hosted or bare-metal target."""
    if no_std:
        return f"-Zbuild-std={','.join(NO_STD_CRATES)}"
    return "-Zbuild-std"


def self_executable(argv0: str | None = None) -> Path:
    """Path Cargo should execute to re-enter this program as a wrapper.

    This is the running console script when it can be executed directly,
    otherwise the ``cargo-call-stack`` script found on PATH.

    Raises:
        ConfigurationError: If no executable entry point can be found.
    """
    if argv0 is None:
        argv0 = sys.argv[0]
    if argv0:
        candidate = Path(argv0)
        if candidate.suffix != ".py" and candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate.resolve()
    found = find_program(SCRIPT_NAME)
    if found is None:
        raise ConfigurationError(
            f"cannot find the `{SCRIPT_NAME}` executable to install as RUSTC_WRAPPER; "
            "install the package so the script is on PATH"
        )
    return found.resolve()


def wrapper_env(
    wrapper_exe: Path, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Environment for cargo with the interceptor installed.

    A RUSTC_WRAPPER already set in the environment is replaced, not chained.
    """
    if environ is None:
        environ = os.environ
    env = dict(environ)
    previous = env.get(RUSTC_WRAPPER_ENV)
    if previous and previous != str(wrapper_exe):
        logger.warning(
            "Overriding %s=%s; the existing wrapper will not run during this build",
            RUSTC_WRAPPER_ENV,
            previous,
        )
    env[WRAPPER_SENTINEL_ENV] = "1"
    env[RUSTC_WRAPPER_ENV] = str(wrapper_exe)
    return env


def build_command(
    args: InvocationArgs,
    project: ProjectMetadata,
    no_std: bool,
    wrapper_exe: Path,
    cargo: str = "cargo",
    environ: Mapping[str, str] | None = None,
) -> BuildCommand:
    """Assemble the cargo invocation for an analysis build.

    Args:
        args: Validated command-line arguments.
        project: Project metadata.
        no_std: Whether the target has no operating system.
        wrapper_exe: Executable to install as RUSTC_WRAPPER.
        cargo: Cargo command.
        environ: Base environment (default: os.environ).

    Returns:
        The command, ready to spawn.
    """
    argv = [cargo, "rustc"]

    # NOTE the configured default target is *not* passed; cargo finds it in
    # .cargo/config itself.
    if args.target is not None:
        argv.extend(["--target", args.target])

    if args.all_features:
        argv.append("--all-features")
    elif args.features is not None:
        argv.extend(["--features", args.features])

    argv.extend([args.artifact.flag, args.artifact.name])

    if project.profile == "release":
        argv.append("--release")

    argv.append(build_std_flag(no_std))
    argv.extend(["--color=always", "--", *RUSTC_FLAGS])

    return BuildCommand(
        argv=argv,
        env=wrapper_env(wrapper_exe, environ),
    )


def spawn(command: BuildCommand) -> subprocess.Popen[bytes]:
    """Start cargo with stderr captured and stdout inherited.

    Raises:
        BuildError: If cargo cannot be started.
    """
    logger.info("Running: %s", command)
    try:
        return subprocess.Popen(
            command.argv,
            env=command.env,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise BuildError(f"failed to run {command.argv[0]}: {e}") from e
