# SPDX-License-Identifier: MIT
"""rustc toolchain probe.

Queries the active rustc for the host triple and for the configuration of
a target. A target whose ``target_os`` is ``"none"`` has no hosted
operating-system runtime, so only ``core``, ``alloc`` and
``compiler_builtins`` can be rebuilt from source for it.
"""

from __future__ import annotations

import logging
import subprocess

from cargo_call_stack.core.errors import ToolchainProbeError

logger = logging.getLogger(__name__)


def _run_rustc(rustc: str, args: list[str]) -> str:
    cmd = [rustc, *args]
    logger.debug("Probing toolchain: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, check=False)
    except OSError as e:
        raise ToolchainProbeError(f"failed to run {rustc}: {e}") from e
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise ToolchainProbeError(
            f"`{' '.join(cmd)}` failed with exit code {result.returncode}: {stderr}"
        )
    try:
        text: str = result.stdout.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ToolchainProbeError(f"{rustc} produced non-UTF-8 output: {e}") from e
    return text


def parse_cfg(text: str) -> dict[str, list[str]]:
    """Parse ``rustc --print=cfg`` output.

    Lines are either a bare name (``debug_assertions``) or ``key="value"``.
    Keys may repeat (``target_feature``), so every key maps to a list.

    Args:
        text: Output of ``rustc --print=cfg``.

    Returns:
        Mapping of cfg key to its values; bare names map to an empty list.
    """
    cfg: dict[str, list[str]] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        values = cfg.setdefault(key, [])
        if sep:
            values.append(value.strip('"'))
    return cfg


def host_triple(rustc: str = "rustc") -> str:
    """Get the host target triple from ``rustc -vV``.

    Raises:
        ToolchainProbeError: If rustc cannot be run or reports no host.
    """
    for line in _run_rustc(rustc, ["-vV"]).splitlines():
        if line.startswith("host:"):
            return line[len("host:") :].strip()
    raise ToolchainProbeError(f"`{rustc} -vV` did not report a host triple")


def is_no_std(target: str, rustc: str = "rustc") -> bool:
    """Check whether a target has no operating-system runtime.

    Args:
        target: Target triple.
        rustc: rustc command.

    Returns:
        True if rustc reports ``target_os="none"`` for the target.

    Raises:
        ToolchainProbeError: If rustc cannot be run or its output is not text.
    """
    cfg = parse_cfg(_run_rustc(rustc, ["--print=cfg", "--target", target]))
    no_std = "none" in cfg.get("target_os", [])
    logger.debug("Target %s is %s", target, "no_std" if no_std else "hosted")
    return no_std
