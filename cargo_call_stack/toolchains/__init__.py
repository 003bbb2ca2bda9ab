# SPDX-License-Identifier: MIT
"""Toolchain probes."""

from cargo_call_stack.toolchains.rustc import (
    host_triple,
    is_no_std,
    parse_cfg,
)

__all__ = [
    "host_triple",
    "is_no_std",
    "parse_cfg",
]
