# SPDX-License-Identifier: MIT
"""Force Cargo to recompile the package.

The compiler interceptor only reports the compiler_builtins paths when
rustc actually runs, so a build served entirely from Cargo's cache would
produce no markers. Touching one source file of the package makes Cargo
rebuild it and relink, which in turn re-runs the fat-LTO step.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from cargo_call_stack.core.errors import RebuildError

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".rs"


def touch(path: Path, now: float) -> None:
    """Set the access and modification time of an existing file."""
    os.utime(path, (now, now))


def find_source(haystack: Path) -> Path | None:
    """Find the first Rust source file under a directory.

    Walks depth-first, visiting entries in sorted order so the result does
    not depend on directory listing order.

    Raises:
        RebuildError: If a directory cannot be read.
    """

    def onerror(e: OSError) -> None:
        raise RebuildError(str(e.filename or haystack), e.strerror or str(e))

    for dirpath, dirnames, filenames in os.walk(haystack, onerror=onerror):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename.endswith(SOURCE_SUFFIX):
                return Path(dirpath) / filename
    return None


def force_rebuild(root: Path, now: float | None = None) -> Path | None:
    """Touch a source file of the package at root.

    Candidates, in order: ``src/main.rs``, ``src/lib.rs``, then the first
    ``.rs`` file found under ``src`` (or under root when there is no
    ``src`` directory). Only the first candidate that can be touched is
    modified.

    Args:
        root: Package root (the directory of Cargo.toml).
        now: Timestamp to set (default: current time).

    Returns:
        The touched file, or None if the package has no Rust source file.

    Raises:
        RebuildError: If the fallback directory walk fails.
    """
    if now is None:
        now = time.time()

    for candidate in (root / "src" / "main.rs", root / "src" / "lib.rs"):
        try:
            touch(candidate, now)
        except OSError as e:
            logger.debug("Cannot touch %s: %s", candidate, e)
            continue
        logger.debug("Touched %s", candidate)
        return candidate

    src = root / "src"
    haystack = src if src.exists() else root
    found = find_source(haystack)
    if found is None:
        logger.debug("No Rust source found under %s; not forcing a rebuild", haystack)
        return None
    try:
        touch(found, now)
    except OSError as e:
        raise RebuildError(str(found), e.strerror or str(e)) from e
    logger.debug("Touched %s", found)
    return found
