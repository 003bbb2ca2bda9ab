# SPDX-License-Identifier: MIT
"""Cargo project metadata.

ProjectMetadata is resolved once at startup from the current directory and
threaded through every component. It answers the questions the build
driver and the handoff step have about the package:

- where its manifest and sources live,
- where Cargo puts build outputs,
- which target triple is configured by default,
- where the final executable of a bin or example ends up.

Cargo configuration is read from ``.cargo/config.toml`` (or the legacy
``.cargo/config``) in the current directory and its ancestors, nearest
first, then from ``$CARGO_HOME``.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from cargo_call_stack.core.errors import ConfigurationError
from cargo_call_stack.core.invocation import Artifact, ArtifactKind

logger = logging.getLogger(__name__)

MANIFEST = "Cargo.toml"
TARGET_DIR_ENV = "CARGO_TARGET_DIR"
CARGO_HOME_ENV = "CARGO_HOME"

# Only release builds produce the fat-LTO module the analyzer needs.
PROFILE = "release"


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        raise ConfigurationError(f"failed to parse {path}: {e}") from e


def find_manifest(start: Path) -> Path:
    """Find the nearest Cargo.toml in start or its ancestors.

    Raises:
        ConfigurationError: If no manifest exists.
    """
    for directory in (start, *start.parents):
        candidate = directory / MANIFEST
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        f"could not find `{MANIFEST}` in `{start}` or any parent directory"
    )


def find_workspace_root(manifest: Path) -> Path:
    """Find the root of the workspace a package belongs to.

    The root is the nearest directory, starting at the package itself,
    whose manifest has a ``[workspace]`` table. A package that is not part
    of a workspace is its own root.
    """
    package_root = manifest.parent
    for directory in (package_root, *package_root.parents):
        candidate = directory / MANIFEST
        if candidate.is_file() and "workspace" in _load_toml(candidate):
            return directory
    return package_root


def _config_files(start: Path, environ: Mapping[str, str]) -> list[Path]:
    """Cargo config files, highest precedence first."""
    dirs = [start, *start.parents]
    cargo_home = environ.get(CARGO_HOME_ENV)
    home = Path(cargo_home) if cargo_home else Path.home() / ".cargo"

    files: list[Path] = []
    for directory in dirs:
        for name in ("config.toml", "config"):
            candidate = directory / ".cargo" / name
            if candidate.is_file():
                files.append(candidate)
                break
    for name in ("config.toml", "config"):
        candidate = home / name
        if candidate.is_file() and candidate not in files:
            files.append(candidate)
            break
    return files


def read_build_config(
    start: Path, environ: Mapping[str, str] | None = None
) -> tuple[str | None, Path | None]:
    """Read ``build.target`` and ``build.target-dir`` from Cargo config.

    A relative ``target-dir`` is relative to the directory containing the
    ``.cargo`` directory that defines it.

    Returns:
        Tuple of (default target, target directory); either may be None.
    """
    if environ is None:
        environ = os.environ

    target: str | None = None
    target_dir: Path | None = None
    for path in _config_files(start, environ):
        build = _load_toml(path).get("build", {})
        if target is None and "target" in build:
            value = build["target"]
            # build.target may also be a list of triples
            if isinstance(value, list):
                value = value[0] if value else None
            target = value
            logger.debug("build.target = %s (from %s)", target, path)
        if target_dir is None and "target-dir" in build:
            target_dir = path.parent.parent / build["target-dir"]
            logger.debug("build.target-dir = %s (from %s)", target_dir, path)
    return target, target_dir


def executable_suffix(target: str) -> str:
    """File suffix of executables built for a target."""
    if "windows" in target:
        return ".exe"
    if target.startswith(("wasm32", "wasm64")):
        return ".wasm"
    return ""


@dataclass(frozen=True)
class ProjectMetadata:
    """Read-only description of the Cargo package being analyzed.

    Attributes:
        manifest: Path to the package's Cargo.toml.
        workspace_root: Root of the workspace containing the package.
        target_dir: Directory where Cargo writes build outputs.
        host: Host target triple.
        target: Default target from Cargo config, if any.
        profile: Build profile; always release.
    """

    manifest: Path
    workspace_root: Path
    target_dir: Path
    host: str
    target: str | None = None
    profile: str = PROFILE

    @property
    def root(self) -> Path:
        """Directory containing the package manifest."""
        return self.manifest.parent

    @classmethod
    def query(
        cls,
        cwd: Path,
        host: str,
        environ: Mapping[str, str] | None = None,
    ) -> ProjectMetadata:
        """Resolve project metadata for the package containing cwd.

        Args:
            cwd: Directory to start the search from.
            host: Host triple reported by rustc.
            environ: Environment to read (default: os.environ).

        Raises:
            ConfigurationError: If no manifest is found or a manifest or
                config file cannot be parsed.
        """
        if environ is None:
            environ = os.environ

        cwd = cwd.absolute()
        manifest = find_manifest(cwd)
        workspace_root = find_workspace_root(manifest)
        target, config_target_dir = read_build_config(cwd, environ)

        env_target_dir = environ.get(TARGET_DIR_ENV)
        if env_target_dir:
            target_dir = cwd / env_target_dir
        elif config_target_dir is not None:
            target_dir = config_target_dir
        else:
            target_dir = workspace_root / "target"

        project = cls(
            manifest=manifest,
            workspace_root=workspace_root,
            target_dir=target_dir,
            host=host,
            target=target,
        )
        logger.debug("%r", project)
        return project

    def effective_target(self, explicit: str | None = None) -> str:
        """Target triple the artifact is compiled for.

        An explicit --target wins over the configured default, which wins
        over the host triple.
        """
        return explicit or self.target or self.host

    def artifact_path(self, artifact: Artifact, explicit_target: str | None = None) -> Path:
        """Path of the linked executable for an artifact.

        Cargo adds a per-triple directory only when a target was requested,
        either with --target or through ``build.target``.
        """
        path = self.target_dir
        requested = explicit_target or self.target
        if requested:
            # custom target specs are named after the file stem
            if requested.endswith(".json"):
                requested = Path(requested).stem
            path = path / requested
        path = path / self.profile
        if artifact.kind is ArtifactKind.EXAMPLE:
            path = path / "examples"
        suffix = executable_suffix(self.effective_target(explicit_target))
        return path / f"{artifact.name}{suffix}"
