"""Project scope resolution — find the project a command applies to."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from spine.errors import NoProjectFoundError

logger = logging.getLogger(__name__)

DEFAULT_MANIFESTS = ("package.json",)
DEFAULT_DEPENDENCY_DIR = "node_modules"


@dataclass
class ProjectContext:
    """The project links are created in."""

    root_path: Path
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR

    @property
    def dependency_path(self) -> Path:
        return self.root_path / self.dependency_dir


def canonical_path(path: str | Path) -> str:
    """Absolute, symlink-resolved form of ``path``.

    Falls back to the plain absolute path when resolution fails.
    """
    try:
        return str(Path(path).resolve(strict=True))
    except OSError:
        return os.path.abspath(os.fspath(path))


def resolve_current_project(
    cwd: str | Path | None = None,
    manifest_names: tuple[str, ...] = DEFAULT_MANIFESTS,
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR,
    boundary: str | Path | None = None,
) -> ProjectContext:
    """Walk upward from ``cwd`` to the nearest directory holding a manifest.

    The walk stops at the filesystem root, at a mount point, or at
    ``boundary`` (inclusive).

    Raises:
        NoProjectFoundError: If no manifest is found before a stop.
    """
    start = Path(canonical_path(cwd if cwd is not None else os.getcwd()))
    stop = Path(canonical_path(boundary)) if boundary is not None else None

    current = start
    while True:
        for manifest in manifest_names:
            if (current / manifest).is_file():
                logger.debug("Resolved project %s (found %s)", current, manifest)
                return ProjectContext(root_path=current, dependency_dir=dependency_dir)

        if current == stop or current.parent == current or os.path.ismount(current):
            break
        current = current.parent

    raise NoProjectFoundError(str(start), tuple(manifest_names))
