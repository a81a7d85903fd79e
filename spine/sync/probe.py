"""Filesystem probe — observe the actual state of one package link.

A probe answers three independent questions so the classifier can tell root
causes apart:

1. Does the package source directory exist?
2. Does it hold a descriptor whose name is exactly the record name?
3. For a given project, what sits at the expected link location?

Probing never touches the filesystem beyond ``stat``, ``readlink`` and
reading the descriptor.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from spine.registry.models import LinkRecord
from spine.utils.descriptor import DESCRIPTOR_NAME, DescriptorError, read_descriptor
from spine.utils.project import DEFAULT_DEPENDENCY_DIR

logger = logging.getLogger(__name__)


class SymlinkState(Enum):
    """What occupies the expected link location in a project."""

    ABSENT = "absent"
    CORRECT = "correct"
    WRONG_TARGET = "wrong_target"  # Symlink to somewhere else, or dangling
    OCCUPIED = "occupied"  # Regular file or directory


@dataclass
class ProbeResult:
    """Observed state for one record, optionally within one project."""

    source_exists: bool
    descriptor_valid: bool
    observed_version: str | None = None
    descriptor_error: str = ""
    project_path: str | None = None
    link_path: str | None = None
    symlink_state: SymlinkState | None = None
    symlink_target: str | None = None

    @property
    def installed_symlink(self) -> bool:
        return self.symlink_state is SymlinkState.CORRECT

    @property
    def link_present(self) -> bool:
        return self.symlink_state not in (None, SymlinkState.ABSENT)


def link_location(
    project_path: str | Path,
    name: str,
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR,
) -> Path:
    """Where the symlink for ``name`` lives inside ``project_path``.

    Scoped names (``@scope/pkg``) map to a ``@scope`` subdirectory.
    """
    return Path(project_path, dependency_dir, *name.split("/"))


def resolve_one_level(link_path: str | Path) -> str:
    """Return the normalised absolute target of a symlink, without following further."""
    target = os.readlink(link_path)
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(os.fspath(link_path)), target)
    return os.path.normpath(target)


def inspect_location(location: Path, source_path: str) -> tuple[SymlinkState, str | None]:
    """Classify what sits at ``location`` relative to ``source_path``."""
    try:
        st = os.lstat(location)
    except FileNotFoundError:
        return SymlinkState.ABSENT, None
    except NotADirectoryError:
        # A path component is a regular file.
        return SymlinkState.OCCUPIED, None

    if not stat.S_ISLNK(st.st_mode):
        return SymlinkState.OCCUPIED, None

    target = resolve_one_level(location)
    if target == os.path.normpath(source_path):
        return SymlinkState.CORRECT, target
    return SymlinkState.WRONG_TARGET, target


def probe(
    record: LinkRecord,
    project_path: str | Path | None = None,
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR,
    descriptor_name: str = DESCRIPTOR_NAME,
) -> ProbeResult:
    """Observe ``record`` on disk, and its link in ``project_path`` if given."""
    source_exists = os.path.isdir(record.source_path)
    descriptor_valid = False
    observed_version = None
    descriptor_error = ""

    if source_exists:
        try:
            descriptor = read_descriptor(record.source_path, descriptor_name)
        except DescriptorError as e:
            descriptor_error = str(e)
        else:
            observed_version = descriptor.version
            if descriptor.name == record.name:
                descriptor_valid = True
            else:
                descriptor_error = f"descriptor name is '{descriptor.name}'"

    result = ProbeResult(
        source_exists=source_exists,
        descriptor_valid=descriptor_valid,
        observed_version=observed_version,
        descriptor_error=descriptor_error,
    )

    if project_path is not None:
        location = link_location(project_path, record.name, dependency_dir)
        state, target = inspect_location(location, record.source_path)
        result.project_path = os.fspath(project_path)
        result.link_path = str(location)
        result.symlink_state = state
        result.symlink_target = target

    logger.debug("Probed %s in %s: %s", record.name, project_path, result)
    return result
