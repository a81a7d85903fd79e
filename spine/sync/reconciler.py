"""Reconciler — bring package links on disk in line with the registry.

The reconciler is the only component that creates or removes symlinks. Each
operation is idempotent and works per package and per project: a failure on
one item is recorded in the report and never stops the rest of a batch.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from spine.errors import (
    BrokenSymlinkError,
    InvalidDescriptorError,
    MissingSourceError,
    PermissionDeniedError,
    ProjectNotFoundError,
    SpineError,
)
from spine.registry.link_store import LinkStore
from spine.registry.models import HealthVerdict, LinkRecord
from spine.sync.health import RecordHealth, check_record, classify
from spine.sync.probe import ProbeResult, SymlinkState, inspect_location, link_location, probe
from spine.utils.descriptor import DESCRIPTOR_NAME, DescriptorError, read_descriptor
from spine.utils.project import DEFAULT_DEPENDENCY_DIR, canonical_path

logger = logging.getLogger(__name__)

_TMP_PATTERN = re.compile(r"^\..+\.spine-\d+\.tmp$")


class Action:
    LINKED = "linked"  # Symlink created
    RELINKED = "relinked"  # Wrong occupant replaced by a correct symlink
    UNCHANGED = "unchanged"  # Already in the desired state
    UNLINKED = "unlinked"  # Symlink removed
    PRUNED = "pruned"  # Stale project entry dropped from the registry
    ADOPTED = "adopted"  # Existing correct symlink recorded in the registry
    REFRESHED = "refreshed"  # Declared version updated from the descriptor


@dataclass
class LinkAction:
    """One thing the reconciler did (or confirmed) for a package."""

    package: str
    project: str
    action: str
    path: str = ""

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "project": self.project,
            "action": self.action,
            "path": self.path,
        }


@dataclass
class LinkFailure:
    """A package/project pair the reconciler could not bring into line."""

    package: str
    project: str
    error: SpineError

    @property
    def verdict(self) -> HealthVerdict | None:
        return self.error.verdict

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "project": self.project,
            "error": self.error.message,
            "verdict": self.verdict.value if self.verdict else None,
            "suggestion": self.error.suggestion,
        }


@dataclass
class ReconcileReport:
    """Everything an operation did, plus fresh health for affected records."""

    operation: str
    actions: list[LinkAction] = field(default_factory=list)
    failures: list[LinkFailure] = field(default_factory=list)
    health: dict[str, RecordHealth] = field(default_factory=dict)
    untracked: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    @property
    def changes(self) -> list[LinkAction]:
        return [a for a in self.actions if a.action != Action.UNCHANGED]

    @property
    def removals(self) -> list[tuple[str, str]]:
        return [(a.package, a.project) for a in self.actions if a.action == Action.PRUNED]

    def summary(self) -> str:
        changed = len(self.changes)
        unchanged = len(self.actions) - changed
        return (
            f"{self.operation}: {changed} changed, {unchanged} unchanged, "
            f"{len(self.failures)} failed"
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "actions": [a.to_dict() for a in self.actions],
            "failures": [f.to_dict() for f in self.failures],
            "health": {name: h.to_dict() for name, h in self.health.items()},
            "untracked": list(self.untracked),
        }


class Reconciler:
    """Applies link operations against a ``LinkStore`` and the filesystem."""

    def __init__(
        self,
        store: LinkStore,
        dependency_dir: str = DEFAULT_DEPENDENCY_DIR,
        descriptor_name: str = DESCRIPTOR_NAME,
    ):
        self.store = store
        self.dependency_dir = dependency_dir
        self.descriptor_name = descriptor_name

    # ── Link ─────────────────────────────────────────────────────────

    def link(self, name: str, project_path: str | Path, repair: bool = False) -> ReconcileReport:
        """Link one package into a project.

        Raises:
            PackageNotFoundError: Unknown package.
            MissingSourceError, InvalidDescriptorError: Source is unusable.
            BrokenSymlinkError: Something else occupies the link location
                and ``repair`` is False.
            PermissionDeniedError: The OS refused the change.
        """
        project = canonical_path(project_path)
        report = ReconcileReport(operation="link")
        report.actions.append(self._link_one(name, project, repair))
        self._attach_health(report, [name], [project])
        return report

    def link_all(self, project_path: str | Path, repair: bool = False) -> ReconcileReport:
        """Link every configured package into a project."""
        project = canonical_path(project_path)
        report = ReconcileReport(operation="link-all")
        names = self.store.names()
        for name in names:
            try:
                report.actions.append(self._link_one(name, project, repair))
            except SpineError as e:
                logger.warning("Failed to link %s into %s: %s", name, project, e.message)
                report.failures.append(LinkFailure(name, project, e))
        self._attach_health(report, names, [project])
        return report

    def _link_one(self, name: str, project: str, repair: bool) -> LinkAction:
        record = self.store.require(name)
        _require_project(name, project)
        result = self._probe(record, project)
        self._require_usable_source(record, result)

        location = Path(result.link_path)
        if result.symlink_state is SymlinkState.CORRECT:
            self.store.record_link(name, project)
            return LinkAction(name, project, Action.UNCHANGED, str(location))

        action = Action.LINKED
        if result.symlink_state in (SymlinkState.WRONG_TARGET, SymlinkState.OCCUPIED):
            if not repair:
                raise BrokenSymlinkError(name, str(location), result.symlink_target or "")
            self._remove_occupant(name, location)
            action = Action.RELINKED

        self._create_symlink(name, location, record.source_path)
        try:
            self.store.record_link(name, project)
        except SpineError:
            with contextlib.suppress(OSError):
                os.unlink(location)
            raise
        logger.info("%s %s -> %s", action.capitalize(), location, record.source_path)
        return LinkAction(name, project, action, str(location))

    # ── Unlink ───────────────────────────────────────────────────────

    def unlink(self, name: str, project_path: str | Path, force: bool = False) -> ReconcileReport:
        """Remove a package's symlink from a project.

        A missing symlink is not an error. Anything at the location that is
        not our symlink is left alone unless ``force`` is set.
        """
        project = canonical_path(project_path)
        report = ReconcileReport(operation="unlink")
        report.actions.append(self._unlink_one(name, project, force))
        self._attach_health(report, [name], [project])
        return report

    def unlink_all(self, project_path: str | Path, force: bool = False) -> ReconcileReport:
        """Unlink every package that is recorded for, or present in, a project."""
        project = canonical_path(project_path)
        report = ReconcileReport(operation="unlink-all")
        names = []
        for record in self.store.list():
            location = link_location(project, record.name, self.dependency_dir)
            if record.is_linked_to(project) or os.path.lexists(location):
                names.append(record.name)

        for name in names:
            try:
                report.actions.append(self._unlink_one(name, project, force))
            except SpineError as e:
                logger.warning("Failed to unlink %s from %s: %s", name, project, e.message)
                report.failures.append(LinkFailure(name, project, e))
        self._attach_health(report, names, [project])
        return report

    def _unlink_one(self, name: str, project: str, force: bool) -> LinkAction:
        record = self.store.require(name)
        location = link_location(project, name, self.dependency_dir)
        with _fs_errors(name, location, "inspect"):
            state, target = inspect_location(location, record.source_path)

        if state is SymlinkState.ABSENT:
            action = Action.UNCHANGED
        elif state is SymlinkState.CORRECT or force:
            self._remove_occupant(name, location)
            action = Action.UNLINKED
            logger.info("Unlinked %s", location)
        else:
            raise BrokenSymlinkError(name, str(location), target or "")

        self.store.record_unlink(name, project)
        return LinkAction(name, project, action, str(location))

    # ── Verify ───────────────────────────────────────────────────────

    def verify(self) -> ReconcileReport:
        """Prune registry entries whose link location holds the wrong thing.

        Only the registry changes; nothing on disk is created or removed.
        """
        report = ReconcileReport(operation="verify")
        for record in self.store.list():
            for project in record.linked_projects:
                try:
                    result = self._probe(record, project)
                except SpineError as e:
                    report.failures.append(LinkFailure(record.name, project, e))
                    continue
                if classify(record, result) is HealthVerdict.BROKEN_SYMLINK:
                    self.store.record_unlink(record.name, project)
                    logger.info("Pruned %s from %s", record.name, project)
                    report.actions.append(
                        LinkAction(record.name, project, Action.PRUNED, result.link_path or "")
                    )
        self._attach_health(report, self.store.names())
        return report

    # ── Sync ─────────────────────────────────────────────────────────

    def sync(self, force: bool = False) -> ReconcileReport:
        """Recreate every recorded link that is missing or points elsewhere.

        Stale symlinks are replaced; a regular file or directory in the way
        is only replaced with ``force``. Records with an unusable source are
        reported and skipped.
        """
        report = ReconcileReport(operation="sync")
        for record in self.store.list():
            if not record.linked_projects:
                continue
            source = self._probe(record, None)
            try:
                self._require_usable_source(record, source)
            except SpineError as e:
                logger.warning("Skipping %s: %s", record.name, e.message)
                report.failures.append(LinkFailure(record.name, "", e))
                continue

            for project in record.linked_projects:
                try:
                    report.actions.append(self._sync_one(record, project, force))
                except SpineError as e:
                    logger.warning("Failed to sync %s into %s: %s", record.name, project, e.message)
                    report.failures.append(LinkFailure(record.name, project, e))
        self._attach_health(report, self.store.names())
        return report

    def _sync_one(self, record: LinkRecord, project: str, force: bool) -> LinkAction:
        _require_project(record.name, project)
        result = self._probe(record, project)
        location = Path(result.link_path)
        state = result.symlink_state

        if state is SymlinkState.CORRECT:
            return LinkAction(record.name, project, Action.UNCHANGED, str(location))
        if state is SymlinkState.OCCUPIED and not force:
            raise BrokenSymlinkError(record.name, str(location))

        action = Action.LINKED
        if state is not SymlinkState.ABSENT:
            self._remove_occupant(record.name, location)
            action = Action.RELINKED
        self._create_symlink(record.name, location, record.source_path)
        logger.info("Restored %s -> %s", location, record.source_path)
        return LinkAction(record.name, project, action, str(location))

    # ── Discover ─────────────────────────────────────────────────────

    def discover(self, project_path: str | Path) -> ReconcileReport:
        """Record correct links found on disk, and list unknown ones.

        A package whose symlink in the project already points at its source
        but whose registry entry doesn't mention the project is adopted.
        Symlinks in the dependency directory that match no record are
        reported as untracked.
        """
        project = canonical_path(project_path)
        report = ReconcileReport(operation="discover")
        adopted = []
        for record in self.store.list():
            location = link_location(project, record.name, self.dependency_dir)
            try:
                with _fs_errors(record.name, location, "inspect"):
                    state, _ = inspect_location(location, record.source_path)
            except SpineError as e:
                report.failures.append(LinkFailure(record.name, project, e))
                continue
            if state is SymlinkState.CORRECT and not record.is_linked_to(project):
                self.store.record_link(record.name, project)
                adopted.append(record.name)
                report.actions.append(LinkAction(record.name, project, Action.ADOPTED, str(location)))

        known = set(self.store.names())
        report.untracked = [
            name for name in linked_package_names(Path(project, self.dependency_dir))
            if name not in known
        ]
        self._attach_health(report, adopted, [project])
        return report

    # ── Refresh ──────────────────────────────────────────────────────

    def refresh(self, name: str | None = None) -> ReconcileReport:
        """Update declared versions from the live descriptors."""
        report = ReconcileReport(operation="refresh")
        names = [self.store.require(name).name] if name else self.store.names()
        for package in names:
            record = self.store.require(package)
            try:
                if not os.path.isdir(record.source_path):
                    raise MissingSourceError(package, record.source_path)
                try:
                    descriptor = read_descriptor(record.source_path, self.descriptor_name)
                except DescriptorError as e:
                    raise InvalidDescriptorError(package, record.source_path, str(e)) from e
                if descriptor.name != package:
                    raise InvalidDescriptorError(
                        package, record.source_path, f"descriptor name is '{descriptor.name}'"
                    )
            except SpineError as e:
                report.failures.append(LinkFailure(package, "", e))
                continue

            changed = self.store.update_version(package, descriptor.version)
            action = Action.REFRESHED if changed else Action.UNCHANGED
            report.actions.append(LinkAction(package, "", action, record.source_path))
        self._attach_health(report, names)
        return report

    # ── Status ───────────────────────────────────────────────────────

    def status(self, project_path: str | Path | None = None) -> list[RecordHealth]:
        """Fresh health for every record, in registry order.

        With ``project_path`` each record is checked in that project only;
        otherwise in all of its linked projects.
        """
        projects = [canonical_path(project_path)] if project_path is not None else None
        return [self._check(record, projects) for record in self.store.list()]

    # ── Internals ────────────────────────────────────────────────────

    def _probe(self, record: LinkRecord, project: str | None) -> ProbeResult:
        location = (
            link_location(project, record.name, self.dependency_dir) if project else record.source_path
        )
        with _fs_errors(record.name, location, "inspect"):
            return probe(record, project, self.dependency_dir, self.descriptor_name)

    def _check(self, record: LinkRecord, projects: list[str] | None) -> RecordHealth:
        return check_record(record, projects, self.dependency_dir, self.descriptor_name)

    def _attach_health(
        self, report: ReconcileReport, names: list[str], projects: list[str] | None = None
    ) -> None:
        for name in names:
            record = self.store.get(name)
            if record is None:
                continue
            try:
                report.health[name] = self._check(record, projects)
            except OSError as e:
                logger.warning("Could not check health of %s: %s", name, e)

    @staticmethod
    def _require_usable_source(record: LinkRecord, result: ProbeResult) -> None:
        if not result.source_exists:
            raise MissingSourceError(record.name, record.source_path)
        if not result.descriptor_valid:
            raise InvalidDescriptorError(record.name, record.source_path, result.descriptor_error)

    @staticmethod
    def _create_symlink(name: str, location: Path, source_path: str) -> None:
        """Create ``location -> source_path`` via a temporary name and rename."""
        tmp = location.parent / f".{location.name}.spine-{os.getpid()}.tmp"
        with _fs_errors(name, location, "create"):
            location.parent.mkdir(parents=True, exist_ok=True)
            if os.path.lexists(tmp):
                os.unlink(tmp)
            os.symlink(source_path, tmp, target_is_directory=True)
            try:
                os.replace(tmp, location)
            except OSError:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise

    @staticmethod
    def _remove_occupant(name: str, location: Path) -> None:
        with _fs_errors(name, location, "remove"):
            if location.is_symlink() or not location.is_dir():
                os.unlink(location)
            else:
                shutil.rmtree(location)


def _require_project(name: str, project: str) -> None:
    if not os.path.isdir(project):
        raise ProjectNotFoundError(project, name)


def _is_scratch_link(name: str) -> bool:
    """True for the temporary names ``_create_symlink`` renames into place."""
    return _TMP_PATTERN.match(name) is not None


def linked_package_names(dependency_path: Path) -> list[str]:
    """Names of all symlinked packages in a dependency directory, sorted.

    Scoped packages are looked for one level down inside ``@scope`` folders.
    """
    if not dependency_path.is_dir():
        return []

    names = []
    for entry in dependency_path.iterdir():
        if _is_scratch_link(entry.name):
            continue
        if entry.is_symlink():
            names.append(entry.name)
        elif entry.name.startswith("@") and entry.is_dir():
            for scoped in entry.iterdir():
                if scoped.is_symlink() and not _is_scratch_link(scoped.name):
                    names.append(f"{entry.name}/{scoped.name}")
    return sorted(names)


@contextlib.contextmanager
def _fs_errors(package: str, path: str | Path, operation: str):
    """Translate OS errors into ``SpineError`` so batches can carry on."""
    try:
        yield
    except PermissionError as e:
        raise PermissionDeniedError(package, str(path), operation) from e
    except OSError as e:
        raise SpineError(
            f"Could not {operation} {path}: {e.strerror or e}",
            package=package,
            path=str(path),
        ) from e
