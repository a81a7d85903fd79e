"""Health classification — turn a probe into a single ranked verdict.

Rules are checked in a fixed order and the first match wins:

1. Source directory missing               -> MISSING_SOURCE
2. Descriptor missing or misnamed         -> INVALID_DESCRIPTOR
3. Link location holds the wrong thing    -> BROKEN_SYMLINK
4. Link location is empty                 -> NOT_LINKED
5. Live version differs from the recorded -> VERSION_DRIFT
6. Otherwise                              -> HEALTHY

Rules 3 and 4 apply only when a project was probed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from spine.errors import suggestion_for
from spine.registry.models import HealthVerdict, LinkRecord, worst
from spine.sync.probe import ProbeResult, SymlinkState, probe
from spine.utils.descriptor import DESCRIPTOR_NAME
from spine.utils.project import DEFAULT_DEPENDENCY_DIR


def classify(record: LinkRecord, result: ProbeResult) -> HealthVerdict:
    """Classify one probe result. Pure and total."""
    if not result.source_exists:
        return HealthVerdict.MISSING_SOURCE
    if not result.descriptor_valid:
        return HealthVerdict.INVALID_DESCRIPTOR
    if result.symlink_state in (SymlinkState.WRONG_TARGET, SymlinkState.OCCUPIED):
        return HealthVerdict.BROKEN_SYMLINK
    if result.symlink_state is SymlinkState.ABSENT:
        return HealthVerdict.NOT_LINKED
    if (
        result.observed_version is not None
        and record.declared_version is not None
        and result.observed_version != record.declared_version
    ):
        return HealthVerdict.VERSION_DRIFT
    return HealthVerdict.HEALTHY


@dataclass
class RecordHealth:
    """Health of one record across the projects it was checked in."""

    name: str
    verdict: HealthVerdict
    source_path: str
    declared_version: str | None = None
    observed_version: str | None = None
    linked_projects: list[str] = field(default_factory=list)
    projects: dict[str, HealthVerdict] = field(default_factory=dict)
    details: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.verdict is HealthVerdict.HEALTHY

    @property
    def suggestion(self) -> str:
        return suggestion_for(self.verdict, self.name)

    def summary(self) -> str:
        version = self.declared_version or "unknown"
        return f"{self.name} v{version}: {self.verdict.label}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "verdict": self.verdict.value,
            "source_path": self.source_path,
            "declared_version": self.declared_version,
            "observed_version": self.observed_version,
            "linked_projects": list(self.linked_projects),
            "projects": {p: v.value for p, v in self.projects.items()},
            "details": list(self.details),
        }


def check_record(
    record: LinkRecord,
    projects: list[str] | None = None,
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR,
    descriptor_name: str = DESCRIPTOR_NAME,
) -> RecordHealth:
    """Probe ``record`` in every project and report the worst verdict.

    ``projects`` defaults to the record's linked projects. With no projects at
    all the record is probed on its own, so only source, descriptor and
    version rules can fire.
    """
    targets = record.linked_projects if projects is None else projects
    health = RecordHealth(
        name=record.name,
        verdict=HealthVerdict.HEALTHY,
        source_path=record.source_path,
        declared_version=record.declared_version,
        linked_projects=list(record.linked_projects),
    )

    results: list[ProbeResult] = []
    if targets:
        for project in targets:
            result = probe(record, project, dependency_dir, descriptor_name)
            verdict = classify(record, result)
            health.projects[project] = verdict
            results.append(result)
        health.verdict = worst(health.projects.values())
    else:
        result = probe(record, None, dependency_dir, descriptor_name)
        results.append(result)
        health.verdict = classify(record, result)

    first = results[0]
    health.observed_version = first.observed_version
    health.details = _describe(record, first, results)
    return health


def _describe(record: LinkRecord, first: ProbeResult, results: list[ProbeResult]) -> list[str]:
    details = []
    if not first.source_exists:
        details.append(f"Path does not exist: {record.source_path}")
        return details
    if not first.descriptor_valid:
        details.append(first.descriptor_error or "Invalid package descriptor")
        return details

    for result in results:
        if result.symlink_state in (SymlinkState.WRONG_TARGET, SymlinkState.OCCUPIED):
            found = result.symlink_target or "a regular file or directory"
            details.append(f"{result.link_path} points to {found}")
        elif result.symlink_state is SymlinkState.ABSENT:
            details.append(f"Not linked in {result.project_path}")

    if (
        first.observed_version is not None
        and record.declared_version is not None
        and first.observed_version != record.declared_version
    ):
        details.append(
            f"Version mismatch: stored '{record.declared_version}', "
            f"actual '{first.observed_version}'"
        )
    return details
