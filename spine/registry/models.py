"""Registry data models — link records and health verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class HealthVerdict(Enum):
    """Health of a package link, ordered from best to worst.

    The set is closed: adding a member means placing it in ``_RANK`` too.
    """

    HEALTHY = "healthy"
    VERSION_DRIFT = "version_drift"
    NOT_LINKED = "not_linked"
    BROKEN_SYMLINK = "broken_symlink"
    INVALID_DESCRIPTOR = "invalid_descriptor"
    MISSING_SOURCE = "missing_source"

    @property
    def rank(self) -> int:
        return _RANK.index(self)

    @property
    def is_error(self) -> bool:
        return self.rank >= HealthVerdict.BROKEN_SYMLINK.rank

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


_RANK = [
    HealthVerdict.HEALTHY,
    HealthVerdict.VERSION_DRIFT,
    HealthVerdict.NOT_LINKED,
    HealthVerdict.BROKEN_SYMLINK,
    HealthVerdict.INVALID_DESCRIPTOR,
    HealthVerdict.MISSING_SOURCE,
]


def worst(verdicts) -> HealthVerdict:
    """Return the most severe verdict, ``HEALTHY`` for an empty collection."""
    return max(verdicts, key=lambda v: v.rank, default=HealthVerdict.HEALTHY)


@dataclass
class LinkRecord:
    """A single configured package."""

    name: str
    source_path: str
    declared_version: str | None = None
    linked_projects: list[str] = field(default_factory=list)

    @property
    def is_scoped(self) -> bool:
        return self.name.startswith("@") and "/" in self.name

    def is_linked_to(self, project_path: str) -> bool:
        return project_path in self.linked_projects

    def copy(self) -> LinkRecord:
        return LinkRecord(
            name=self.name,
            source_path=self.source_path,
            declared_version=self.declared_version,
            linked_projects=list(self.linked_projects),
        )


def record_to_dict(record: LinkRecord) -> dict:
    return {
        "name": record.name,
        "path": record.source_path,
        "version": record.declared_version,
        "linked_projects": list(record.linked_projects),
    }


def dict_to_record(data: dict) -> LinkRecord:
    projects: list[str] = []
    for project in data.get("linked_projects") or []:
        if project not in projects:
            projects.append(project)
    return LinkRecord(
        name=data["name"],
        source_path=data["path"],
        declared_version=data.get("version"),
        linked_projects=projects,
    )
