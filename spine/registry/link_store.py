"""Link record store — the desired state of every package link.

Records live in memory as an ordered mapping and are written back on every
mutation. A mutation is applied to a copy first; the copy only replaces the
live records once it has been persisted, so a failed write leaves both the
in-memory and the on-disk state exactly as they were.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path

from spine.errors import (
    DuplicateNameError,
    PackageNotFoundError,
    PermissionDeniedError,
    StoreCorruptedError,
    StoreWriteError,
)
from spine.registry.models import LinkRecord, dict_to_record, record_to_dict
from spine.utils.project import canonical_path

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


class LinkStore:
    """Ordered, persisted mapping of package name to ``LinkRecord``.

    Subclasses decide where records go by overriding ``_persist``.
    """

    def __init__(self, records: dict[str, LinkRecord] | None = None):
        self._records: dict[str, LinkRecord] = dict(records or {})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> LinkRecord | None:
        record = self._records.get(name)
        return record.copy() if record else None

    def require(self, name: str) -> LinkRecord:
        """Like ``get`` but raises ``PackageNotFoundError`` with suggestions."""
        record = self.get(name)
        if record is None:
            raise PackageNotFoundError(name, self.names())
        return record

    def list(self) -> list[LinkRecord]:
        """All records in insertion order."""
        return [r.copy() for r in self._records.values()]

    def names(self) -> list[str]:
        return list(self._records)

    def __contains__(self, name: str) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, name: str, source_path: str | Path, version: str | None = None) -> LinkRecord:
        """Add a new record. Existing names are never overwritten."""
        if name in self._records:
            raise DuplicateNameError(name)
        record = LinkRecord(
            name=name,
            source_path=os.path.abspath(os.fspath(source_path)),
            declared_version=version,
        )
        staged = self._stage()
        staged[name] = record
        self._commit(staged)
        logger.info("Added %s -> %s", name, record.source_path)
        return record.copy()

    def remove(self, name: str) -> LinkRecord:
        if name not in self._records:
            raise PackageNotFoundError(name, self.names())
        staged = self._stage()
        record = staged.pop(name)
        self._commit(staged)
        logger.info("Removed %s", name)
        return record

    def record_link(self, name: str, project_path: str | Path) -> bool:
        """Remember that ``name`` is linked into ``project_path``.

        Returns False (and writes nothing) if it was already recorded.
        """
        if name not in self._records:
            raise PackageNotFoundError(name, self.names())
        project = canonical_path(project_path)
        if self._records[name].is_linked_to(project):
            return False
        staged = self._stage()
        staged[name].linked_projects.append(project)
        self._commit(staged)
        return True

    def record_unlink(self, name: str, project_path: str | Path) -> bool:
        """Forget ``project_path`` for ``name``. False if it wasn't recorded."""
        if name not in self._records:
            raise PackageNotFoundError(name, self.names())
        project = canonical_path(project_path)
        if not self._records[name].is_linked_to(project):
            return False
        staged = self._stage()
        staged[name].linked_projects.remove(project)
        self._commit(staged)
        return True

    def update_version(self, name: str, version: str | None) -> bool:
        """Set the declared version. False if it was already ``version``."""
        if name not in self._records:
            raise PackageNotFoundError(name, self.names())
        if self._records[name].declared_version == version:
            return False
        staged = self._stage()
        staged[name].declared_version = version
        self._commit(staged)
        logger.info("Updated %s version to %s", name, version)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _stage(self) -> dict[str, LinkRecord]:
        return {name: record.copy() for name, record in self._records.items()}

    @property
    def location(self) -> str:
        return "<memory>"

    def _commit(self, staged: dict[str, LinkRecord]) -> None:
        try:
            self._persist(staged)
        except PermissionError as e:
            raise PermissionDeniedError("", self.location, "write") from e
        except OSError as e:
            raise StoreWriteError(self.location, e) from e
        self._records = staged

    def _persist(self, records: dict[str, LinkRecord]) -> None:
        raise NotImplementedError


class MemoryLinkStore(LinkStore):
    """Store that keeps records in memory only."""

    def __init__(self, records: list[LinkRecord] | None = None):
        super().__init__({r.name: r.copy() for r in records or []})

    def _persist(self, records: dict[str, LinkRecord]) -> None:
        pass


class JsonLinkStore(LinkStore):
    """Store backed by a single JSON document, replaced atomically on write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())

    @property
    def location(self) -> str:
        return str(self.path)

    def _load(self) -> dict[str, LinkRecord]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoreCorruptedError(str(self.path), str(e)) from e

        if not isinstance(data, dict) or not isinstance(data.get("links", {}), dict):
            raise StoreCorruptedError(str(self.path), "expected an object with a 'links' mapping")

        records: dict[str, LinkRecord] = {}
        for name, entry in data.get("links", {}).items():
            if (
                not isinstance(entry, dict)
                or entry.get("name") != name
                or not isinstance(entry.get("path"), str)
                or not isinstance(entry.get("version"), (str, type(None)))
                or not isinstance(entry.get("linked_projects", []), list)
                or not all(isinstance(p, str) for p in entry.get("linked_projects", []))
            ):
                raise StoreCorruptedError(str(self.path), f"malformed entry for '{name}'")
            records[name] = dict_to_record(entry)
        logger.debug("Loaded %d link record(s) from %s", len(records), self.path)
        return records

    def _persist(self, records: dict[str, LinkRecord]) -> None:
        document = {
            "version": STORE_FORMAT_VERSION,
            "links": {name: record_to_dict(r) for name, r in records.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
