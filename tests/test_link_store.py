"""Tests for the link record store."""

import errno
import json
import os
import tempfile
from pathlib import Path
from unittest import mock

import pytest

from spine.errors import (
    DuplicateNameError,
    PackageNotFoundError,
    PermissionDeniedError,
    StoreCorruptedError,
    StoreWriteError,
)
from spine.registry.link_store import JsonLinkStore, MemoryLinkStore
from spine.registry.models import LinkRecord


def test_add_and_get():
    store = MemoryLinkStore()
    record = store.add("utils", "/pkgs/utils", "1.0.0")
    assert record.name == "utils"
    assert record.source_path == "/pkgs/utils"
    assert record.declared_version == "1.0.0"
    assert record.linked_projects == []

    retrieved = store.get("utils")
    assert retrieved == record


def test_add_duplicate_fails_without_overwriting():
    store = MemoryLinkStore()
    store.add("utils", "/pkgs/utils", "1.0.0")
    with pytest.raises(DuplicateNameError):
        store.add("utils", "/elsewhere", "2.0.0")
    assert store.get("utils").source_path == "/pkgs/utils"


def test_list_preserves_insertion_order():
    store = MemoryLinkStore()
    for name in ["zeta", "@scope/alpha", "mid"]:
        store.add(name, f"/pkgs/{name}")
    assert [r.name for r in store.list()] == ["zeta", "@scope/alpha", "mid"]


def test_remove():
    store = MemoryLinkStore()
    store.add("utils", "/pkgs/utils")
    removed = store.remove("utils")
    assert removed.name == "utils"
    assert store.get("utils") is None
    assert len(store) == 0


def test_remove_unknown_suggests_close_name():
    store = MemoryLinkStore()
    store.add("utils", "/pkgs/utils")
    with pytest.raises(PackageNotFoundError) as excinfo:
        store.remove("utisl")
    assert "Did you mean 'utils'" in excinfo.value.suggestion


def test_get_returns_a_copy():
    store = MemoryLinkStore()
    store.add("utils", "/pkgs/utils")
    record = store.get("utils")
    record.linked_projects.append("/somewhere")
    assert store.get("utils").linked_projects == []


def test_record_link_is_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        project = str(Path(tmpdir).resolve())
        store = MemoryLinkStore()
        store.add("utils", "/pkgs/utils")

        assert store.record_link("utils", project) is True
        assert store.record_link("utils", project) is False
        assert store.get("utils").linked_projects == [project]


def test_record_unlink_missing_project_is_noop():
    store = MemoryLinkStore()
    store.add("utils", "/pkgs/utils")
    assert store.record_unlink("utils", "/not/linked") is False


def test_record_link_unknown_package():
    store = MemoryLinkStore()
    with pytest.raises(PackageNotFoundError):
        store.record_link("ghost", "/project")


def test_update_version():
    store = MemoryLinkStore([LinkRecord("utils", "/pkgs/utils", "1.0.0")])
    assert store.update_version("utils", "1.1.0") is True
    assert store.update_version("utils", "1.1.0") is False
    assert store.get("utils").declared_version == "1.1.0"


def test_json_store_round_trip():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "links.json"
        project = str(Path(tmpdir).resolve())

        store = JsonLinkStore(path)
        store.add("@scope/ui", "/pkgs/ui", "0.1.0")
        store.add("utils", "/pkgs/utils")
        store.record_link("@scope/ui", project)

        reloaded = JsonLinkStore(path)
        assert reloaded.names() == ["@scope/ui", "utils"]
        assert reloaded.get("@scope/ui").linked_projects == [project]
        assert reloaded.get("utils").declared_version is None


def test_json_store_missing_file_is_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonLinkStore(Path(tmpdir) / "nested" / "links.json")
        assert store.list() == []
        store.add("utils", "/pkgs/utils")
        assert (Path(tmpdir) / "nested" / "links.json").exists()


def test_json_store_corrupt_file_is_fatal():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "links.json"
        path.write_text("{not json")
        with pytest.raises(StoreCorruptedError):
            JsonLinkStore(path)
        assert path.read_text() == "{not json"


@pytest.mark.parametrize(
    "entry",
    [
        {"name": "other", "path": "/x"},
        {"name": "utils", "path": "/x", "linked_projects": [1]},
        {"name": "utils", "path": "/x", "linked_projects": ["/app", None]},
        {"name": "utils", "path": "/x", "version": 3},
    ],
)
def test_json_store_wrong_shape_is_fatal(entry):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "links.json"
        path.write_text(json.dumps({"links": {"utils": entry}}))
        with pytest.raises(StoreCorruptedError):
            JsonLinkStore(path)


def test_json_store_accepts_null_version():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "links.json"
        entry = {"name": "utils", "path": "/x", "version": None, "linked_projects": ["/app"]}
        path.write_text(json.dumps({"links": {"utils": entry}}))
        record = JsonLinkStore(path).get("utils")
        assert record.declared_version is None
        assert record.linked_projects == ["/app"]


def test_failed_write_keeps_prior_state():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "links.json"
        store = JsonLinkStore(path)
        store.add("utils", "/pkgs/utils")
        before = path.read_text()

        with mock.patch(
            "spine.registry.link_store.os.replace",
            side_effect=OSError(errno.ENOSPC, "No space left on device"),
        ):
            with pytest.raises(StoreWriteError) as exc:
                store.add("other", "/pkgs/other")

        assert exc.value.path == str(path)
        assert store.names() == ["utils"]
        assert path.read_text() == before
        assert JsonLinkStore(path).names() == ["utils"]
        leftovers = [p for p in os.listdir(tmpdir) if p.endswith(".tmp")]
        assert leftovers == []


def test_permission_error_on_write_is_reported():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonLinkStore(Path(tmpdir) / "links.json")
        with mock.patch(
            "spine.registry.link_store.os.replace", side_effect=PermissionError("denied")
        ):
            with pytest.raises(PermissionDeniedError):
                store.add("utils", "/pkgs/utils")
        assert store.names() == []


def test_store_directory_unwritable_is_reported():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonLinkStore(Path(tmpdir) / "links.json")
        with mock.patch(
            "spine.registry.link_store.tempfile.mkstemp",
            side_effect=OSError(errno.EROFS, "Read-only file system"),
        ):
            with pytest.raises(StoreWriteError) as exc:
                store.add("utils", "/pkgs/utils")
        assert "Read-only file system" in str(exc.value)
        assert store.names() == []
