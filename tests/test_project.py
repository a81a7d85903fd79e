"""Tests for project scope resolution."""

import tempfile
from pathlib import Path

import pytest

from spine.errors import NoProjectFoundError
from spine.utils.project import canonical_path, resolve_current_project


def test_resolve_from_project_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "package.json").write_text("{}")
        context = resolve_current_project(root)
        assert context.root_path == root
        assert context.dependency_path == root / "node_modules"


def test_resolve_walks_upward():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "app").mkdir()
        (root / "app" / "package.json").write_text("{}")
        nested = root / "app" / "src" / "components"
        nested.mkdir(parents=True)

        context = resolve_current_project(nested, dependency_dir="deps")
        assert context.root_path == root / "app"
        assert context.dependency_path == root / "app" / "deps"


def test_resolve_picks_nearest_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "package.json").write_text("{}")
        inner = root / "packages" / "lib"
        inner.mkdir(parents=True)
        (inner / "package.json").write_text("{}")
        assert resolve_current_project(inner).root_path == inner


def test_resolve_custom_manifest_names():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "angular.json").write_text("{}")
        context = resolve_current_project(root, manifest_names=("package.json", "angular.json"))
        assert context.root_path == root


def test_no_project_found_stops_at_boundary():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "package.json").write_text("{}")
        nested = root / "a" / "b"
        nested.mkdir(parents=True)

        with pytest.raises(NoProjectFoundError) as excinfo:
            resolve_current_project(nested, boundary=root / "a")
        assert excinfo.value.path == str(nested)


def test_manifest_must_be_a_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "package.json").mkdir()
        with pytest.raises(NoProjectFoundError):
            resolve_current_project(root, boundary=root)


def test_canonical_path_falls_back_for_missing_paths():
    assert canonical_path("/no/such/dir/../here") == "/no/such/here"
