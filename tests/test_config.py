"""Tests for settings loading."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from spine.config import get_spine_home, load_settings, open_store
from spine.errors import ConfigError


def _write_config(tmpdir: str, data) -> Path:
    path = Path(tmpdir) / "config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


def test_defaults_when_missing(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("SPINE_HOME", tmpdir)
        settings = load_settings()
        assert settings.home == Path(tmpdir)
        assert settings.store_path == Path(tmpdir) / "links.json"
        assert settings.dependency_dir == "node_modules"
        assert settings.manifest_names == ("package.json",)
        assert settings.log_level_number == logging.WARNING


def test_home_from_xdg(monkeypatch):
    monkeypatch.delenv("SPINE_HOME", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", "/xdg")
    assert get_spine_home() == Path("/xdg/spine")


def test_load_from_yaml(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("SPINE_HOME", tmpdir)
        path = _write_config(
            tmpdir,
            {
                "store_path": str(Path(tmpdir) / "custom.json"),
                "dependency_dir": "deps",
                "manifest_names": ["package.json", "angular.json"],
                "log_level": "debug",
                "unknown_key": True,
            },
        )
        settings = load_settings(path)
        assert settings.store_path == Path(tmpdir) / "custom.json"
        assert settings.dependency_dir == "deps"
        assert settings.manifest_names == ("package.json", "angular.json")
        assert settings.log_level_number == logging.DEBUG

        store = open_store(settings)
        store.add("utils", "/pkgs/utils")
        assert (Path(tmpdir) / "custom.json").exists()


def test_invalid_documents_raise_config_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            load_settings(_write_config(tmpdir, ["not", "a", "mapping"]))
        with pytest.raises(ConfigError):
            load_settings(_write_config(tmpdir, {"dependency_dir": 3}))
        with pytest.raises(ConfigError):
            load_settings(_write_config(tmpdir, {"manifest_names": []}))
        with pytest.raises(ConfigError):
            load_settings(_write_config(tmpdir, {"log_level": "chatty"}))

        path = Path(tmpdir) / "config.yaml"
        path.write_text("key: [unclosed")
        with pytest.raises(ConfigError):
            load_settings(path)


def test_setup_logging_writes_to_file():
    from spine.logging_config import setup_logging

    with tempfile.TemporaryDirectory() as tmpdir:
        log_file = Path(tmpdir) / "logs" / "spine.log"
        setup_logging(level=logging.INFO, log_file=log_file)
        try:
            logging.getLogger("spine.test").info("linked utils")
            for handler in logging.getLogger().handlers:
                handler.flush()
            assert "linked utils" in log_file.read_text()
        finally:
            root = logging.getLogger()
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
