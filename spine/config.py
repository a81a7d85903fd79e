"""Configuration — where the link store lives and how projects are laid out.

Settings come from ``config.yaml`` in the spine home directory:

    store_path: ~/.config/spine/links.json
    dependency_dir: node_modules
    descriptor_name: package.json
    manifest_names: [package.json]
    log_level: WARNING
    log_file: ~/.config/spine/spine.log

Every key is optional. The home directory is ``$SPINE_HOME``, else
``$XDG_CONFIG_HOME/spine``, else ``~/.config/spine``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from spine.errors import ConfigError
from spine.registry.link_store import JsonLinkStore
from spine.utils.descriptor import DESCRIPTOR_NAME
from spine.utils.project import DEFAULT_DEPENDENCY_DIR, DEFAULT_MANIFESTS

CONFIG_FILE = "config.yaml"
STORE_FILE = "links.json"


@dataclass
class Settings:
    """Resolved spine settings."""

    home: Path
    store_path: Path
    dependency_dir: str = DEFAULT_DEPENDENCY_DIR
    descriptor_name: str = DESCRIPTOR_NAME
    manifest_names: tuple[str, ...] = field(default_factory=lambda: DEFAULT_MANIFESTS)
    log_level: str = "WARNING"
    log_file: Path | None = None

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())


def get_spine_home() -> Path:
    """Return the spine home directory (not created)."""
    if os.environ.get("SPINE_HOME"):
        return Path(os.environ["SPINE_HOME"]).expanduser()
    if os.environ.get("XDG_CONFIG_HOME"):
        return Path(os.environ["XDG_CONFIG_HOME"]).expanduser() / "spine"
    return Path.home() / ".config" / "spine"


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults for missing keys.

    Raises:
        ConfigError: If the file is not valid YAML, is not a mapping, or a
            key has the wrong type.
    """
    home = get_spine_home()
    path = Path(config_path) if config_path else home / CONFIG_FILE

    data: dict = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}", path=str(path)) from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping", path=str(path))

    settings = Settings(home=home, store_path=home / STORE_FILE)

    for key in ("dependency_dir", "descriptor_name", "log_level"):
        if key in data:
            setattr(settings, key, _require_str(data, key, path))
    if "store_path" in data:
        settings.store_path = Path(_require_str(data, "store_path", path)).expanduser()
    if "log_file" in data and data["log_file"] is not None:
        settings.log_file = Path(_require_str(data, "log_file", path)).expanduser()
    if "manifest_names" in data:
        names = data["manifest_names"]
        if not isinstance(names, list) or not names or not all(isinstance(n, str) for n in names):
            raise ConfigError(
                f"'manifest_names' in {path} must be a non-empty list of strings",
                path=str(path),
            )
        settings.manifest_names = tuple(names)

    if not isinstance(settings.log_level_number, int):
        raise ConfigError(f"Unknown log_level '{settings.log_level}' in {path}", path=str(path))

    return settings


def open_store(settings: Settings) -> JsonLinkStore:
    return JsonLinkStore(settings.store_path)


def _require_str(data: dict, key: str, path: Path) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{key}' in {path} must be a non-empty string", path=str(path))
    return value
