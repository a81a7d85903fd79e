"""Package descriptor reading — ``package.json`` name and version."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

DESCRIPTOR_NAME = "package.json"


@dataclass
class PackageDescriptor:
    """The parts of a package descriptor spine cares about."""

    name: str
    version: str | None = None
    path: str = ""


class DescriptorError(ValueError):
    """Descriptor is missing, unparseable, or has no usable name."""


def read_descriptor(package_dir: str | Path, descriptor_name: str = DESCRIPTOR_NAME) -> PackageDescriptor:
    """Read the descriptor in ``package_dir``.

    Raises:
        DescriptorError: If the file is missing, is not a JSON object, or
            has no string ``name`` field.
    """
    path = Path(package_dir) / descriptor_name
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise DescriptorError(f"{descriptor_name} not found") from e
    except (OSError, ValueError) as e:
        raise DescriptorError(f"could not parse {descriptor_name}: {e}") from e

    if not isinstance(data, dict):
        raise DescriptorError(f"{descriptor_name} is not a JSON object")

    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise DescriptorError(f"no name field in {descriptor_name}")

    version = data.get("version")
    return PackageDescriptor(
        name=name,
        version=version if isinstance(version, str) else None,
        path=str(path),
    )
