"""
Plugin Manifest.

A plugin packaged as a directory or archive carries a manifest.json at its
root:

    {
        "name": "lint-tools",
        "version": "1.0.0",
        "main": "plugin.py",
        "description": "Linters for the lint phase",
        "author": "Platform team",
        "api": 1
    }
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from keel.errors import PluginLoadError

MANIFEST_FILE = "manifest.json"

_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_VERSION = re.compile(r"^\d+\.\d+\.\d+([-+][0-9A-Za-z.-]+)?$")


class ManifestError(PluginLoadError):
    """Raised when a manifest is missing, unreadable or invalid."""

    pass


@dataclass
class Manifest:
    """
    Represents a plugin manifest.

    Attributes:
        name: Plugin name
        version: Plugin version
        main: Entry point file, relative to the manifest
        description: Plugin description
        author: Plugin author
        api: Plugin API version the plugin was written for, if declared
        raw_data: Raw manifest data
    """

    name: str
    version: str
    main: str
    description: str = ""
    author: str = ""
    api: int | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


def parse_manifest(manifest_path: Path) -> Manifest:
    """
    Parse a manifest.json file.

    Raises:
        ManifestError: If the file cannot be read, parsed or validated
    """
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ManifestError(f"Manifest file not found: {manifest_path}") from e
    except json.JSONDecodeError as e:
        raise ManifestError(f"Failed to parse manifest JSON: {e}") from e
    except OSError as e:
        raise ManifestError(f"Failed to read manifest file: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object")

    validate_manifest_structure(data)

    return Manifest(
        name=data["name"],
        version=data["version"],
        main=data["main"],
        description=data.get("description", ""),
        author=data.get("author", ""),
        api=data.get("api"),
        raw_data=data,
    )


def validate_manifest_structure(data: dict[str, Any]) -> None:
    """
    Validate manifest fields.

    Raises:
        ManifestError: If a field is missing or malformed
    """
    for required in ("name", "version", "main"):
        if required not in data:
            raise ManifestError(f"Missing required field: {required}")

    name = data["name"]
    if not isinstance(name, str) or not _NAME.match(name):
        raise ManifestError(
            f"Invalid plugin name: {name}. "
            f"Must be lowercase alphanumeric with hyphens or underscores."
        )

    version = data["version"]
    if not isinstance(version, str) or not _VERSION.match(version):
        raise ManifestError(
            f"Invalid version: {version}. Must be semantic version (e.g., '1.0.0')"
        )

    main = data["main"]
    if not isinstance(main, str) or not main.endswith(".py"):
        raise ManifestError(f"Invalid main entry point: {main}. Must be a .py file")
    if Path(main).is_absolute() or ".." in Path(main).parts:
        raise ManifestError(f"Invalid main entry point: {main}. Must stay inside the plugin")

    for text_field in ("description", "author"):
        if text_field in data and not isinstance(data[text_field], str):
            raise ManifestError(f"'{text_field}' field must be a string")

    if "api" in data and (isinstance(data["api"], bool) or not isinstance(data["api"], int)):
        raise ManifestError("'api' field must be an integer")
