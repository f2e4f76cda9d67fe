"""
Tests for plugin manifests.
"""

import json
import tempfile
from pathlib import Path

import pytest

from keel.errors import PluginLoadError
from keel.plugin.manifest import ManifestError, parse_manifest


def write_manifest(tmpdir, data):
    manifest_path = Path(tmpdir) / "manifest.json"
    with open(manifest_path, "w") as f:
        json.dump(data, f)
    return manifest_path


class TestManifestParsing:
    """Test manifest parsing and validation."""

    def test_parse_valid_manifest(self):
        """Should parse a valid manifest successfully."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manifest = parse_manifest(
                write_manifest(
                    tmpdir,
                    {
                        "name": "lint-tools",
                        "version": "1.2.0-beta.1",
                        "main": "src/plugin.py",
                        "description": "Linters",
                        "author": "Platform team",
                        "api": 1,
                    },
                )
            )

            assert manifest.name == "lint-tools"
            assert manifest.version == "1.2.0-beta.1"
            assert manifest.main == "src/plugin.py"
            assert manifest.author == "Platform team"
            assert manifest.api == 1

    def test_parse_minimal_manifest(self):
        """Should parse manifest with only required fields."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manifest = parse_manifest(
                write_manifest(tmpdir, {"name": "x", "version": "0.1.0", "main": "p.py"})
            )
            assert manifest.description == ""
            assert manifest.api is None

    def test_manifest_errors_are_load_errors(self):
        """ManifestError should be isolated like other plugin load errors."""
        assert issubclass(ManifestError, PluginLoadError)

    def test_missing_file(self):
        """Should raise ManifestError for a missing file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ManifestError, match="not found"):
                parse_manifest(Path(tmpdir) / "manifest.json")

    def test_invalid_json(self):
        """Should raise ManifestError for malformed JSON."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.json"
            path.write_text("{not json")
            with pytest.raises(ManifestError, match="Failed to parse"):
                parse_manifest(path)

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"version": "1.0.0", "main": "p.py"}, "Missing required field: name"),
            ({"name": "x", "version": "1.0", "main": "p.py"}, "Invalid version"),
            ({"name": "x", "version": "1.0.0", "main": "p.js"}, "Must be a .py file"),
            ({"name": "x", "version": "1.0.0", "main": "../p.py"}, "inside the plugin"),
            ({"name": "x", "version": "1.0.0", "main": "p.py", "api": "1"}, "'api'"),
            ({"name": "x", "version": "1.0.0", "main": "p.py", "api": True}, "'api'"),
        ],
    )
    def test_invalid_fields(self, data, message):
        """Should reject malformed fields."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ManifestError, match=message):
                parse_manifest(write_manifest(tmpdir, data))
