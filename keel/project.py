"""
Project loading.

A project is a directory with a keel.toml file. Child directories with their
own keel.toml are sub-projects and are discovered recursively.

Example keel.toml:

    [project]
    name = "demo"

    [[plugins]]
    type = "local"
    name = "lint-tools"
    version = "1.0.0"
    path = "plugins/lint_tools.py"

    [commits]
    enabled = true
"""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from keel.config.toml_handler import read_toml
from keel.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROJECT_FILE = "keel.toml"

_MISSING = object()


@dataclass(frozen=True)
class ProjectContext:
    """
    A loaded project (or sub-project).

    Attributes:
        name: Project name ([project].name, or the directory name)
        dir: Project root directory
        config: Parsed keel.toml contents
        subprojects: Child projects, sorted by directory name
    """

    name: str
    dir: Path
    config: Mapping[str, Any] = field(default_factory=dict)
    subprojects: tuple["ProjectContext", ...] = ()

    @property
    def declared_plugins(self) -> list[dict[str, Any]]:
        """Return the raw [[plugins]] tables."""
        plugins = self.config.get("plugins", [])
        if not isinstance(plugins, list) or not all(
            isinstance(item, Mapping) for item in plugins
        ):
            raise ConfigurationError(
                f"[[plugins]] in {self.dir / PROJECT_FILE} must be an array of tables"
            )
        return [dict(item) for item in plugins]

    def get_key(self, key: str, default: Any = None) -> Any:
        """
        Read a nested configuration value with a dot-separated path.

        Numeric segments index into arrays, e.g. "plugins.0.name".

        Raises:
            ConfigurationError: If the path runs through a scalar value
        """
        current: Any = self.config
        for part in key.split("."):
            if isinstance(current, Mapping):
                current = current.get(part, _MISSING)
            elif isinstance(current, list):
                try:
                    index = int(part)
                except ValueError:
                    raise ConfigurationError(f"Invalid index '{part}' in key {key}") from None
                current = current[index] if 0 <= index < len(current) else _MISSING
            else:
                raise ConfigurationError(
                    f"Cannot read '{key}': '{part}' is under a {type(current).__name__} value"
                )
            if current is _MISSING:
                return default
        return current

    def walk(self) -> Iterator["ProjectContext"]:
        """Yield sub-projects depth-first, each before its parent, ending with self."""
        for sub in self.subprojects:
            yield from sub.walk()
        yield self


def is_project_dir(path: Path) -> bool:
    return (path / PROJECT_FILE).is_file()


def load_project(project_dir: str | Path) -> ProjectContext:
    """
    Load a project and its sub-projects.

    Args:
        project_dir: Directory containing keel.toml

    Returns:
        ProjectContext

    Raises:
        ConfigurationError: If keel.toml is missing or malformed
    """
    project_dir = Path(project_dir).resolve()
    config_file = project_dir / PROJECT_FILE
    if not config_file.is_file():
        raise ConfigurationError(f"No {PROJECT_FILE} found in {project_dir}")

    config = read_toml(config_file)

    project_table = config.get("project", {})
    if not isinstance(project_table, Mapping):
        raise ConfigurationError(f"[project] in {config_file} must be a table")
    name = project_table.get("name", project_dir.name)
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"[project].name in {config_file} must be a non-empty string")

    subprojects = []
    for child in sorted(project_dir.iterdir(), key=lambda p: p.name):
        if child.name.startswith(".") or not child.is_dir():
            continue
        if is_project_dir(child):
            subprojects.append(load_project(child))

    logger.info(
        "Loaded project %s at %s with %d subproject(s)",
        name,
        project_dir,
        len(subprojects),
    )
    return ProjectContext(name, project_dir, config, tuple(subprojects))
