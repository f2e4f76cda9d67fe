"""
Plugin Loader.

This module turns resolved artifacts into registered plugins.

Key features:
- importlib integration: each entry file is loaded as an isolated module
- Artifact formats: .py file, directory with manifest.json, .zip/.whl archive
- Entrypoint contract: create_plugin() or a module-level ``plugin`` object
- API version check against keel.plugin.API_VERSION
- Per-plugin isolation: resolution and load failures are logged and skipped
- Transactional registration of each plugin's tasks and phases
"""

import hashlib
import importlib.util
import logging
import re
import sys
import threading
import zipfile
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType

from keel.config.schema import ValidationError
from keel.config.view import PluginConfig
from keel.core.phase import Phase, PhaseGraph
from keel.core.registry import TaskRegistry
from keel.errors import (
    ConfigurationError,
    GraphError,
    NoMatchingSource,
    PluginLoadError,
    ResolutionError,
)
from keel.plugin.base import API_VERSION, Plugin
from keel.plugin.manifest import MANIFEST_FILE, Manifest, parse_manifest
from keel.plugin.sources import PluginSource, PluginSourceConfig, ResolvedArtifact
from keel.project import ProjectContext

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".whl")
DEFAULT_ENTRY = "plugin.py"


@dataclass
class PluginFailure:
    """
    A plugin declaration that could not be loaded.

    Attributes:
        name: Declared plugin name
        source_type: Declared source type
        error: The isolated error
    """

    name: str
    source_type: str
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass
class LoadReport:
    """
    Outcome of loading a set of plugins.

    Attributes:
        loaded: Plugins that registered successfully, in load order
        failed: Declarations that were skipped
    """

    loaded: list[Plugin] = field(default_factory=list)
    failed: list[PluginFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "LoadReport") -> None:
        self.loaded.extend(other.loaded)
        self.failed.extend(other.failed)


def load_module(entry_point: Path, module_name: str) -> ModuleType:
    """
    Load a Python file as a module under a private name.

    Raises:
        PluginLoadError: If the file is missing or raises during import
    """
    if not entry_point.is_file():
        raise PluginLoadError(f"Entry point not found: {entry_point}")

    spec = importlib.util.spec_from_file_location(module_name, entry_point)
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"Failed to create module spec for {entry_point}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise PluginLoadError(f"Failed to load plugin module {entry_point}: {e}") from e

    return module


def extract_archive(archive: Path) -> Path:
    """
    Extract a .zip/.whl archive next to itself and return the directory.

    An existing extraction is reused.

    Raises:
        PluginLoadError: If the archive is invalid or has unsafe member paths
    """
    target = archive.parent / f"{archive.name}.d"
    if target.is_dir():
        return target

    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                path = Path(member)
                if path.is_absolute() or ".." in path.parts:
                    raise PluginLoadError(f"Unsafe path in archive {archive}: {member}")
            staging = archive.parent / f".{archive.name}.partial"
            zf.extractall(staging)
        staging.rename(target)
    except zipfile.BadZipFile as e:
        raise PluginLoadError(f"Invalid plugin archive {archive}: {e}") from e
    except OSError as e:
        raise PluginLoadError(f"Failed to extract plugin archive {archive}: {e}") from e

    return target


def locate_entry(path: Path) -> tuple[Path, Manifest | None]:
    """
    Find the entry file of an artifact.

    Returns:
        (entry file, manifest or None)

    Raises:
        PluginLoadError: If the artifact has no recognizable entry point
    """
    if path.is_file() and path.suffix in ARCHIVE_SUFFIXES:
        path = extract_archive(path)

    if path.is_file():
        if path.suffix != ".py":
            raise PluginLoadError(f"Unsupported plugin file: {path}")
        return path, None

    if path.is_dir():
        manifest_path = path / MANIFEST_FILE
        if manifest_path.is_file():
            manifest = parse_manifest(manifest_path)
            return path / manifest.main, manifest
        if (path / DEFAULT_ENTRY).is_file():
            return path / DEFAULT_ENTRY, None
        raise PluginLoadError(f"No {MANIFEST_FILE} or {DEFAULT_ENTRY} in {path}")

    raise PluginLoadError(f"Plugin artifact not found: {path}")


def _module_name(name: str, entry: Path) -> str:
    digest = hashlib.sha1(str(entry.resolve()).encode("utf-8")).hexdigest()[:8]
    return f"keel_plugin_{re.sub(r'[^0-9A-Za-z_]', '_', name)}_{digest}"


def plugins_from_module(module: ModuleType) -> list[Plugin]:
    """
    Apply the entrypoint contract to a loaded module.

    Raises:
        PluginLoadError: If the contract is not met
    """
    declared = getattr(module, "API_VERSION", None)
    if declared is not None and declared != API_VERSION:
        raise PluginLoadError(
            f"Plugin module {module.__name__} targets API version {declared}, "
            f"engine provides {API_VERSION}"
        )

    factory = getattr(module, "create_plugin", None)
    if callable(factory):
        try:
            created = factory()
        except Exception as e:
            raise PluginLoadError(f"create_plugin() failed: {e}") from e
    elif hasattr(module, "plugin"):
        created = module.plugin
    else:
        raise PluginLoadError(
            f"Plugin module {module.__name__} defines neither create_plugin() nor plugin"
        )

    plugins = list(created) if isinstance(created, (list, tuple)) else [created]
    for candidate in plugins:
        if not isinstance(candidate, Plugin):
            raise PluginLoadError(
                f"Entrypoint returned {type(candidate).__name__}, expected a Plugin"
            )
        if not candidate.id:
            raise PluginLoadError(f"Plugin {type(candidate).__name__} has no id")
    return plugins


class PluginLoader:
    """
    Resolves, imports and registers plugins against one graph and registry.

    Example:
        loader = PluginLoader(default_sources(settings, project.dir), graph, registry)
        report = loader.load(configs, project)
    """

    def __init__(
        self,
        sources: Sequence[PluginSource],
        graph: PhaseGraph,
        registry: TaskRegistry,
    ):
        self.sources = list(sources)
        self.graph = graph
        self.registry = registry
        self._plugins: dict[str, Plugin] = {}
        self._lock = threading.Lock()

    def source_for(self, source_type: str) -> PluginSource:
        """
        Return the first source that handles a type.

        Raises:
            NoMatchingSource: If none does
        """
        for source in self.sources:
            if source.can_handle(source_type):
                return source
        raise NoMatchingSource(source_type, [source.type for source in self.sources])

    @property
    def plugins(self) -> list[Plugin]:
        return list(self._plugins.values())

    def load(
        self, configs: Iterable[PluginSourceConfig], project: ProjectContext
    ) -> LoadReport:
        """
        Load every declared plugin.

        Resolution and load failures are isolated: they are logged, recorded in
        the report and the remaining plugins still load.

        Raises:
            ConfigurationError: On duplicate plugin, phase or task registrations
            GraphError: On invalid phase contributions
        """
        report = LoadReport()
        for config in configs:
            try:
                artifact = self.source_for(config.type).resolve(config)
                for plugin in self._import(artifact):
                    self._install(plugin, project)
                    report.loaded.append(plugin)
            except (ResolutionError, PluginLoadError) as e:
                logger.error(
                    "Failed to load plugin %s (%s): %s", config.name, config.type, e
                )
                logger.debug("Plugin failure detail", exc_info=e)
                report.failed.append(PluginFailure(config.name, config.type, e))
        return report

    def load_builtin(self, plugin: Plugin, project: ProjectContext) -> LoadReport:
        """Register an in-process plugin with the same isolation rules."""
        report = LoadReport()
        try:
            self._install(plugin, project)
            report.loaded.append(plugin)
        except PluginLoadError as e:
            logger.error("Failed to load built-in plugin %s: %s", plugin.id, e)
            report.failed.append(PluginFailure(plugin.id, "builtin", e))
        return report

    def _import(self, artifact: ResolvedArtifact) -> list[Plugin]:
        entry, manifest = locate_entry(artifact.path)
        if manifest is not None and manifest.api is not None and manifest.api != API_VERSION:
            raise PluginLoadError(
                f"Plugin {manifest.name} targets API version {manifest.api}, "
                f"engine provides {API_VERSION}"
            )
        name = manifest.name if manifest is not None else artifact.name
        module = load_module(entry, _module_name(name, entry))
        return plugins_from_module(module)

    def _install(self, plugin: Plugin, project: ProjectContext) -> None:
        with self._lock:
            if plugin.id in self._plugins:
                raise ConfigurationError(f"Plugin already loaded: {plugin.id}")

            self._bind(plugin, project)

            try:
                phases: list[Phase] = list(plugin.phases())
            except Exception as e:
                raise PluginLoadError(f"Plugin {plugin.id} failed to list phases: {e}") from e

            with self.registry.transaction(plugin):
                try:
                    plugin.register(self.registry)
                except (ConfigurationError, GraphError):
                    raise
                except Exception as e:
                    raise PluginLoadError(
                        f"Plugin {plugin.id} failed to register: {e}"
                    ) from e
                for phase in phases:
                    self.graph.register(phase)

            self._plugins[plugin.id] = plugin

        logger.info("Loaded plugin %s (%d phase(s))", plugin.id, len(phases))

    @staticmethod
    def _bind(plugin: Plugin, project: ProjectContext) -> None:
        section = project.config.get(plugin.context_key) if plugin.context_key else None
        if section is not None and not isinstance(section, Mapping):
            raise PluginLoadError(
                f"[{plugin.context_key}] in {project.name} must be a table"
            )
        try:
            config = PluginConfig(
                plugin.context_key or plugin.id, plugin.config_schema, section
            )
        except ValidationError as e:
            raise PluginLoadError(f"Plugin {plugin.id}: {e}") from e
        plugin.bind(config)
