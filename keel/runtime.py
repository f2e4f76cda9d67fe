"""
Bootstrap.

Loads a project, its built-in and declared plugins, freezes the phase graph
and task registry, and returns a ready Runtime:

    with bootstrap("path/to/project") as runtime:
        status = runtime.run("build", sink=LoggingSink())
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from keel.config.settings import EngineSettings
from keel.core.engine import ExecutionEngine, ExecutionStatus
from keel.core.environment import Environment
from keel.core.events import EventSink, FanoutSink
from keel.core.phase import PhaseGraph
from keel.core.registry import TaskRegistry
from keel.core.tracker import ExecutionTracker
from keel.core.workflows import register_builtin_phases
from keel.errors import UnknownPhase, UnknownTask
from keel.plugin.loader import LoadReport, PluginLoader
from keel.plugin.sources import PluginSource, PluginSourceConfig, default_sources
from keel.plugins import builtin_plugins
from keel.project import ProjectContext, load_project
from keel.system.commands import CommandExecutor, ShellCommandExecutor

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """
    A loaded project with a frozen graph and registry.

    Attributes:
        engine: Execution engine bound to graph and registry
        graph: Frozen phase graph
        registry: Frozen task registry
        project: Root project
        report: Plugin load report
        settings: Effective engine settings
        tracker: Live status of every run started through this runtime
    """

    engine: ExecutionEngine
    graph: PhaseGraph
    registry: TaskRegistry
    project: ProjectContext
    report: LoadReport
    settings: EngineSettings
    tracker: ExecutionTracker = field(default_factory=ExecutionTracker)
    _client: httpx.Client | None = field(default=None, repr=False)

    def run(
        self,
        target: str,
        args: Sequence[str] = (),
        sink: EventSink | None = None,
        *,
        execution_id: str | None = None,
    ) -> ExecutionStatus:
        """Run a target against the root project, tracking its status."""
        sink = self.tracker if sink is None else FanoutSink(self.tracker, sink)
        return self.engine.run(
            target, self.project, args, sink=sink, execution_id=execution_id
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "Runtime":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def declared_plugins(project: ProjectContext) -> list[PluginSourceConfig]:
    """
    Collect [[plugins]] declarations of a project tree.

    Each project's local paths resolve against its own directory. The same
    (type, name, version) declared twice is loaded once.
    """
    configs = []
    seen = set()
    for sub in project.walk():
        for table in sub.declared_plugins:
            config = PluginSourceConfig.from_mapping(table, base_dir=sub.dir)
            key = (config.type, config.name, config.version)
            if key in seen:
                logger.debug("Plugin %s declared again in %s", config.name, sub.name)
                continue
            seen.add(key)
            configs.append(config)
    return configs


def bootstrap(
    project_dir: str | Path,
    *,
    sources: Sequence[PluginSource] | None = None,
    settings: EngineSettings | None = None,
) -> Runtime:
    """
    Load a project and build a frozen runtime.

    Args:
        project_dir: Directory holding keel.toml
        sources: Plugin sources (defaults to local, github, pypi and git)
        settings: Engine settings (defaults to [engine] plus KEEL_* variables)

    Returns:
        Runtime

    Raises:
        ConfigurationError: On an invalid project file or duplicate registrations
        GraphError: On an invalid phase graph, a task on an unknown phase or a
            task referencing an unknown task
    """
    project = load_project(project_dir)
    if settings is None:
        settings = EngineSettings.load(project.config.get("engine"))

    client = None
    if sources is None:
        client = httpx.Client(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )
        sources = default_sources(settings, project.dir, client)

    try:
        graph = PhaseGraph()
        register_builtin_phases(graph)
        registry = TaskRegistry()
        loader = PluginLoader(sources, graph, registry)

        report = LoadReport()
        for plugin in builtin_plugins():
            report.merge(loader.load_builtin(plugin, project))
        report.merge(loader.load(declared_plugins(project), project))

        graph.freeze()
        for entry in registry.all():
            if entry.phase_id not in graph:
                raise UnknownPhase(entry.phase_id, referenced_by=entry.id)
            for task_id in (*entry.task.depends_on, *entry.task.children):
                if task_id not in registry:
                    raise UnknownTask(task_id, referenced_by=entry.id)
        registry.freeze()
    except BaseException:
        if client is not None:
            client.close()
        raise

    for failure in report.failed:
        logger.warning("Plugin %s was not loaded: %s", failure.name, failure.message)

    environment = Environment()
    environment.register_service(
        CommandExecutor,
        ShellCommandExecutor(
            timeout=settings.command_timeout,
            redirect_error_stream=settings.redirect_error_stream,
        ),
    )

    logger.info(
        "Project %s ready: %d phase(s), %d task(s), %d plugin(s)",
        project.name,
        len(graph),
        len(registry),
        len(report.loaded),
    )
    return Runtime(
        engine=ExecutionEngine(graph, registry, environment),
        graph=graph,
        registry=registry,
        project=project,
        report=report,
        settings=settings,
        _client=client,
    )
