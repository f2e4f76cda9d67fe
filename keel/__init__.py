"""
Keel - pluggable build and CI workflow engine.

This is the main package that exports the public API.
"""

__version__ = "0.1.0"

from keel.core import (
    CollectingSink,
    CommandTask,
    Environment,
    EventType,
    ExecutionEngine,
    ExecutionEvent,
    ExecutionStatus,
    FunctionTask,
    LoggingSink,
    Phase,
    PhaseGraph,
    RunState,
    Task,
    TaskRegistry,
    TaskResult,
)
from keel.config import ConfigField, PluginConfig
from keel.plugin import API_VERSION, Plugin
from keel.project import ProjectContext, load_project

__all__ = [
    "__version__",
    "API_VERSION",
    "CollectingSink",
    "CommandTask",
    "ConfigField",
    "Environment",
    "EventType",
    "ExecutionEngine",
    "ExecutionEvent",
    "ExecutionStatus",
    "FunctionTask",
    "LoggingSink",
    "Phase",
    "PhaseGraph",
    "Plugin",
    "PluginConfig",
    "ProjectContext",
    "RunState",
    "Task",
    "TaskRegistry",
    "TaskResult",
    "load_project",
]
