"""
Keel Core - phases, tasks and the execution engine.

This module contains the fundamental building blocks:
- PhaseGraph: phases with specialization and depends-on edges
- TaskRegistry: tasks grouped by phase, with applicability predicates
- ExecutionEngine: sequential, fail-fast execution of a plan
- Events: ExecutionEvent records and sinks
- ExecutionTracker: live per-run status built from events
"""

from keel.core.engine import ExecutionEngine, ExecutionStatus, PlanStep, RunState
from keel.core.environment import Environment, ServiceUnavailable
from keel.core.events import (
    CollectingSink,
    EventSink,
    EventType,
    ExecutionEvent,
    FanoutSink,
    LoggingSink,
    NullSink,
)
from keel.core.phase import Phase, PhaseGraph
from keel.core.registry import TaskEntry, TaskRegistry
from keel.core.task import (
    CommandTask,
    CompositeTask,
    FunctionTask,
    Outcome,
    Task,
    TaskResult,
)
from keel.core.tracker import ExecutionTracker
from keel.core.workflows import register_builtin_phases

__all__ = [
    "ExecutionEngine",
    "ExecutionStatus",
    "PlanStep",
    "RunState",
    "Environment",
    "ServiceUnavailable",
    "CollectingSink",
    "EventSink",
    "EventType",
    "ExecutionEvent",
    "FanoutSink",
    "LoggingSink",
    "NullSink",
    "Phase",
    "PhaseGraph",
    "TaskEntry",
    "TaskRegistry",
    "CommandTask",
    "CompositeTask",
    "FunctionTask",
    "Outcome",
    "Task",
    "TaskResult",
    "ExecutionTracker",
    "register_builtin_phases",
]
