"""
Execution Engine.

This module drives a run of a target phase (or task) to a terminal outcome.

Key features:
- Plans phases through the frozen PhaseGraph and tasks through the TaskRegistry
- Expands task dependencies and composite children into the plan
- Runs every sub-target (sub-projects depth-first, then the root) sequentially
- Evaluates applicability predicates per sub-target (SKIPPED when false)
- Converts task exceptions into FAILURE results; never raises for a task
- Fail-fast: the first failure stops the whole plan
- Emits ExecutionEvents in generation order and returns an ExecutionStatus
"""

import dataclasses
import logging
import time
import traceback
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from keel.core.environment import Environment
from keel.core.events import EventSink, EventType, ExecutionEvent, NullSink
from keel.core.phase import Phase, PhaseGraph
from keel.core.registry import TaskEntry, TaskRegistry
from keel.core.task import TaskResult
from keel.errors import (
    ExecutionError,
    ExecutionStateError,
    TaskCycle,
    UnknownPhase,
    UnknownTask,
)
from keel.project import ProjectContext

logger = logging.getLogger(__name__)


class RunState(Enum):
    """State of a run."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ExecutionStatus:
    """
    Read model of a run.

    Attributes:
        execution_id: Identifier of the run
        project_name: Root project name
        task_id: Requested target (phase or task id)
        status: RUNNING, COMPLETED or FAILED
        start_time: Start time in epoch milliseconds
        end_time: End time in epoch milliseconds, None while running
        total_tasks: Tasks in the plan times sub-targets, fixed at start
        completed_tasks: Tasks that succeeded
        failed_tasks: Tasks that failed (0 or 1 under fail-fast)
        skipped_tasks: Tasks whose predicate returned false
    """

    execution_id: str
    project_name: str
    task_id: str
    status: RunState = RunState.RUNNING
    start_time: int = 0
    end_time: int | None = None
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    skipped_tasks: int = 0

    @property
    def is_running(self) -> bool:
        return self.status is RunState.RUNNING

    @property
    def is_complete(self) -> bool:
        return self.status in (RunState.COMPLETED, RunState.FAILED)

    def duration(self) -> int | None:
        """Elapsed milliseconds, or None while running."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def finish(self, state: RunState, end_time: int) -> "ExecutionStatus":
        """
        Transition to a terminal state.

        Raises:
            ExecutionStateError: If already terminal or state is not terminal
        """
        if self.is_complete:
            raise ExecutionStateError(
                f"Execution {self.execution_id} already finished with {self.status.value}"
            )
        if state is RunState.RUNNING:
            raise ExecutionStateError("RUNNING is not a terminal state")
        return dataclasses.replace(self, status=state, end_time=end_time)


@dataclass(frozen=True)
class PlanStep:
    """A phase of a plan together with the tasks that run in it."""

    phase: Phase
    tasks: tuple[TaskEntry, ...]


class _Run:
    """Mutable state of a single run; never shared between runs."""

    def __init__(self, status: ExecutionStatus, sink: EventSink):
        self.status = status
        self.sink = sink

    def emit(
        self,
        event_type: EventType,
        message: str | None = None,
        *,
        success: bool = True,
        error_detail: str | None = None,
        sub_project: str | None = None,
        task_id: str | None = None,
    ) -> None:
        self.sink.emit(
            ExecutionEvent(
                project=self.status.project_name,
                execution_id=self.status.execution_id,
                event_type=event_type,
                success=success,
                message=message,
                error_detail=error_detail,
                sub_project=sub_project,
                task_id=task_id,
            )
        )

    def count(self, **increments: int) -> None:
        values = {
            name: getattr(self.status, name) + amount
            for name, amount in increments.items()
        }
        self.status = dataclasses.replace(self.status, **values)


class ExecutionEngine:
    """
    Runs plans against a frozen phase graph and task registry.

    The engine holds no per-run state, so several runs may share one engine.
    """

    def __init__(
        self,
        graph: PhaseGraph,
        registry: TaskRegistry,
        environment: Environment | None = None,
        sink: EventSink | None = None,
        clock: Callable[[], int] = _now_millis,
    ):
        """
        Args:
            graph: Frozen phase graph
            registry: Frozen task registry
            environment: Default environment handed to tasks
            sink: Default event sink
            clock: Returns the current time in epoch milliseconds

        Raises:
            ExecutionError: If graph or registry is not frozen yet
        """
        if not graph.frozen or not registry.frozen:
            raise ExecutionError(
                "Phase graph and task registry must be frozen before execution"
            )
        self.graph = graph
        self.registry = registry
        self.environment = environment or Environment()
        self.sink = sink or NullSink()
        self._clock = clock

    def plan(self, target: str) -> list[PlanStep]:
        """
        Resolve a target into ordered phases and their tasks.

        A task id as target plans the task's phase and keeps only that task
        from it. Within a step, each task's ``depends_on`` tasks come before
        it and its ``children`` right after it; every task appears once in
        the whole plan, at its first position.

        Raises:
            UnknownPhase: If the target is neither a phase nor a task
            UnknownTask: If a dependency or child is not registered
            TaskCycle: If dependencies or composite children form a cycle
        """
        if target in self.graph:
            phase_id, only_task = target, None
        else:
            entry = self.registry.get(target)
            if entry is None:
                raise UnknownPhase(target)
            phase_id, only_task = entry.phase_id, entry.id

        steps = []
        placed: set[str] = set()
        for phase in self.graph.plan_for(phase_id):
            entries = self.registry.tasks_for(phase.id)
            if only_task is not None and phase.id == phase_id:
                entries = [entry for entry in entries if entry.id == only_task]
            ordered: list[TaskEntry] = []
            for entry in entries:
                self._expand(entry, ordered, placed, [], [])
            steps.append(PlanStep(phase, tuple(ordered)))
        return steps

    def _lookup(self, task_id: str, referenced_by: str) -> TaskEntry:
        entry = self.registry.get(task_id)
        if entry is None:
            raise UnknownTask(task_id, referenced_by)
        return entry

    def _expand(
        self,
        entry: TaskEntry,
        ordered: list[TaskEntry],
        placed: set[str],
        pending: list[str],
        parents: list[str],
    ) -> None:
        if entry.id in placed:
            return
        if entry.id in pending:
            raise TaskCycle(pending[pending.index(entry.id):] + [entry.id])

        pending.append(entry.id)
        for dependency_id in entry.task.depends_on:
            dependency = self._lookup(dependency_id, entry.id)
            self._expand(dependency, ordered, placed, pending, parents)
        pending.pop()

        placed.add(entry.id)
        ordered.append(entry)

        parents.append(entry.id)
        for child_id in entry.task.children:
            if child_id in parents:
                raise TaskCycle(parents[parents.index(child_id):] + [child_id])
            child = self._lookup(child_id, entry.id)
            self._expand(child, ordered, placed, pending, parents)
        parents.pop()

    def run(
        self,
        target: str,
        project: ProjectContext,
        args: Sequence[str] = (),
        environment: Environment | None = None,
        sink: EventSink | None = None,
        *,
        execution_id: str | None = None,
    ) -> ExecutionStatus:
        """
        Execute a target for a project and all of its sub-projects.

        Args:
            target: Phase id (or task id) to run
            project: Root project
            args: Arguments passed to every task
            environment: Environment for this run (defaults to the engine's)
            sink: Event sink for this run (defaults to the engine's)
            execution_id: Run identifier; generated when omitted

        Returns:
            Terminal ExecutionStatus (COMPLETED or FAILED)

        Raises:
            UnknownPhase: If the target cannot be resolved
        """
        steps = self.plan(target)
        sub_targets = list(project.walk())
        args = tuple(args)
        environment = environment or self.environment

        status = ExecutionStatus(
            execution_id=execution_id or uuid.uuid4().hex,
            project_name=project.name,
            task_id=target,
            start_time=self._clock(),
            total_tasks=sum(len(step.tasks) for step in steps) * len(sub_targets),
        )
        run = _Run(status, sink or self.sink)

        logger.info(
            "Execution %s: %s on %s (%d task(s))",
            status.execution_id,
            target,
            project.name,
            status.total_tasks,
        )
        run.emit(EventType.STARTED, f"Execution started: {target}")

        failure = None
        for sub in sub_targets:
            sub_project = None if sub is project else sub.name
            for step in steps:
                for entry in step.tasks:
                    failure = self._run_task(run, entry, sub, sub_project, environment, args)
                    if failure is not None:
                        break
                if failure is not None:
                    break
            if failure is not None:
                break

        if failure is None:
            run.emit(EventType.COMPLETED, "Execution completed successfully")
            run.status = run.status.finish(RunState.COMPLETED, self._clock())
        else:
            task_id, message = failure
            run.emit(
                EventType.FAILED,
                f"Execution failed. Task '{task_id}' failed: {message}",
                success=False,
            )
            run.status = run.status.finish(RunState.FAILED, self._clock())

        logger.info(
            "Execution %s finished: %s", run.status.execution_id, run.status.status.value
        )
        return run.status

    def _run_task(
        self,
        run: _Run,
        entry: TaskEntry,
        sub: ProjectContext,
        sub_project: str | None,
        environment: Environment,
        args: tuple[str, ...],
    ) -> tuple[str, str] | None:
        task_id = entry.id

        try:
            applies = entry.applies_to(sub.config)
        except Exception as e:
            result = self._exception_result(task_id, "predicate raised", e)
            return task_id, self._report_failure(run, task_id, result, sub_project)

        if not applies:
            run.emit(
                EventType.SKIPPED,
                f"Task {task_id} skipped (not applicable)",
                sub_project=sub_project,
                task_id=task_id,
            )
            run.count(skipped_tasks=1)
            return None

        run.emit(
            EventType.STARTED,
            f"Starting task: {task_id}",
            sub_project=sub_project,
            task_id=task_id,
        )

        def publish(kind: str, text: str) -> None:
            run.emit(EventType[kind], text, sub_project=sub_project, task_id=task_id)

        try:
            result = entry.task.execute(environment.scoped(publish), sub, args)
            if not isinstance(result, TaskResult):
                result = TaskResult.failure(
                    f"Task '{task_id}' returned {type(result).__name__} instead of a TaskResult"
                )
        except Exception as e:
            logger.exception("Exception during execution of task '%s'", task_id)
            result = self._exception_result(task_id, "failed with exception", e)

        if result.is_success:
            run.emit(
                EventType.COMPLETED,
                result.message or f"Task {task_id} completed successfully",
                sub_project=sub_project,
                task_id=task_id,
            )
            run.count(completed_tasks=1)
            return None

        return task_id, self._report_failure(run, task_id, result, sub_project)

    @staticmethod
    def _exception_result(task_id: str, what: str, error: Exception) -> TaskResult:
        message = str(error) or type(error).__name__
        stack = "".join(traceback.format_exception(error))
        return TaskResult.failure(
            f"Task '{task_id}' {what}: {message}",
            f"Exception: {message}\n\nStack Trace:\n{stack}",
        )

    @staticmethod
    def _report_failure(
        run: _Run, task_id: str, result: TaskResult, sub_project: str | None
    ) -> str:
        message = result.message or "Task failed without message"
        logger.error(
            "Task '%s' failed in project '%s': %s",
            task_id,
            sub_project or run.status.project_name,
            message,
        )
        run.emit(
            EventType.FAILED,
            message,
            success=False,
            error_detail=result.error_detail or message,
            sub_project=sub_project,
            task_id=task_id,
        )
        run.count(failed_tasks=1)
        return message
