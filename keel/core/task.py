"""
Task contract.

This module defines the unit of work executed by the engine.

Key features:
- Task abstract base class bound to a phase
- TaskResult with SUCCESS/FAILURE outcome and optional sub-results
- FunctionTask for wrapping a plain callable
- CommandTask for running a shell command through the CommandExecutor service
- CompositeTask grouping child tasks, with before/after hooks
"""

import shlex
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from keel.core.environment import Environment
    from keel.project import ProjectContext


class Outcome(Enum):
    """Outcome of a task invocation."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class TaskResult:
    """
    Result of executing a task.

    Attributes:
        outcome: SUCCESS or FAILURE
        message: Short human-readable message
        error_detail: Longer diagnostic text (e.g. a traceback)
        results: Results of nested steps, if the task reports any
    """

    outcome: Outcome
    message: str | None = None
    error_detail: str | None = None
    results: tuple["TaskResult", ...] = ()

    @classmethod
    def success(
        cls, message: str | None = None, results: Sequence["TaskResult"] = ()
    ) -> "TaskResult":
        return cls(Outcome.SUCCESS, message, None, tuple(results))

    @classmethod
    def failure(
        cls,
        message: str | None = None,
        error_detail: str | None = None,
        results: Sequence["TaskResult"] = (),
    ) -> "TaskResult":
        return cls(Outcome.FAILURE, message, error_detail, tuple(results))

    @property
    def is_success(self) -> bool:
        return self.outcome is Outcome.SUCCESS


class Task(ABC):
    """
    Base class for tasks contributed by plugins.

    Subclasses set ``id``, ``phase_id`` and ``description`` (as class or
    instance attributes) and implement ``execute``.

    ``depends_on`` names tasks that must run before this one and ``children``
    names tasks that run right after it. The engine pulls both into the plan
    even when they belong to phases outside it.
    """

    id: str = ""
    phase_id: str = ""
    description: str = ""
    depends_on: tuple[str, ...] = ()
    children: tuple[str, ...] = ()

    @abstractmethod
    def execute(
        self,
        environment: "Environment",
        project: "ProjectContext",
        args: Sequence[str],
    ) -> TaskResult:
        """
        Run the task.

        Args:
            environment: Handle to variables, services and event output
            project: The sub-target being processed
            args: Arguments passed to the run

        Returns:
            TaskResult; exceptions are converted to FAILURE by the engine
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, phase_id={self.phase_id!r})"


class FunctionTask(Task):
    """Task backed by a callable with the execute() signature."""

    def __init__(
        self,
        task_id: str,
        phase_id: str,
        func: Callable[["Environment", "ProjectContext", Sequence[str]], TaskResult],
        description: str = "",
    ):
        self.id = task_id
        self.phase_id = phase_id
        self.description = description or (func.__doc__ or "").strip()
        self._func = func

    def execute(self, environment, project, args):
        return self._func(environment, project, args)


class CommandTask(Task):
    """Task that runs a shell command in the sub-target's directory."""

    def __init__(
        self, task_id: str, phase_id: str, command: str, description: str = ""
    ):
        self.id = task_id
        self.phase_id = phase_id
        self.command = command
        self.description = description or command

    def execute(self, environment, project, args):
        from keel.system.commands import CommandError, CommandExecutor

        executor = environment.service(CommandExecutor)
        command = " ".join([self.command, *map(shlex.quote, args)])
        try:
            result = executor.execute(command, project.dir, environment.variables)
        except CommandError as e:
            return TaskResult.failure(str(e), e.output)

        if result.output:
            environment.output(result.output)
        return TaskResult.success(f"Command succeeded: {command}")


BeforeHook = Callable[["Environment", "ProjectContext"], TaskResult]
AfterHook = Callable[["Environment", "ProjectContext", Sequence[TaskResult]], TaskResult]


class CompositeTask(Task):
    """
    Task that groups child tasks under one id.

    The children are separate registered tasks; the engine runs them after
    this task, each with its own events and applicability check. The hooks
    run inside this task's own execution, before any child:

        CompositeTask(
            "build-all",
            "build",
            children=["compile", "package", "verify-artifacts"],
            before_children=lambda env, project: TaskResult.success("Prepared"),
        )

    Hook results are collected in the returned TaskResult.results.
    """

    def __init__(
        self,
        task_id: str,
        phase_id: str,
        children: Sequence[str] = (),
        description: str = "",
        *,
        depends_on: Sequence[str] = (),
        before_children: BeforeHook | None = None,
        after_children: AfterHook | None = None,
    ):
        self.id = task_id
        self.phase_id = phase_id
        self.children = tuple(children)
        self.depends_on = tuple(dict.fromkeys(depends_on))
        self.description = description or f"Run {', '.join(self.children) or 'nothing'}"
        self._before = before_children
        self._after = after_children

    def execute(self, environment, project, args):
        results: list[TaskResult] = []

        if self._before is not None:
            before = self._before(environment, project)
            results.append(before)
            if not before.is_success:
                return TaskResult.failure(
                    f"Composite task '{self.id}' failed in before-children hook: "
                    f"{before.message}",
                    before.error_detail,
                    results,
                )

        if self._after is not None:
            after = self._after(environment, project, tuple(results))
            results.append(after)
            if not after.is_success:
                return TaskResult.failure(
                    f"Composite task '{self.id}' failed in after-children hook: "
                    f"{after.message}",
                    after.error_detail,
                    results,
                )
            return TaskResult.success(after.message, results)

        return TaskResult.success(f"Composite task '{self.id}' completed", results)
