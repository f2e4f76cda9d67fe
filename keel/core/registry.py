"""
Task Registry.

This module holds the tasks contributed by plugins, grouped by phase.

Key features:
- Ordered multimap from phase id to tasks (registration order preserved)
- Optional applicability predicate per task, evaluated per sub-target
- Per-plugin transactions: a plugin's additions commit together or not at all
- Freeze after load; frozen registries are safe for concurrent reads
"""

import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from keel.config.schema import ConfigField
from keel.config.view import PluginConfig
from keel.core.task import Task
from keel.errors import ConfigurationError, DuplicateTask

if TYPE_CHECKING:
    from keel.plugin.base import Plugin

logger = logging.getLogger(__name__)

Predicate = Callable[[PluginConfig], bool]


@dataclass(frozen=True)
class TaskEntry:
    """
    A registered task with its applicability metadata.

    Attributes:
        task: The task itself
        predicate: Applicability check, called with the sub-target's config view
        context_key: Configuration section the predicate reads
        schema: Schema used to build the config view
        owner: Id of the plugin that registered the task, if any
    """

    task: Task
    predicate: Predicate | None = None
    context_key: str | None = None
    schema: Mapping[str, ConfigField] = field(default_factory=dict)
    owner: str | None = None

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def phase_id(self) -> str:
        return self.task.phase_id

    def config_for(self, project_config: Mapping[str, Any]) -> PluginConfig:
        """Build a fresh config view from a sub-target's configuration."""
        section = project_config.get(self.context_key) if self.context_key else None
        if not isinstance(section, Mapping):
            section = None
        return PluginConfig(self.context_key or self.task.id, dict(self.schema), section)

    def applies_to(self, project_config: Mapping[str, Any]) -> bool:
        """Evaluate the predicate; tasks without one always apply."""
        if self.predicate is None:
            return True
        return bool(self.predicate(self.config_for(project_config)))


class TaskRegistry:
    """
    Registry of tasks keyed by phase.

    Example:
        registry = TaskRegistry()
        with registry.transaction(plugin):
            registry.add(my_task)
        registry.freeze()
        registry.tasks_for("build")
    """

    def __init__(self):
        self._by_phase: dict[str, list[TaskEntry]] = {}
        self._by_id: dict[str, TaskEntry] = {}
        self._staged: list[TaskEntry] | None = None
        self._owner: "Plugin | None" = None
        self._frozen = False
        self._lock = threading.RLock()

    def add(
        self,
        task: Task,
        predicate: Predicate | None = None,
        *,
        context_key: str | None = None,
        schema: Mapping[str, ConfigField] | None = None,
    ) -> None:
        """
        Register a task on its phase.

        Inside a transaction, context_key and schema default to the owning
        plugin's and the entry is staged until the transaction commits.

        Args:
            task: Task to register
            predicate: Optional applicability check
            context_key: Configuration section for the predicate
            schema: Schema for that section

        Raises:
            DuplicateTask: If a task with the same id exists
            ConfigurationError: If the registry is frozen or the task is malformed
        """
        if not task.id or not task.phase_id:
            raise ConfigurationError(f"Task must declare id and phase_id: {task!r}")

        with self._lock:
            if self._frozen:
                raise ConfigurationError(
                    f"Cannot register task '{task.id}': task registry is frozen"
                )

            if task.id in self._by_id or any(
                entry.id == task.id for entry in self._staged or ()
            ):
                raise DuplicateTask(task.id)

            owner = self._owner
            if owner is not None:
                if context_key is None:
                    context_key = owner.context_key
                if schema is None:
                    schema = owner.config_schema

            entry = TaskEntry(
                task=task,
                predicate=predicate,
                context_key=context_key,
                schema=dict(schema or {}),
                owner=owner.id if owner is not None else None,
            )

            if self._staged is not None:
                self._staged.append(entry)
            else:
                self._commit([entry])

    def _commit(self, entries: list[TaskEntry]) -> None:
        for entry in entries:
            self._by_id[entry.id] = entry
            self._by_phase.setdefault(entry.phase_id, []).append(entry)
            logger.debug("Registered task %s on phase %s", entry.id, entry.phase_id)

    @contextmanager
    def transaction(self, owner: "Plugin") -> Iterator["TaskRegistry"]:
        """
        Stage additions made on behalf of a plugin.

        The staged entries are committed when the block exits normally and
        discarded when it raises.

        Raises:
            ConfigurationError: If a transaction is already open or the registry is frozen
        """
        with self._lock:
            if self._frozen:
                raise ConfigurationError("Cannot open transaction: task registry is frozen")
            if self._staged is not None:
                raise ConfigurationError("A registration transaction is already open")
            self._staged = []
            self._owner = owner

            try:
                yield self
            except BaseException:
                logger.debug(
                    "Discarding %d staged task(s) from %s", len(self._staged), owner.id
                )
                raise
            else:
                self._commit(self._staged)
            finally:
                self._staged = None
                self._owner = None

    def freeze(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def tasks_for(self, phase_id: str) -> list[TaskEntry]:
        """Return the tasks of a phase in registration order."""
        return list(self._by_phase.get(phase_id, ()))

    def get(self, task_id: str) -> TaskEntry | None:
        return self._by_id.get(task_id)

    def all(self) -> list[TaskEntry]:
        """Return every task in registration order."""
        return list(self._by_id.values())

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)
