"""
Execution Tracker.

An event sink that keeps a live ExecutionStatus per execution id, so monitors
can query a run while it is still RUNNING:

    tracker = ExecutionTracker()
    engine.run("build", project, sink=tracker, execution_id="ci-42")
    tracker.get("ci-42").status   # RUNNING until the terminal event arrives

Statuses are built from events alone. The plan size is not part of the event
stream, so total_tasks counts tasks reached so far (started or skipped).
"""

import dataclasses
import logging
import threading
from collections.abc import Callable

from keel.core.engine import ExecutionStatus, RunState, _now_millis
from keel.core.events import EventType, ExecutionEvent

logger = logging.getLogger(__name__)

UNKNOWN_TARGET = "unknown"

_TASK_COUNTERS = {
    EventType.STARTED: ("total_tasks",),
    EventType.SKIPPED: ("total_tasks", "skipped_tasks"),
    EventType.COMPLETED: ("completed_tasks",),
    EventType.FAILED: ("failed_tasks",),
}

_TERMINAL = {
    EventType.COMPLETED: RunState.COMPLETED,
    EventType.FAILED: RunState.FAILED,
}


class ExecutionTracker:
    """Sink that maintains the read model of every run it has seen."""

    def __init__(self, clock: Callable[[], int] = _now_millis):
        self._executions: dict[str, ExecutionStatus] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def emit(self, event: ExecutionEvent) -> None:
        with self._lock:
            if event.task_id is None:
                self._on_execution_event(event)
            else:
                self._on_task_event(event)

    def _on_execution_event(self, event: ExecutionEvent) -> None:
        if event.event_type is EventType.STARTED:
            self._executions[event.execution_id] = ExecutionStatus(
                execution_id=event.execution_id,
                project_name=event.project,
                task_id=UNKNOWN_TARGET,
                start_time=self._clock(),
            )
            return

        state = _TERMINAL.get(event.event_type)
        current = self._executions.get(event.execution_id)
        if state is None or current is None:
            return
        if current.is_complete:
            logger.warning(
                "Ignoring %s for finished execution %s",
                event.event_type.value,
                event.execution_id,
            )
            return
        self._executions[event.execution_id] = current.finish(state, self._clock())

    def _on_task_event(self, event: ExecutionEvent) -> None:
        current = self._executions.get(event.execution_id)
        counters = _TASK_COUNTERS.get(event.event_type, ())
        if current is None or not counters:
            return
        self._executions[event.execution_id] = dataclasses.replace(
            current, **{name: getattr(current, name) + 1 for name in counters}
        )

    def get(self, execution_id: str) -> ExecutionStatus | None:
        """Return the current status of a run, or None if it was never seen."""
        with self._lock:
            return self._executions.get(execution_id)

    def all(self) -> list[ExecutionStatus]:
        """Return every tracked run in the order the runs started."""
        with self._lock:
            return list(self._executions.values())

    def running(self) -> list[ExecutionStatus]:
        return [status for status in self.all() if status.is_running]

    def forget(self, execution_id: str) -> None:
        with self._lock:
            self._executions.pop(execution_id, None)
