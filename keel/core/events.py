"""
Execution events and sinks.

This module defines the events produced during a run and the sinks that
receive them.

Key features:
- ExecutionEvent records (execution-level when task_id is None)
- EventSink protocol: any object with emit(event)
- CollectingSink, LoggingSink and FanoutSink implementations
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class EventType(Enum):
    """Kind of execution event."""

    STARTED = "STARTED"
    UPDATED = "UPDATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    OUTPUT = "OUTPUT"


@dataclass(frozen=True)
class ExecutionEvent:
    """
    A single step of progress in a run.

    Attributes:
        project: Name of the root project of the run
        execution_id: Identifier of the run
        event_type: Kind of event
        success: Whether the step succeeded (False only for FAILED)
        message: Human-readable message
        error_detail: Diagnostic text for failures
        sub_project: Name of the sub-target, when it is not the root project
        task_id: Task the event belongs to, None for execution-level events
    """

    project: str
    execution_id: str
    event_type: EventType
    success: bool = True
    message: str | None = None
    error_detail: str | None = None
    sub_project: str | None = None
    task_id: str | None = None


class EventSink(Protocol):
    """Receiver of execution events."""

    def emit(self, event: ExecutionEvent) -> None: ...


class CollectingSink:
    """Sink that keeps every event in memory, in arrival order."""

    def __init__(self):
        self._events: list[ExecutionEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: ExecutionEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ExecutionEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: EventType) -> list[ExecutionEvent]:
        return [event for event in self.events if event.event_type is event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


_ICONS = {
    EventType.STARTED: "▶️",
    EventType.COMPLETED: "✅",
    EventType.FAILED: "❌",
    EventType.SKIPPED: "⏭️",
    EventType.OUTPUT: "📝",
}


def format_event(event: ExecutionEvent) -> str:
    """Render an event as a single log line with a status icon."""
    icon = _ICONS.get(event.event_type, "ℹ️")
    subject = event.task_id or "execution"
    line = f"{icon} ID: {event.execution_id:<24} | {event.event_type.value} {subject}"
    if event.sub_project:
        line += f" | SubProject: {event.sub_project}"
    if event.message:
        line += f" | Message: {event.message}"
    return line


class LoggingSink:
    """Sink that writes each event to a logger at INFO."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger("keel.events")

    def emit(self, event: ExecutionEvent) -> None:
        self._logger.info(format_event(event))
        if event.error_detail:
            self._logger.debug(event.error_detail)


class FanoutSink:
    """Sink that forwards each event to several sinks in order."""

    def __init__(self, *sinks: EventSink):
        self._sinks = list(sinks)

    def add(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event: ExecutionEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


class NullSink:
    """Sink that drops every event."""

    def emit(self, event: ExecutionEvent) -> None:
        pass
