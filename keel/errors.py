"""
Keel error taxonomy.

Load-time errors (GraphError, ConfigurationError) are fatal and abort startup
before any execution is served. Plugin errors (ResolutionError,
PluginLoadError) are isolated to the affected plugin. ExecutionError covers
run-level faults; task failures themselves are reported through events and
the returned ExecutionStatus, never raised out of a run.
"""


class KeelError(Exception):
    """Base exception for all Keel errors."""

    pass


class GraphError(KeelError):
    """Raised when the phase graph is structurally invalid."""

    pass


class GraphCycle(GraphError):
    """Raised when depends-on and specialization edges form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Phase graph contains a cycle: {' -> '.join(cycle)}")


class UnknownPhase(GraphError):
    """Raised when a phase reference cannot be resolved."""

    def __init__(self, phase_id: str, referenced_by: str | None = None):
        self.phase_id = phase_id
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Unknown phase '{phase_id}' referenced by '{referenced_by}'"
        else:
            message = f"Unknown phase '{phase_id}'"
        super().__init__(message)


class UnknownTask(GraphError):
    """Raised when a task names a dependency or child that is not registered."""

    def __init__(self, task_id: str, referenced_by: str):
        self.task_id = task_id
        self.referenced_by = referenced_by
        super().__init__(f"Unknown task '{task_id}' referenced by '{referenced_by}'")


class TaskCycle(GraphError):
    """Raised when task dependencies or composite children form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Task dependencies contain a cycle: {' -> '.join(cycle)}")


class ConfigurationError(KeelError):
    """Raised for invalid registrations or configuration."""

    pass


class DuplicatePhase(ConfigurationError):
    """Raised when a phase identifier is registered twice."""

    def __init__(self, phase_id: str):
        self.phase_id = phase_id
        super().__init__(f"Phase already registered: {phase_id}")


class DuplicateTask(ConfigurationError):
    """Raised when a task identifier is registered twice."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task already registered: {task_id}")


class ResolutionError(KeelError):
    """Raised when a plugin artifact cannot be located or fetched."""

    pass


class NoMatchingSource(ResolutionError):
    """Raised when no plugin source handles the requested source type."""

    def __init__(self, source_type: str, supported: list[str]):
        self.source_type = source_type
        self.supported = supported
        super().__init__(
            f"Unsupported plugin type: {source_type}. "
            f"Available types: {', '.join(supported) or 'none'}"
        )


class PluginLoadError(KeelError):
    """Raised when a resolved plugin cannot be imported or registered."""

    pass


class ExecutionError(KeelError):
    """Base exception for run-level execution errors."""

    pass


class ExecutionStateError(ExecutionError):
    """Raised on an illegal execution status transition."""

    pass
