"""
Task environment handle.

The environment gives tasks access to process variables, platform services
(such as the CommandExecutor) and the event stream of the current run.
"""

import logging
import os
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from keel.errors import KeelError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Publisher = Callable[[str, str], None]


class ServiceUnavailable(KeelError):
    """Raised when a task asks for a service that was not provided."""

    pass


class Environment:
    """
    Handle passed to every task invocation.

    The engine hands each task a copy scoped to the running task, so output()
    and progress() land in the run's event stream. An unscoped environment
    only logs them.
    """

    def __init__(
        self,
        variables: Mapping[str, str] | None = None,
        services: Mapping[type, Any] | None = None,
    ):
        self.variables: dict[str, str] = (
            dict(os.environ) if variables is None else dict(variables)
        )
        self._services: dict[type, Any] = dict(services or {})
        self._publisher: Publisher | None = None

    def register_service(self, service_type: type[T], instance: T) -> None:
        """Provide an implementation for a service type."""
        self._services[service_type] = instance

    def service(self, service_type: type[T]) -> T:
        """
        Look up a service by type.

        An exact registration wins; otherwise the first registered instance
        of a subclass is returned.

        Raises:
            ServiceUnavailable: If no matching service is registered
        """
        if service_type in self._services:
            return self._services[service_type]
        for instance in self._services.values():
            if isinstance(instance, service_type):
                return instance
        raise ServiceUnavailable(f"No service registered for {service_type.__name__}")

    def output(self, text: str) -> None:
        """Publish task output (an OUTPUT event during a run)."""
        self._publish("OUTPUT", text)

    def progress(self, text: str) -> None:
        """Publish a progress update (an UPDATED event during a run)."""
        self._publish("UPDATED", text)

    def _publish(self, kind: str, text: str) -> None:
        if self._publisher is None:
            logger.info("%s: %s", kind.lower(), text)
            return
        self._publisher(kind, text)

    def scoped(self, publisher: Publisher) -> "Environment":
        """Return a copy that sends output/progress to a publisher."""
        clone = Environment(self.variables, self._services)
        clone._publisher = publisher
        return clone
