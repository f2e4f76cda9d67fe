"""
Plugin contract.

A plugin module exposes ``create_plugin()`` (or a ``plugin`` object) returning
a Plugin. The loader binds the plugin's configuration section, registers any
phases the plugin contributes, then calls ``register`` inside a registry
transaction.

Example:

    API_VERSION = 1

    class LintPlugin(Plugin):
        id = "lint-tools"
        context_key = "lint"
        config_schema = {"enabled": ConfigField(bool, True)}

        def register(self, registry):
            registry.add(CommandTask("ruff", "lint", "ruff check ."),
                         lambda cfg: cfg.enabled)

    def create_plugin():
        return LintPlugin()
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from keel.config.schema import ConfigField
from keel.config.view import PluginConfig
from keel.core.phase import Phase

if TYPE_CHECKING:
    from keel.core.registry import TaskRegistry

API_VERSION = 1


class Plugin(ABC):
    """
    Base class for plugins.

    Attributes:
        id: Unique plugin identifier
        context_key: Name of the keel.toml table holding this plugin's settings
        config_schema: Schema of that table
        config: Configuration bound by the loader (None until bound)
    """

    id: ClassVar[str] = ""
    context_key: ClassVar[str] = ""
    config_schema: ClassVar[dict[str, ConfigField]] = {}

    config: PluginConfig | None = None

    def bind(self, config: PluginConfig) -> None:
        """Attach the plugin's configuration view."""
        self.config = config

    def phases(self) -> list[Phase]:
        """Return additional phases contributed by this plugin."""
        return []

    @abstractmethod
    def register(self, registry: "TaskRegistry") -> None:
        """Add this plugin's tasks to the registry."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"
