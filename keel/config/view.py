"""
Plugin Configuration View.

This module provides the read-only configuration object bound to each plugin.

Key features:
- PluginConfig class with attribute-based access
- Schema defaults filled in for missing keys
- Validation against the plugin's schema on construction
- Immutable after construction
"""

import logging
from collections.abc import Mapping
from typing import Any

from keel.config.schema import (
    ConfigField,
    ValidationError,
    merge_defaults,
    validate_config,
)

logger = logging.getLogger(__name__)


class PluginConfig:
    """
    Read-only view over one plugin's configuration section.

    Keys outside the schema are tolerated (and logged) so that a project file
    written for a newer plugin release still loads.

    Example:
        cfg = PluginConfig("commits", schema, {"enabled": False})
        cfg.enabled   # False
        cfg.enabled = True   # AttributeError
    """

    def __init__(
        self,
        section_name: str,
        schema: dict[str, ConfigField],
        section: Mapping[str, Any] | None = None,
    ):
        """
        Build and validate the view.

        Args:
            section_name: Name of the TOML table (the plugin's context key)
            schema: Schema dictionary (field_name -> ConfigField)
            section: Raw values from the project file, if any

        Raises:
            ValidationError: If the section does not satisfy the schema
        """
        values = merge_defaults(dict(section or {}), schema)
        try:
            validate_config(values, schema, allow_unknown=True)
        except ValidationError as e:
            raise ValidationError(f"Invalid [{section_name}] configuration: {e}") from e

        unknown = sorted(key for key in values if key not in schema)
        if unknown:
            logger.debug(
                "Ignoring unknown keys in [%s]: %s", section_name, ", ".join(unknown)
            )

        object.__setattr__(self, "_section_name", section_name)
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_values", values)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return object.__getattribute__(self, name)

        if name not in self._schema:
            raise AttributeError(
                f"Configuration field '{name}' not found in schema for {self._section_name}"
            )

        return self._values[name]

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(
            f"Configuration for {self._section_name} is read-only (tried to set '{name}')"
        )

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"Configuration for {self._section_name} is read-only")

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PluginConfig):
            return NotImplemented
        return (
            self._section_name == other._section_name
            and self._values == other._values
        )

    def __hash__(self) -> int:
        return hash((self._section_name, tuple(sorted(self._values))))

    def get(self, name: str, default: Any = None) -> Any:
        """Return a raw value, including keys outside the schema."""
        return self._values.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        """Return a copy of all values."""
        return dict(self._values)

    @property
    def section_name(self) -> str:
        return self._section_name

    def __repr__(self) -> str:
        return f"PluginConfig({self._section_name!r}, {self._values!r})"
