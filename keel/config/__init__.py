"""
Keel configuration layer.

Schemas, TOML I/O, the read-only plugin configuration view and engine settings.
"""

from keel.config.schema import (
    ConfigField,
    SchemaError,
    ValidationError,
    generate_default_config,
    merge_defaults,
    validate_config,
)
from keel.config.settings import ENGINE_SCHEMA, EngineSettings
from keel.config.toml_handler import (
    TOMLError,
    generate_project_toml,
    generate_toml_from_schema,
    read_toml,
    write_toml,
)
from keel.config.view import PluginConfig

__all__ = [
    "ConfigField",
    "SchemaError",
    "ValidationError",
    "generate_default_config",
    "merge_defaults",
    "validate_config",
    "ENGINE_SCHEMA",
    "EngineSettings",
    "TOMLError",
    "generate_project_toml",
    "generate_toml_from_schema",
    "read_toml",
    "write_toml",
    "PluginConfig",
]
