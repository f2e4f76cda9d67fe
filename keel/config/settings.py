"""
Engine settings.

Settings come from the optional [engine] table of keel.toml and are overridden
by KEEL_* environment variables (KEEL_CACHE_DIR, KEEL_HTTP_TIMEOUT, ...).
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from keel.config.schema import (
    ConfigField,
    ValidationError,
    merge_defaults,
    validate_config,
)

ENV_PREFIX = "KEEL_"

ENGINE_SCHEMA: dict[str, ConfigField] = {
    "cache_dir": ConfigField(
        type_=str,
        default="",
        description="Directory for downloaded and cloned plugins (empty: ~/.cache/keel)",
    ),
    "cache_enabled": ConfigField(
        type_=bool,
        default=True,
        description="Reuse previously downloaded artifacts",
    ),
    "user_agent": ConfigField(
        type_=str,
        default="keel",
        description="User-Agent header for HTTP requests",
        min=1,
    ),
    "http_timeout": ConfigField(
        type_=float,
        default=30.0,
        description="HTTP timeout in seconds",
        min=0.1,
        max=3600.0,
    ),
    "github_token": ConfigField(
        type_=str,
        default="",
        description="Token for the GitHub API (falls back to GITHUB_TOKEN)",
    ),
    "command_timeout": ConfigField(
        type_=float,
        default=600.0,
        description="Timeout in seconds for shell commands run by tasks",
        min=0.1,
    ),
    "redirect_error_stream": ConfigField(
        type_=bool,
        default=True,
        description="Merge stderr into stdout for shell commands",
    ),
}


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    if base:
        return Path(base) / "keel"
    return Path.home() / ".cache" / "keel"


@dataclass(frozen=True)
class EngineSettings:
    """
    Engine-wide settings.

    Attributes:
        cache_dir: Directory for downloaded and cloned plugin artifacts
        cache_enabled: Whether existing downloads are reused
        user_agent: User-Agent header for HTTP requests
        http_timeout: HTTP timeout in seconds
        github_token: Bearer token for the GitHub API, if any
        command_timeout: Timeout for shell commands in seconds
        redirect_error_stream: Whether stderr is merged into stdout
    """

    cache_dir: Path = field(default_factory=default_cache_dir)
    cache_enabled: bool = True
    user_agent: str = "keel"
    http_timeout: float = 30.0
    github_token: str | None = None
    command_timeout: float = 600.0
    redirect_error_stream: bool = True

    @classmethod
    def load(
        cls,
        section: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "EngineSettings":
        """
        Build settings from an [engine] table and environment overrides.

        Args:
            section: Raw [engine] table, if present
            environ: Environment mapping (defaults to os.environ)

        Returns:
            EngineSettings instance

        Raises:
            ValidationError: If a value fails schema validation
        """
        environ = os.environ if environ is None else environ
        values = merge_defaults(dict(section or {}), ENGINE_SCHEMA)

        for name, config_field in ENGINE_SCHEMA.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None:
                try:
                    values[name] = config_field.coerce(raw)
                except ValidationError as e:
                    raise ValidationError(f"{ENV_PREFIX}{name.upper()}: {e}") from e

        try:
            validate_config(values, ENGINE_SCHEMA)
        except ValidationError as e:
            raise ValidationError(f"Invalid [engine] configuration: {e}") from e

        token = values["github_token"] or environ.get("GITHUB_TOKEN") or None
        cache_dir = (
            Path(values["cache_dir"]).expanduser()
            if values["cache_dir"]
            else default_cache_dir()
        )

        return cls(
            cache_dir=cache_dir,
            cache_enabled=values["cache_enabled"],
            user_agent=values["user_agent"],
            http_timeout=float(values["http_timeout"]),
            github_token=token,
            command_timeout=float(values["command_timeout"]),
            redirect_error_stream=values["redirect_error_stream"],
        )
