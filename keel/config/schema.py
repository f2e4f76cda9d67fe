"""
Configuration schemas.

Plugins and the engine describe their keel.toml tables with ConfigField
declarations:

    config_schema = {
        "enabled": ConfigField(bool, True, "Run the linters"),
        "jobs": ConfigField(int, 4, "Parallel jobs", min=1, max=64),
        "level": ConfigField(str, "warn", choices=["warn", "error"]),
    }

Key features:
- Field definitions checked when declared (default, choices, constraints)
- Value validation with type, range/length and choice constraints
- Default merging for partially specified sections
- Coercion of string overrides (environment variables) to the field type
"""

from dataclasses import dataclass
from typing import Any

from keel.errors import ConfigurationError


class SchemaError(ConfigurationError):
    """Raised when a field declaration is inconsistent."""

    pass


class ValidationError(ConfigurationError):
    """Raised when a configured value violates its field."""

    pass


# min/max bound the value for numbers and the length for str/list
_RANGED_TYPES = (int, float, str, list)

_BOOLEAN_STRINGS = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


@dataclass
class ConfigField:
    """
    One entry of a configuration table.

    A field whose default is None is optional: None (or an absent key) is
    accepted, and generated TOML leaves it commented out.

    Attributes:
        type_: Python type of the value (bool, int, float, str or list)
        default: Value used when the table omits the key
        description: Text shown as a comment in generated TOML
        min: Lower bound (value for numbers, length for str/list)
        max: Upper bound (value for numbers, length for str/list)
        choices: Allowed values
    """

    type_: type
    default: Any
    description: str = ""
    min: Any = None
    max: Any = None
    choices: list[Any] | None = None

    def __post_init__(self):
        type_name = self.type_.__name__

        if self.default is not None and not self._matches_type(self.default):
            raise SchemaError(
                f"Default value {self.default!r} does not match type {type_name}"
            )

        has_bounds = self.min is not None or self.max is not None
        if has_bounds and self.type_ not in _RANGED_TYPES:
            raise SchemaError(f"Field of type {type_name} cannot declare min/max")

        if self.choices is None:
            return
        if not isinstance(self.choices, list):
            raise SchemaError("choices must be a list")
        bad = [choice for choice in self.choices if not self._matches_type(choice)]
        if bad:
            raise SchemaError(f"Choice {bad[0]!r} does not match type {type_name}")
        if self.default not in self.choices:
            raise SchemaError(f"Default value {self.default!r} not in choices {self.choices}")

    def _matches_type(self, value: Any) -> bool:
        if isinstance(value, bool):
            return self.type_ is bool
        if self.type_ is float:
            return isinstance(value, (int, float))
        return isinstance(value, self.type_)

    def _check_bounds(self, value: Any) -> None:
        if self.type_ in (int, float):
            measured, label = value, f"Value {value}"
        elif self.type_ in (str, list):
            measured = len(value)
            label = f"{'String' if self.type_ is str else 'List'} length {measured}"
        else:
            return

        if self.min is not None and measured < self.min:
            raise ValidationError(f"{label} is less than minimum {self.min}")
        if self.max is not None and measured > self.max:
            raise ValidationError(f"{label} is greater than maximum {self.max}")

    def validate(self, value: Any) -> None:
        """
        Check a value against the field.

        Raises:
            ValidationError: If the value has the wrong type, is outside the
                bounds or choices, or is None for a required field
        """
        if value is None:
            if self.default is not None:
                raise ValidationError("Value is required")
            return

        if not self._matches_type(value):
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {type(value).__name__}"
            )
        if self.choices is not None and value not in self.choices:
            raise ValidationError(f"Value {value!r} not in allowed choices {self.choices}")
        self._check_bounds(value)

    def coerce(self, raw: str) -> Any:
        """
        Convert a string override to the field type and validate it.

        Booleans accept 1/0, true/false, yes/no and on/off. Lists are
        comma-separated, with blank items dropped.

        Raises:
            ValidationError: If the string cannot be converted or the result
                is invalid
        """
        try:
            if self.type_ is bool:
                key = raw.strip().lower()
                if key not in _BOOLEAN_STRINGS:
                    raise ValueError(f"not a boolean: {raw!r}")
                value: Any = _BOOLEAN_STRINGS[key]
            elif self.type_ is list:
                value = [item.strip() for item in raw.split(",") if item.strip()]
            elif self.type_ in (int, float, str):
                value = self.type_(raw)
            else:
                raise ValueError(f"cannot convert string to {self.type_.__name__}")
        except ValueError as e:
            raise ValidationError(f"Invalid value {raw!r}: {e}") from e

        self.validate(value)
        return value


def validate_config(
    config: dict[str, Any],
    schema: dict[str, ConfigField],
    allow_unknown: bool = False,
) -> None:
    """
    Validate a whole table against its schema.

    Every schema field must be present (merge defaults first). Keys outside
    the schema are rejected unless allow_unknown is set.

    Raises:
        ValidationError: Naming the offending field
    """
    if not allow_unknown:
        unknown = [key for key in config if key not in schema]
        if unknown:
            raise ValidationError(f"Unknown configuration field: {unknown[0]}")

    for name, field in schema.items():
        if name not in config:
            raise ValidationError(f"Missing required field: {name}")
        try:
            field.validate(config[name])
        except ValidationError as e:
            raise ValidationError(f"Field '{name}': {e}") from e


def generate_default_config(schema: dict[str, ConfigField]) -> dict[str, Any]:
    return {name: field.default for name, field in schema.items()}


def merge_defaults(
    section: dict[str, Any], schema: dict[str, ConfigField]
) -> dict[str, Any]:
    """
    Fill a partial table with schema defaults.

    Keys given in the section win. Keys outside the schema are kept so the
    caller's validate_config decides about them.
    """
    merged = generate_default_config(schema)
    merged.update(section)
    return merged
