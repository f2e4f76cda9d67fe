"""
TOML I/O for keel.toml files.

Reading goes through tomllib. Writing and generation go through tomlkit so
generated files carry field descriptions and constraints as comments:

    # Configuration for commits
    [commits]
    # Verify commit messages in the commit-msg hook
    enabled = true
"""

import tomllib
from pathlib import Path
from typing import Any

import tomlkit

from keel.config.schema import ConfigField
from keel.errors import ConfigurationError


class TOMLError(ConfigurationError):
    """Raised when a TOML file cannot be read, parsed or written."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Load a TOML file into plain dictionaries.

    Raises:
        TOMLError: If the file is missing, unreadable or malformed
    """
    try:
        raw = Path(file_path).read_bytes()
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e

    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e


def write_toml(file_path: Path, data: dict[str, Any]) -> None:
    """
    Serialize data with tomlkit, creating parent directories.

    Raises:
        TOMLError: If the data cannot be serialized or the file written
    """
    file_path = Path(file_path)
    try:
        content = tomlkit.dumps(data)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
    except (OSError, TypeError, ValueError) as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e


def _constraint_comment(field: ConfigField) -> str | None:
    parts = [
        f"{label}: {value}"
        for label, value in (("min", field.min), ("max", field.max), ("choices", field.choices))
        if value is not None
    ]
    return f"Constraints: {', '.join(parts)}" if parts else None


def _section_table(
    schema: dict[str, ConfigField], config_data: dict[str, Any]
) -> tomlkit.items.Table:
    table = tomlkit.table()

    for name, field in schema.items():
        if field.description:
            table.add(tomlkit.comment(field.description))
        constraints = _constraint_comment(field)
        if constraints:
            table.add(tomlkit.comment(constraints))

        value = config_data.get(name, field.default)
        if value is None:
            # TOML has no null
            table.add(tomlkit.comment(f"{name} = "))
        else:
            table.add(name, value)
        table.add(tomlkit.nl())

    return table


def generate_toml_from_schema(
    section_name: str, schema: dict[str, ConfigField], config_data: dict[str, Any]
) -> str:
    """Render one commented table; values missing from config_data use defaults."""
    doc = tomlkit.document()
    doc.add(tomlkit.comment(f"Configuration for {section_name}"))
    doc.add(tomlkit.nl())
    doc.add(section_name, _section_table(schema, config_data))
    return tomlkit.dumps(doc)


def generate_project_toml(
    project_name: str, sections: dict[str, dict[str, ConfigField]]
) -> str:
    """
    Generate a complete commented keel.toml skeleton.

    Args:
        project_name: Value for [project].name
        sections: Mapping of section name -> schema

    Returns:
        TOML string
    """
    doc = tomlkit.document()
    doc.add(tomlkit.comment("Keel project configuration"))
    project = tomlkit.table()
    project.add("name", project_name)
    doc.add("project", project)

    for section_name, schema in sections.items():
        doc.add(tomlkit.nl())
        doc.add(tomlkit.comment(f"Configuration for {section_name}"))
        doc.add(section_name, _section_table(schema, {}))

    return tomlkit.dumps(doc)
