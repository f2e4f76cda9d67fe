"""
Keel system services available to tasks.
"""

from keel.system.commands import (
    CommandError,
    CommandExecutor,
    CommandResult,
    ShellCommandExecutor,
)

__all__ = [
    "CommandError",
    "CommandExecutor",
    "CommandResult",
    "ShellCommandExecutor",
]
