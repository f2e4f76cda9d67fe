"""
Shell Command Execution.

This module provides the command service that tasks reach through
``environment.service(CommandExecutor)``.

Key features:
- CommandExecutor interface for substitutable command services
- ShellCommandExecutor running ``sh -c <command>``
- Working directory and environment variable injection
- Configurable timeout and stderr redirection
- Non-zero exit codes and timeouts raised as CommandError
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from keel.errors import KeelError

logger = logging.getLogger(__name__)


class CommandError(KeelError):
    """Raised when a command exits non-zero, times out or cannot be started."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


@dataclass(frozen=True)
class CommandResult:
    """
    Result of a finished command.

    Attributes:
        command: The command string that was run
        exit_code: Process exit code
        output: Captured stdout (with stderr merged when redirection is on)
        error_output: Captured stderr when redirection is off
    """

    command: str
    exit_code: int
    output: str
    error_output: str = ""


class CommandExecutor(ABC):
    """Service interface for running shell commands."""

    @abstractmethod
    def execute(
        self,
        command: str,
        working_dir: str | Path | None = None,
        env_vars: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Run a command.

        Raises:
            CommandError: If the command fails
        """


class ShellCommandExecutor(CommandExecutor):
    """Runs commands with ``sh -c`` and a timeout."""

    def __init__(self, timeout: float = 600.0, redirect_error_stream: bool = True):
        self.timeout = timeout
        self.redirect_error_stream = redirect_error_stream

    def execute(
        self,
        command: str,
        working_dir: str | Path | None = None,
        env_vars: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Run a command in a working directory.

        Args:
            command: Shell command string
            working_dir: Directory to run in (defaults to the current one)
            env_vars: Additional environment variables to inject

        Returns:
            CommandResult with trimmed output

        Raises:
            CommandError: If the command exits non-zero, times out or cannot start
        """
        env = os.environ.copy()
        if env_vars:
            env.update(env_vars)

        try:
            result = subprocess.run(
                ["sh", "-c", command],
                cwd=working_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.redirect_error_stream else subprocess.PIPE,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"Command timed out after {self.timeout} seconds: {command}"
            ) from e
        except OSError as e:
            raise CommandError(f"Failed to execute command {command}: {e}") from e

        output = (result.stdout or "").strip()
        error_output = (result.stderr or "").strip()
        logger.debug(
            "Executed command: %s\nExit code: %d\nResult:\n%s",
            command,
            result.returncode,
            output,
        )

        if result.returncode != 0:
            detail = output if not error_output else f"{output}\n{error_output}".strip()
            raise CommandError(
                f"Command failed with exit code {result.returncode}\nResult:\n{detail}",
                exit_code=result.returncode,
                output=detail,
            )

        return CommandResult(command, result.returncode, output, error_output)
