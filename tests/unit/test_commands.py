"""
Tests for shell command execution and CommandTask.
"""

import tempfile
from pathlib import Path

import pytest

from keel.core.environment import Environment
from keel.core.task import CommandTask
from keel.project import ProjectContext
from keel.system.commands import (
    CommandError,
    CommandExecutor,
    CommandResult,
    ShellCommandExecutor,
)


class TestShellCommandExecutor:
    """Test running commands through sh -c."""

    def test_output_is_trimmed(self):
        """Successful commands should return trimmed output."""
        result = ShellCommandExecutor().execute("echo '  hello  '")
        assert result.exit_code == 0
        assert result.output == "hello"

    def test_working_dir_and_env(self):
        """Commands should run in the working directory with injected variables."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = ShellCommandExecutor().execute(
                'pwd; echo "$KEEL_TEST_VALUE"',
                working_dir=tmpdir,
                env_vars={"KEEL_TEST_VALUE": "42"},
            )
            lines = result.output.splitlines()
            assert Path(lines[0]).resolve() == Path(tmpdir).resolve()
            assert lines[1] == "42"

    def test_non_zero_exit(self):
        """A non-zero exit should raise CommandError with code and output."""
        with pytest.raises(CommandError, match="exit code 3") as excinfo:
            ShellCommandExecutor().execute("echo broken; exit 3")
        assert excinfo.value.exit_code == 3
        assert excinfo.value.output == "broken"

    def test_stderr_merged_by_default(self):
        """stderr should be merged into the output when redirection is on."""
        result = ShellCommandExecutor().execute("echo out; echo err 1>&2")
        assert "err" in result.output

    def test_stderr_separate(self):
        """stderr should be kept apart when redirection is off."""
        result = ShellCommandExecutor(redirect_error_stream=False).execute(
            "echo out; echo err 1>&2"
        )
        assert result.output == "out"
        assert result.error_output == "err"

    def test_timeout(self):
        """A command running past the timeout should raise CommandError."""
        with pytest.raises(CommandError, match="timed out"):
            ShellCommandExecutor(timeout=0.2).execute("sleep 5")


class FakeExecutor(CommandExecutor):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def execute(self, command, working_dir=None, env_vars=None):
        self.calls.append((command, working_dir, env_vars))
        if self.fail:
            raise CommandError("Command failed with exit code 1", 1, "bad things")
        return CommandResult(command, 0, "done")


class TestCommandTask:
    """Test the shell-backed task."""

    def test_runs_in_project_dir_with_quoted_args(self):
        """CommandTask should quote arguments and run in the sub-target's directory."""
        executor = FakeExecutor()
        environment = Environment({}, {CommandExecutor: executor})
        project = ProjectContext("demo", Path("/work/demo"))

        result = CommandTask("compile", "build", "make").execute(
            environment, project, ["all", "two words"]
        )

        assert result.is_success
        assert executor.calls == [("make all 'two words'", Path("/work/demo"), {})]

    def test_passes_environment_variables(self):
        """The run's variables should reach the command service."""
        executor = FakeExecutor()
        environment = Environment({"RELEASE_CHANNEL": "beta"}, {CommandExecutor: executor})
        project = ProjectContext("demo", Path("/work/demo"))

        CommandTask("publish", "release", "./publish.sh").execute(
            environment.scoped(lambda kind, text: None), project, []
        )

        assert executor.calls[0][2] == {"RELEASE_CHANNEL": "beta"}

    def test_variables_reach_the_shell(self):
        """A real shell command should see the environment's variables."""
        with tempfile.TemporaryDirectory() as tmpdir:
            outputs = []
            environment = Environment(
                {"KEEL_TASK_GREETING": "hello"},
                {CommandExecutor: ShellCommandExecutor(timeout=10)},
            ).scoped(lambda kind, text: outputs.append(text))
            project = ProjectContext("demo", Path(tmpdir))

            result = CommandTask("greet", "build", 'echo "$KEEL_TASK_GREETING"').execute(
                environment, project, []
            )

            assert result.is_success
            assert outputs == ["hello"]

    def test_failure_carries_output(self):
        """A failing command should become a FAILURE with the command output."""
        environment = Environment({}, {CommandExecutor: FakeExecutor(fail=True)})
        project = ProjectContext("demo", Path("."))

        result = CommandTask("compile", "build", "make").execute(environment, project, [])

        assert not result.is_success
        assert result.error_detail == "bad things"

    def test_service_lookup_by_subclass(self):
        """The environment should find a service registered under its concrete type."""
        executor = FakeExecutor()
        environment = Environment({}, {FakeExecutor: executor})
        assert environment.service(CommandExecutor) is executor
