"""
Tests for the built-in commits plugin.
"""

import tempfile
from pathlib import Path

import pytest

from keel.core.environment import Environment
from keel.core.registry import TaskRegistry
from keel.plugins.commits import (
    REJECTION_MESSAGE,
    SUCCESS_MESSAGE,
    CommitsPlugin,
    VerifyCommitMessageTask,
    find_root_dir,
    verify_commit_message,
)
from keel.project import ProjectContext


class TestVerifyCommitMessage:
    """Test the Conventional Commits check."""

    @pytest.mark.parametrize(
        "message",
        [
            "feat: add parser",
            "fix(core): handle empty input",
            "refactor(api)!: drop v1 endpoints",
            "feat(parser)!: add ability to parse arrays",
            "  docs: trim whitespace  \n",
        ],
    )
    def test_accepts(self, message):
        """Conventional messages should be accepted."""
        result = verify_commit_message(message)
        assert result.is_success
        assert result.message == SUCCESS_MESSAGE

    @pytest.mark.parametrize(
        "message",
        [
            "added stuff",
            "feat:missing space",
            "feature: unknown type",
            "fix(scope with space): nope",
            "ci: run on tags\n\nLonger body text",
            "",
        ],
    )
    def test_rejects(self, message):
        """Non-conventional messages should be rejected with the format hint."""
        result = verify_commit_message(message)
        assert not result.is_success
        assert result.message == REJECTION_MESSAGE
        assert len(REJECTION_MESSAGE.splitlines()) == 3


class TestVerifyCommitMessageTask:
    """Test the commit-msg hook task."""

    def run_task(self, root, args):
        project = ProjectContext("demo", root)
        return VerifyCommitMessageTask().execute(Environment({}), project, args)

    def test_reads_file_relative_to_git_root(self):
        """The message file path should be resolved from the repository root."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / ".git").mkdir()
            (root / ".git" / "COMMIT_EDITMSG").write_text("feat: hook works\n")
            nested = root / "services" / "api"
            nested.mkdir(parents=True)

            result = self.run_task(nested, [".git/COMMIT_EDITMSG"])

            assert result.is_success

    def test_missing_argument(self):
        """The task should fail without a message file argument."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = self.run_task(Path(tmpdir), [])
            assert result.message == "No commit message file path provided"

    def test_unreadable_file(self):
        """The task should fail when the message file cannot be read."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = self.run_task(Path(tmpdir), ["missing.txt"])
            assert not result.is_success
            assert result.message.startswith("Failed to read commit message")

    def test_bad_message(self):
        """The task should fail for a non-conventional message."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "MSG").write_text("wip")
            result = self.run_task(root, ["MSG"])
            assert result.message == REJECTION_MESSAGE

    def test_find_root_dir_fallback(self):
        """find_root_dir should return the start directory when there is no .git."""
        with tempfile.TemporaryDirectory() as tmpdir:
            start = Path(tmpdir)
            assert find_root_dir(start) in (start, *start.parents)


class TestCommitsPlugin:
    """Test plugin registration."""

    def test_registers_on_commit_msg(self):
        """The plugin should register its task on the commit-msg phase."""
        registry = TaskRegistry()
        plugin = CommitsPlugin()
        with registry.transaction(plugin):
            plugin.register(registry)

        entry = registry.get("verify-commit-message")
        assert entry.phase_id == "commit-msg"
        assert entry.owner == "commits"

    def test_enabled_flag(self):
        """The task should only apply when [commits].enabled is true."""
        registry = TaskRegistry()
        plugin = CommitsPlugin()
        with registry.transaction(plugin):
            plugin.register(registry)

        entry = registry.get("verify-commit-message")
        assert entry.applies_to({}) is True
        assert entry.applies_to({"commits": {"enabled": True}}) is True
        assert entry.applies_to({"commits": {"enabled": False}}) is False
