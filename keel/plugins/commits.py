"""
Built-in commits plugin.

Registers ``verify-commit-message`` on the commit-msg hook phase. Git calls
the hook with the path of the message file, which is passed through as the
first run argument:

    keel run commit-msg .git/COMMIT_EDITMSG

Disable it per project with:

    [commits]
    enabled = false
"""

import logging
import re
from pathlib import Path

from keel.config.schema import ConfigField
from keel.core.task import Task, TaskResult
from keel.plugin.base import Plugin

logger = logging.getLogger(__name__)

CONVENTIONAL_COMMIT = re.compile(
    r"^(feat|fix|chore|docs|style|refactor|perf|test|build|ci|revert)"
    r"(\([a-zA-Z0-9_-]+\))?(!)?: .+"
)

REJECTION_MESSAGE = (
    "Commit message does not follow Conventional Commits.\n"
    "Expected format: <type>(<scope>)!: <description>\n"
    "Example: feat(parser)!: add ability to parse arrays"
)

SUCCESS_MESSAGE = "Commit message verified successfully"


def verify_commit_message(text: str) -> TaskResult:
    """Check a commit message against the Conventional Commits format."""
    if CONVENTIONAL_COMMIT.fullmatch(text.strip()):
        return TaskResult.success(SUCCESS_MESSAGE)
    return TaskResult.failure(REJECTION_MESSAGE)


def find_root_dir(start: Path) -> Path:
    """Return the nearest directory at or above start holding .git, else start."""
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    return start


class VerifyCommitMessageTask(Task):
    id = "verify-commit-message"
    phase_id = "commit-msg"
    description = "Verify that the commit message follows Conventional Commits"

    def execute(self, environment, project, args):
        if not args:
            return TaskResult.failure("No commit message file path provided")

        message_file = find_root_dir(project.dir) / args[0]
        try:
            message = message_file.read_text(encoding="utf-8")
        except OSError as e:
            return TaskResult.failure(f"Failed to read commit message: {e}")

        logger.debug("Verifying commit message: %s", message.strip())
        return verify_commit_message(message)


class CommitsPlugin(Plugin):
    id = "commits"
    context_key = "commits"
    config_schema = {
        "enabled": ConfigField(
            type_=bool,
            default=True,
            description="Verify commit messages in the commit-msg hook",
        ),
    }

    def register(self, registry):
        registry.add(VerifyCommitMessageTask(), lambda config: config.enabled)


def create_plugin() -> CommitsPlugin:
    return CommitsPlugin()
