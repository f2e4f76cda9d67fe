"""
Git Operations.

This module wraps the git command line for the git plugin source.

Key features:
- Shallow clone of a repository at a tag
- Tag listing for remote repositories
- Latest semantic-version tag selection
"""

import logging
import re
import subprocess
from collections.abc import Iterable
from pathlib import Path

from keel.errors import KeelError

logger = logging.getLogger(__name__)

_SEMVER = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


class GitError(KeelError):
    """Raised when a git command fails."""

    pass


def _git(args: list[str], cwd: Path | None = None, action: str = "run git") -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git command not found. Please install git.") from e
    except OSError as e:
        raise GitError(f"Failed to {action}: {e}") from e

    if result.returncode != 0:
        raise GitError(f"Failed to {action}: {(result.stderr or result.stdout).strip()}")

    return result.stdout


def clone_repository(repo_url: str, target_dir: Path, tag: str | None = None) -> None:
    """
    Clone a repository, shallowly when a tag is given.

    Args:
        repo_url: Git repository URL (or local path)
        target_dir: Target directory for the clone
        tag: Optional tag to check out

    Raises:
        GitError: If the clone fails
    """
    target_dir.parent.mkdir(parents=True, exist_ok=True)

    args = ["clone"]
    if tag:
        args.extend(["--branch", tag, "--depth", "1"])
    args.extend([repo_url, str(target_dir)])

    logger.info("Cloning %s%s into %s", repo_url, f" at {tag}" if tag else "", target_dir)
    _git(args, action=f"clone repository {repo_url}")


def list_remote_tags(repo_url: str) -> list[str]:
    """
    List tags of a remote repository without cloning it.

    Raises:
        GitError: If listing fails
    """
    output = _git(
        ["ls-remote", "--tags", "--refs", repo_url],
        action=f"list remote tags of {repo_url}",
    )
    tags = []
    for line in output.splitlines():
        _, _, ref = line.partition("\t")
        if ref.startswith("refs/tags/"):
            tags.append(ref[len("refs/tags/"):])
    return tags


def is_valid_semver(version: str) -> bool:
    return bool(_SEMVER.match(version))


def parse_semver(version: str) -> tuple[int, int, int]:
    """
    Parse a semantic version string ("1.2.3") into a tuple.

    Raises:
        ValueError: If the string is not a plain semantic version
    """
    match = _SEMVER.match(version)
    if not match:
        raise ValueError(f"Not a semantic version: {version}")
    major, minor, patch = match.groups()
    return (int(major), int(minor), int(patch))


def latest_version(names: Iterable[str], prefix: str = "v") -> str | None:
    """
    Pick the name with the highest semantic version after a prefix.

    A single "-" or "v" separator between prefix and version is tolerated,
    so "tool-1.2.0" and "toolv1.2.0" both match prefix "tool".

    Args:
        names: Candidate tag or release names
        prefix: Required name prefix

    Returns:
        The winning name, or None when nothing matches
    """
    candidates = []
    for name in names:
        if not name.startswith(prefix):
            continue
        version = name[len(prefix):]
        if version[:1] in ("-", "v") and not is_valid_semver(version):
            version = version[1:]
        if is_valid_semver(version):
            candidates.append((parse_semver(version), name))

    if not candidates:
        return None

    return max(candidates)[1]
