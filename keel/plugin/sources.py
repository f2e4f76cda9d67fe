"""
Plugin Sources.

This module resolves [[plugins]] declarations into local artifacts.

Key features:
- PluginSourceConfig built from keel.toml tables
- PluginSource strategy base with an idempotent, locked resolution cache
- local: files or directories relative to the project
- github: release assets through the GitHub API
- pypi: distribution files through the package index JSON API
- git: shallow clones at a tag
"""

import fnmatch
import logging
import re
import shutil
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

import httpx

from keel.config.settings import EngineSettings
from keel.errors import ConfigurationError, ResolutionError
from keel.plugin import git_ops
from keel.plugin.download import ArtifactDownloader

logger = logging.getLogger(__name__)

LATEST = "latest"

_FIELDS = ("type", "name", "version", "repo", "asset", "path", "pattern", "base_dir")


@dataclass(frozen=True)
class PluginSourceConfig:
    """
    Declaration of a plugin to load.

    Attributes:
        type: Source type ("local", "github", "pypi", "git")
        name: Plugin name
        version: Version to resolve, or "latest"
        repo: Repository (owner/name for github, URL for git and pypi)
        asset: Release asset pattern (github)
        path: File or directory path (local), or path inside a clone (git)
        pattern: Release/tag prefix (github, git) or file pattern (pypi)
        base_dir: Directory that relative local paths are resolved against
    """

    type: str
    name: str
    version: str = LATEST
    repo: str | None = None
    asset: str | None = None
    path: str | None = None
    pattern: str | None = None
    base_dir: str | None = None

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], base_dir: str | Path | None = None
    ) -> "PluginSourceConfig":
        """
        Build a config from a [[plugins]] table.

        Both ``baseDir`` and ``base_dir`` are accepted. ``base_dir`` is used
        when the table does not set one.

        Raises:
            ConfigurationError: If required fields are missing or not strings
        """
        values = dict(data)
        if "baseDir" in values:
            values.setdefault("base_dir", values.pop("baseDir"))

        unknown = sorted(set(values) - set(_FIELDS))
        if unknown:
            logger.debug("Ignoring unknown plugin fields: %s", ", ".join(unknown))

        for required in ("type", "name"):
            if not values.get(required):
                raise ConfigurationError(
                    f"Plugin declaration is missing '{required}': {dict(data)}"
                )

        kwargs = {}
        for name in _FIELDS:
            value = values.get(name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ConfigurationError(
                    f"Plugin field '{name}' must be a string, got {type(value).__name__}"
                )
            kwargs[name] = value

        if "base_dir" not in kwargs and base_dir is not None:
            kwargs["base_dir"] = str(base_dir)

        return cls(**kwargs)


@dataclass(frozen=True)
class ResolvedArtifact:
    """
    A plugin artifact available on the local filesystem.

    Attributes:
        path: File or directory holding the plugin
        source_type: Type of the source that resolved it
        name: Plugin name
        version: Requested version
    """

    path: Path
    source_type: str
    name: str
    version: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source_type, self.name, self.version)


class PluginSource(ABC):
    """
    Strategy for resolving one kind of plugin declaration.

    Resolution is cached per (type, name, version): resolving the same
    declaration again returns the identical artifact without fetching.
    """

    type: ClassVar[str] = ""

    def __init__(self):
        self._cache: dict[tuple[str, str, str], ResolvedArtifact] = {}
        self._lock = threading.Lock()

    def can_handle(self, source_type: str) -> bool:
        return source_type == self.type

    def resolve(self, config: PluginSourceConfig) -> ResolvedArtifact:
        """
        Resolve a declaration to a local artifact.

        Raises:
            ResolutionError: If the artifact cannot be located or fetched
        """
        key = (self.type, config.name, config.version)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Resolved %s from cache: %s", key, cached.path)
                return cached

            try:
                path = self._fetch(config)
            except ResolutionError:
                raise
            except Exception as e:
                raise ResolutionError(
                    f"Failed to resolve {self.type} plugin {config.name}: {e}"
                ) from e

            artifact = ResolvedArtifact(Path(path), self.type, config.name, config.version)
            self._cache[key] = artifact

        logger.info("Resolved %s plugin %s %s: %s", self.type, config.name, config.version, path)
        return artifact

    @abstractmethod
    def _fetch(self, config: PluginSourceConfig) -> Path:
        """Locate or download the artifact; may raise any exception."""


class LocalPluginSource(PluginSource):
    """Plugins on the local filesystem."""

    type = "local"

    def __init__(self, default_base_dir: str | Path = "."):
        super().__init__()
        self.default_base_dir = Path(default_base_dir)

    def _fetch(self, config: PluginSourceConfig) -> Path:
        if not config.path:
            raise ResolutionError("Local plugin path is required but not provided")

        base_dir = Path(config.base_dir) if config.base_dir else self.default_base_dir
        local_path = (base_dir / config.path).resolve()
        logger.debug("Resolving local plugin from path: %s", local_path)

        if not local_path.exists():
            raise ResolutionError(f"Local plugin not found at: {local_path}")
        return local_path


def _single_match(names: list[str], pattern: str, where: str) -> int:
    matches = [i for i, name in enumerate(names) if fnmatch.fnmatch(name, pattern)]
    if not matches:
        raise ResolutionError(
            f"No file matching '{pattern}' in {where} (available: {', '.join(names) or 'none'})"
        )
    if len(matches) > 1:
        raise ResolutionError(
            f"Several files match '{pattern}' in {where}: "
            + ", ".join(names[i] for i in matches)
        )
    return matches[0]


def _get_json(client: httpx.Client, url: str, headers: dict[str, str] | None = None) -> Any:
    try:
        response = client.get(url, headers=headers, follow_redirects=True)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        raise ResolutionError(
            f"Request to {url} failed with status {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise ResolutionError(f"Request to {url} failed: {e}") from e
    except ValueError as e:
        raise ResolutionError(f"Invalid JSON from {url}: {e}") from e


class GitHubPluginSource(PluginSource):
    """Plugins published as GitHub release assets."""

    type = "github"

    def __init__(
        self,
        client: httpx.Client,
        downloader: ArtifactDownloader,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        user_agent: str = "keel",
    ):
        super().__init__()
        self.client = client
        self.downloader = downloader
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self.user_agent,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        else:
            logger.debug("Using unauthenticated GitHub API request (rate limits may apply)")
        return headers

    def _release(self, config: PluginSourceConfig) -> dict[str, Any]:
        repo = config.repo
        if config.version == LATEST:
            releases = _get_json(
                self.client, f"{self.api_url}/repos/{repo}/releases", self._headers()
            )
            by_name = {}
            for release in releases:
                name = release.get("name") or release.get("tag_name")
                if name:
                    by_name.setdefault(name, release)

            prefix = config.pattern or config.name
            chosen = git_ops.latest_version(by_name, prefix)
            if chosen is None:
                raise ResolutionError(
                    f"No releases starting with '{prefix}' found in {repo}"
                )
            logger.info("Resolved latest release of %s: %s", repo, chosen)
            return by_name[chosen]

        tag = f"{config.name}-{config.version}"
        return _get_json(
            self.client, f"{self.api_url}/repos/{repo}/releases/tags/{tag}", self._headers()
        )

    def _fetch(self, config: PluginSourceConfig) -> Path:
        if not config.repo:
            raise ResolutionError("GitHub repository is required but not provided")
        if not config.asset:
            raise ResolutionError("GitHub asset name is required but not provided")

        release = self._release(config)
        assets = release.get("assets", [])
        names = [asset.get("name", "") for asset in assets]
        label = release.get("tag_name") or release.get("name") or "release"
        asset = assets[_single_match(names, config.asset, f"{config.repo} {label}")]

        return self.downloader.download(asset["browser_download_url"], asset["name"])


class PyPIPluginSource(PluginSource):
    """Plugins published to a package index with a JSON API."""

    type = "pypi"

    DEFAULT_REPO = "https://pypi.org/pypi"
    DEFAULT_PATTERN = "*.whl"

    def __init__(self, client: httpx.Client, downloader: ArtifactDownloader):
        super().__init__()
        self.client = client
        self.downloader = downloader

    def _fetch(self, config: PluginSourceConfig) -> Path:
        repo = (config.repo or self.DEFAULT_REPO).rstrip("/")
        if config.version == LATEST:
            url = f"{repo}/{config.name}/json"
        else:
            url = f"{repo}/{config.name}/{config.version}/json"

        data = _get_json(self.client, url)
        files = data.get("urls", [])
        version = data.get("info", {}).get("version", config.version)
        names = [item.get("filename", "") for item in files]
        chosen = files[
            _single_match(
                names, config.pattern or self.DEFAULT_PATTERN, f"{config.name} {version}"
            )
        ]

        return self.downloader.download(chosen["url"], chosen["filename"])


class GitPluginSource(PluginSource):
    """Plugins cloned from a git repository at a tag."""

    type = "git"

    DEFAULT_PREFIX = "v"

    def __init__(self, cache_dir: Path, cache_enabled: bool = True):
        super().__init__()
        self.cache_dir = Path(cache_dir)
        self.cache_enabled = cache_enabled

    def _fetch(self, config: PluginSourceConfig) -> Path:
        if not config.repo:
            raise ResolutionError("Git repository is required but not provided")

        if config.version == LATEST:
            prefix = config.pattern or self.DEFAULT_PREFIX
            tag = git_ops.latest_version(git_ops.list_remote_tags(config.repo), prefix)
            if tag is None:
                raise ResolutionError(
                    f"No tags starting with '{prefix}' found in {config.repo}"
                )
        else:
            tag = config.version

        safe = re.sub(r"[^A-Za-z0-9._-]", "_", f"{config.name}/{tag}")
        target = self.cache_dir / "git" / safe
        if target.exists() and not self.cache_enabled:
            shutil.rmtree(target)
        if not target.exists():
            git_ops.clone_repository(config.repo, target, tag)
        else:
            logger.debug("Clone skipped, cached: %s", target)

        artifact = target / config.path if config.path else target
        if not artifact.exists():
            raise ResolutionError(f"Path '{config.path}' not found in {config.repo} at {tag}")
        return artifact


def default_sources(
    settings: EngineSettings,
    project_dir: str | Path,
    client: httpx.Client | None = None,
) -> list[PluginSource]:
    """
    Create the standard set of sources.

    Args:
        settings: Engine settings (cache, HTTP and token options)
        project_dir: Default base directory for local plugins
        client: HTTP client to share (created from settings when omitted)
    """
    if client is None:
        client = httpx.Client(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )
    downloader = ArtifactDownloader(
        settings.cache_dir,
        client,
        cache_enabled=settings.cache_enabled,
        github_token=settings.github_token,
    )
    return [
        LocalPluginSource(project_dir),
        GitHubPluginSource(
            client,
            downloader,
            token=settings.github_token,
            user_agent=settings.user_agent,
        ),
        PyPIPluginSource(client, downloader),
        GitPluginSource(settings.cache_dir, cache_enabled=settings.cache_enabled),
    ]
