"""
Tests for plugin sources.

This test suite covers:
1. Declarations from [[plugins]] tables
2. Local resolution
3. GitHub releases and PyPI files through a mocked HTTP transport
4. Git tags and clones with git operations stubbed out
5. Resolution caching
"""

import tempfile
from pathlib import Path

import httpx
import pytest

from keel.errors import ConfigurationError, ResolutionError
from keel.plugin import git_ops
from keel.plugin.download import ArtifactDownloader
from keel.plugin.sources import (
    GitHubPluginSource,
    GitPluginSource,
    LocalPluginSource,
    PluginSourceConfig,
    PyPIPluginSource,
)

PLUGIN_BODY = b"from keel.plugin import Plugin\n"


@pytest.fixture
def cache_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class FakeIndex:
    """Serves canned JSON and file bodies and records requests."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        url = str(request.url)
        if url not in self.routes:
            return httpx.Response(404, json={"message": "Not Found"})
        body = self.routes[url]
        if isinstance(body, bytes):
            return httpx.Response(200, content=body)
        return httpx.Response(200, json=body)

    def paths(self):
        return [request.url.path for request in self.requests]


def client_for(index):
    return httpx.Client(transport=httpx.MockTransport(index))


class TestPluginSourceConfig:
    """Test building declarations."""

    def test_from_mapping(self):
        """Known fields should be read and baseDir accepted."""
        config = PluginSourceConfig.from_mapping(
            {"type": "local", "name": "x", "path": "p.py", "baseDir": "/base", "extra": 1}
        )
        assert config.base_dir == "/base"
        assert config.version == "latest"

    def test_default_base_dir(self):
        """The declaring project's directory should be used when baseDir is absent."""
        config = PluginSourceConfig.from_mapping(
            {"type": "local", "name": "x"}, base_dir=Path("/proj")
        )
        assert config.base_dir == "/proj"

    def test_missing_required(self):
        """type and name are required."""
        with pytest.raises(ConfigurationError, match="missing 'name'"):
            PluginSourceConfig.from_mapping({"type": "local"})

    def test_non_string_field(self):
        """Fields must be strings."""
        with pytest.raises(ConfigurationError, match="must be a string"):
            PluginSourceConfig.from_mapping({"type": "pypi", "name": "x", "version": 1})


class TestLocalPluginSource:
    """Test local resolution."""

    def test_resolves_relative_to_base_dir(self, cache_dir):
        """Relative paths should resolve against base_dir."""
        (cache_dir / "plugin.py").write_bytes(PLUGIN_BODY)
        source = LocalPluginSource()
        config = PluginSourceConfig("local", "x", path="plugin.py", base_dir=str(cache_dir))

        artifact = source.resolve(config)

        assert artifact.path == (cache_dir / "plugin.py").resolve()
        assert artifact.key == ("local", "x", "latest")

    def test_missing_path(self, cache_dir):
        """A missing file should raise ResolutionError."""
        source = LocalPluginSource(cache_dir)
        with pytest.raises(ResolutionError, match="Local plugin not found"):
            source.resolve(PluginSourceConfig("local", "x", path="nope.py"))

    def test_path_required(self):
        """A local declaration without path should fail."""
        with pytest.raises(ResolutionError, match="path is required"):
            LocalPluginSource().resolve(PluginSourceConfig("local", "x"))

    def test_cached_resolution(self, cache_dir):
        """The same declaration should resolve to the identical artifact."""
        (cache_dir / "plugin.py").write_bytes(PLUGIN_BODY)
        source = LocalPluginSource(cache_dir)
        config = PluginSourceConfig("local", "x", path="plugin.py")

        first = source.resolve(config)
        (cache_dir / "plugin.py").unlink()
        assert source.resolve(config) is first


class TestGitHubPluginSource:
    """Test GitHub release resolution."""

    API = "https://api.github.com/repos/acme/tools"
    ASSET_URL = "https://github.com/acme/tools/releases/download/lint-1.2.0/lint.py"

    def source(self, index, cache_dir, token=None):
        client = client_for(index)
        downloader = ArtifactDownloader(cache_dir, client, github_token=token)
        return GitHubPluginSource(client, downloader, token=token)

    def test_pinned_version(self, cache_dir):
        """A pinned version should fetch the release tagged name-version."""
        index = FakeIndex(
            {
                f"{self.API}/releases/tags/lint-1.2.0": {
                    "tag_name": "lint-1.2.0",
                    "assets": [
                        {"name": "lint.py", "browser_download_url": self.ASSET_URL},
                        {"name": "README.md", "browser_download_url": "unused"},
                    ],
                },
                self.ASSET_URL: PLUGIN_BODY,
            }
        )
        config = PluginSourceConfig(
            "github", "lint", "1.2.0", repo="acme/tools", asset="*.py"
        )

        artifact = self.source(index, cache_dir, token="secret").resolve(config)

        assert artifact.path.name == "lint.py"
        assert artifact.path.read_bytes() == PLUGIN_BODY
        assert index.requests[0].headers["Authorization"] == "Bearer secret"
        assert index.requests[1].headers["Authorization"] == "Bearer secret"

    def test_latest_release(self, cache_dir):
        """latest should pick the highest version among matching releases."""
        url = "https://github.com/acme/tools/releases/download/lint-1.10.0/lint.py"
        index = FakeIndex(
            {
                f"{self.API}/releases": [
                    {"name": "lint-1.2.0", "assets": []},
                    {"tag_name": "lint-1.10.0", "assets": [
                        {"name": "lint.py", "browser_download_url": url},
                    ]},
                    {"name": "other-9.0.0", "assets": []},
                ],
                url: PLUGIN_BODY,
            }
        )
        config = PluginSourceConfig("github", "lint", repo="acme/tools", asset="lint.py")

        artifact = self.source(index, cache_dir).resolve(config)

        assert artifact.path.read_bytes() == PLUGIN_BODY
        assert "Authorization" not in index.requests[0].headers

    def test_no_matching_release(self, cache_dir):
        """latest without a matching release should fail."""
        index = FakeIndex({f"{self.API}/releases": [{"name": "other-1.0.0"}]})
        config = PluginSourceConfig("github", "lint", repo="acme/tools", asset="*.py")

        with pytest.raises(ResolutionError, match="No releases starting with 'lint'"):
            self.source(index, cache_dir).resolve(config)

    def test_missing_release(self, cache_dir):
        """A 404 from the API should become a ResolutionError."""
        config = PluginSourceConfig(
            "github", "lint", "9.9.9", repo="acme/tools", asset="*.py"
        )
        with pytest.raises(ResolutionError, match="status 404"):
            self.source(FakeIndex({}), cache_dir).resolve(config)

    def test_ambiguous_asset(self, cache_dir):
        """Several matching assets should be rejected."""
        index = FakeIndex(
            {
                f"{self.API}/releases/tags/lint-1.0.0": {
                    "tag_name": "lint-1.0.0",
                    "assets": [
                        {"name": "a.py", "browser_download_url": "x"},
                        {"name": "b.py", "browser_download_url": "y"},
                    ],
                }
            }
        )
        config = PluginSourceConfig("github", "lint", "1.0.0", repo="acme/tools", asset="*.py")
        with pytest.raises(ResolutionError, match="Several files match"):
            self.source(index, cache_dir).resolve(config)

    def test_repo_required(self, cache_dir):
        """A github declaration without repo should fail."""
        with pytest.raises(ResolutionError, match="repository is required"):
            self.source(FakeIndex({}), cache_dir).resolve(
                PluginSourceConfig("github", "lint", asset="*.py")
            )


class TestPyPIPluginSource:
    """Test package index resolution."""

    WHEEL_URL = "https://files.example/lint_tools-1.0.0-py3-none-any.whl"

    def test_pinned_version_downloads_once(self, cache_dir):
        """The wheel should be downloaded once and then served from the cache."""
        index = FakeIndex(
            {
                "https://pypi.org/pypi/lint-tools/1.0.0/json": {
                    "info": {"version": "1.0.0"},
                    "urls": [
                        {"filename": "lint_tools-1.0.0.tar.gz", "url": "unused"},
                        {
                            "filename": "lint_tools-1.0.0-py3-none-any.whl",
                            "url": self.WHEEL_URL,
                        },
                    ],
                },
                self.WHEEL_URL: b"PK",
            }
        )
        client = client_for(index)
        downloader = ArtifactDownloader(cache_dir, client)
        config = PluginSourceConfig("pypi", "lint-tools", "1.0.0")

        first = PyPIPluginSource(client, downloader).resolve(config)
        second = PyPIPluginSource(client, downloader).resolve(config)

        assert first.path == second.path
        assert first.path.name == "lint_tools-1.0.0-py3-none-any.whl"
        assert index.paths().count("/lint_tools-1.0.0-py3-none-any.whl") == 1

    def test_latest_and_custom_repo(self, cache_dir):
        """latest should use the project endpoint of the configured index."""
        url = "https://mirror.example/files/tool.py"
        index = FakeIndex(
            {
                "https://mirror.example/pypi/tool/json": {
                    "info": {"version": "2.0.0"},
                    "urls": [{"filename": "tool.py", "url": url}],
                },
                url: PLUGIN_BODY,
            }
        )
        client = client_for(index)
        config = PluginSourceConfig(
            "pypi", "tool", repo="https://mirror.example/pypi/", pattern="*.py"
        )

        artifact = PyPIPluginSource(client, ArtifactDownloader(cache_dir, client)).resolve(
            config
        )

        assert artifact.path.read_bytes() == PLUGIN_BODY

    def test_no_matching_file(self, cache_dir):
        """An index entry without wheels should fail."""
        index = FakeIndex(
            {
                "https://pypi.org/pypi/tool/json": {
                    "info": {"version": "1.0.0"},
                    "urls": [{"filename": "tool-1.0.0.tar.gz", "url": "x"}],
                }
            }
        )
        client = client_for(index)
        source = PyPIPluginSource(client, ArtifactDownloader(cache_dir, client))
        with pytest.raises(ResolutionError, match="No file matching"):
            source.resolve(PluginSourceConfig("pypi", "tool"))


class TestArtifactDownloader:
    """Test the cached downloader."""

    def test_failed_download_leaves_nothing(self, cache_dir):
        """A failed transfer should raise and leave no partial file."""
        client = client_for(FakeIndex({}))
        downloader = ArtifactDownloader(cache_dir, client)

        with pytest.raises(ResolutionError, match="Failed to download"):
            downloader.download("https://files.example/missing.py")

        target = downloader.target_for("https://files.example/missing.py")
        assert list(target.parent.iterdir()) == []

    def test_cache_disabled_refetches(self, cache_dir):
        """Disabling the cache should download again."""
        url = "https://files.example/tool.py"
        index = FakeIndex({url: PLUGIN_BODY})
        downloader = ArtifactDownloader(cache_dir, client_for(index), cache_enabled=False)

        downloader.download(url)
        downloader.download(url)

        assert len(index.requests) == 2


class TestGitPluginSource:
    """Test git resolution with git calls stubbed."""

    @pytest.fixture
    def clones(self, monkeypatch):
        calls = []

        def fake_clone(repo_url, target_dir, tag=None):
            calls.append((repo_url, tag))
            target_dir.mkdir(parents=True)
            (target_dir / "plugin.py").write_bytes(PLUGIN_BODY)

        monkeypatch.setattr(git_ops, "clone_repository", fake_clone)
        monkeypatch.setattr(
            git_ops,
            "list_remote_tags",
            lambda repo_url: ["v1.0.0", "v1.4.2", "v1.10.0-rc", "nightly"],
        )
        return calls

    def test_latest_tag(self, cache_dir, clones):
        """latest should clone the highest v-prefixed semantic version tag."""
        source = GitPluginSource(cache_dir)
        config = PluginSourceConfig(
            "git", "tools", repo="https://git.example/tools.git", path="plugin.py"
        )

        artifact = source.resolve(config)

        assert clones == [("https://git.example/tools.git", "v1.4.2")]
        assert artifact.path.name == "plugin.py"
        assert artifact.path.is_relative_to(cache_dir / "git")

    def test_existing_clone_reused(self, cache_dir, clones):
        """An existing clone should be reused across sources when caching is on."""
        config = PluginSourceConfig("git", "tools", "v1.0.0", repo="r")
        GitPluginSource(cache_dir).resolve(config)
        GitPluginSource(cache_dir).resolve(config)
        assert clones == [("r", "v1.0.0")]

    def test_cache_disabled_reclones(self, cache_dir, clones):
        """With caching off an existing clone should be replaced."""
        config = PluginSourceConfig("git", "tools", "v1.0.0", repo="r")
        GitPluginSource(cache_dir, cache_enabled=False).resolve(config)
        GitPluginSource(cache_dir, cache_enabled=False).resolve(config)
        assert len(clones) == 2

    def test_missing_path_in_clone(self, cache_dir, clones):
        """A path absent from the clone should fail."""
        config = PluginSourceConfig("git", "tools", "v1.0.0", repo="r", path="nope.py")
        with pytest.raises(ResolutionError, match="not found"):
            GitPluginSource(cache_dir).resolve(config)

    def test_no_tags(self, cache_dir, monkeypatch):
        """latest with no matching tag should fail."""
        monkeypatch.setattr(git_ops, "list_remote_tags", lambda repo_url: ["nightly"])
        with pytest.raises(ResolutionError, match="No tags starting with 'v'"):
            GitPluginSource(cache_dir).resolve(PluginSourceConfig("git", "tools", repo="r"))

    def test_git_error_wrapped(self, cache_dir, monkeypatch):
        """Git failures should surface as ResolutionError."""

        def broken(repo_url):
            raise git_ops.GitError("Failed to list remote tags of r: denied")

        monkeypatch.setattr(git_ops, "list_remote_tags", broken)
        with pytest.raises(ResolutionError, match="denied"):
            GitPluginSource(cache_dir).resolve(PluginSourceConfig("git", "tools", repo="r"))


class TestLatestVersion:
    """Test semantic version selection."""

    def test_numeric_ordering(self):
        """Versions should compare numerically, not lexically."""
        assert git_ops.latest_version(["v1.9.0", "v1.10.0", "v1.2.3"]) == "v1.10.0"

    def test_prefix_separators(self):
        """A dash or v between prefix and version should be tolerated."""
        names = ["lint-1.0.0", "lintv2.0.0", "linter-9.0.0"]
        assert git_ops.latest_version(names, "lint") == "lintv2.0.0"

    def test_nothing_matches(self):
        """latest_version should return None without candidates."""
        assert git_ops.latest_version(["main", "v1.0"], "v") is None
