"""
Cached artifact downloader.

Downloads land in ``<cache_dir>/downloads/<url digest>/<file name>`` so the
file keeps its extension (.py, .zip, .whl) for the loader. An existing file is
reused when caching is enabled.
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from keel.errors import ResolutionError

logger = logging.getLogger(__name__)


class ArtifactDownloader:
    """Streams URLs into the cache directory."""

    def __init__(
        self,
        cache_dir: Path,
        client: httpx.Client,
        cache_enabled: bool = True,
        github_token: str | None = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.client = client
        self.cache_enabled = cache_enabled
        self.github_token = github_token

    def target_for(self, url: str, filename: str | None = None) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        name = filename or Path(unquote(urlparse(url).path)).name or "artifact"
        return self.cache_dir / "downloads" / digest / name

    def download(self, url: str, filename: str | None = None) -> Path:
        """
        Download a URL, or return the cached copy.

        Args:
            url: Artifact URL
            filename: File name to store under (defaults to the URL's last segment)

        Returns:
            Path to the downloaded file

        Raises:
            ResolutionError: If the transfer fails
        """
        target = self.target_for(url, filename)
        if self.cache_enabled and target.is_file():
            logger.debug("Download skipped, cached: %s", target)
            return target

        headers = {}
        host = urlparse(url).hostname or ""
        if self.github_token and host.endswith("github.com"):
            headers["Authorization"] = f"Bearer {self.github_token}"

        target.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s", url)

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".part-")
        try:
            with os.fdopen(fd, "wb") as f:
                with self.client.stream(
                    "GET", url, headers=headers, follow_redirects=True
                ) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            os.replace(tmp_name, target)
        except httpx.HTTPError as e:
            raise ResolutionError(f"Failed to download {url}: {e}") from e
        except OSError as e:
            raise ResolutionError(f"Failed to store download {url}: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info("Downloaded %s to %s", url, target)
        return target
