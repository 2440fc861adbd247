"""
Package fetchers: turn a package name into a local archive path.

- CacheFetcher: offline; uses whatever is already in the cache directory
- HttpFetcher: downloads <repo_url>/<name>.tar.xz into the cache, and
  syncs <repo_url>/repo.db into the index directory

Downloads stream into a ``.part`` file and are renamed into place, so a
failed transfer never leaves a truncated archive behind.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import httpx

from mpkg.config import Config
from mpkg.descriptor import validate_name
from mpkg.errors import FetchFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class PackageFetcher(Protocol):
    """fetch(name) -> archive path, or raise FetchFailure."""

    def fetch(self, name: str) -> Path:
        ...


class CacheFetcher:
    """Resolve archives from the local cache only."""

    def __init__(self, config: Config):
        self.config = config

    def fetch(self, name: str) -> Path:
        archive = self.config.archive_path(validate_name(name))
        if not archive.is_file():
            raise FetchFailure(f"No cached archive for {name} at {archive}")
        return archive


class HttpFetcher:
    """Download archives and the catalog from the configured repository."""

    def __init__(self, config: Config, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client

    def _url(self, filename: str) -> str:
        return f"{self.config.repo_url.rstrip('/')}/{filename}"

    def _download(self, url: str, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dest.with_name(dest.name + ".part")
        client = self._client or httpx.Client(follow_redirects=True, timeout=DEFAULT_TIMEOUT)
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(tmp_path, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            tmp_path.replace(dest)
        except (httpx.HTTPError, OSError) as e:
            tmp_path.unlink(missing_ok=True)
            raise FetchFailure(f"Download of {url} failed: {e}") from e
        finally:
            if self._client is None:
                client.close()
        return dest

    def fetch(self, name: str) -> Path:
        name = validate_name(name)
        logger.info("Grabbing %s", name)
        return self._download(self._url(f"{name}.tar.xz"), self.config.archive_path(name))

    def sync(self) -> Path:
        """Refresh the repository descriptor cache (repo.db)."""
        path = self._download(self._url("repo.db"), self.config.repo_db)
        logger.info("Repository synced to %s", path)
        return path
