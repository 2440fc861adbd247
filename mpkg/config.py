"""
config.py - Immutable configuration for mpkg.

A single Config value is built at startup (from /etc/mpkg.conf, the
MPKG_CONFIG override, and command line flags) and handed to every
component constructor. Nothing in the package reads paths from module
globals.

Config file format:
    # comment
    PKG_DB_PATH = /var/db/mpkg
    PKG_CACHE_PATH = /var/cache/mpkg
    PKG_REPO_URL = https://example.org/repo/
    PKG_ROOT = /
    PKG_LOG_FILE = /var/log/mpkg.log
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

from mpkg.errors import IOFailure

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("/etc/mpkg.conf")
DEFAULT_DB_PATH = Path("/var/db/mpkg")
DEFAULT_CACHE_PATH = Path("/var/cache/mpkg")
DEFAULT_REPO_URL = "https://loxsete.github.io/mpkg-server/"
DEFAULT_LOG_FILE = Path("/var/log/mpkg.log")

# Config file key -> Config field
CONFIG_KEYS = {
    "PKG_DB_PATH": "db_path",
    "PKG_CACHE_PATH": "cache_path",
    "PKG_REPO_URL": "repo_url",
    "PKG_ROOT": "root",
    "PKG_LOG_FILE": "log_file",
}


@dataclass(frozen=True)
class Config:
    """Paths and endpoints used by one mpkg invocation.

    Attributes:
        db_path: Directory holding records, manifests and repo.db
        cache_path: Directory archives are fetched into
        repo_url: Base URL of the remote repository
        root: Filesystem root archives are extracted under
        log_file: JSONL action log
        self_package: Package name of mpkg itself (self-update)
        protected: Packages `clean --aggressive` never removes
    """
    db_path: Path = DEFAULT_DB_PATH
    cache_path: Path = DEFAULT_CACHE_PATH
    repo_url: str = DEFAULT_REPO_URL
    root: Path = Path("/")
    log_file: Path = DEFAULT_LOG_FILE
    self_package: str = "mpkg"
    protected: Tuple[str, ...] = field(default=("mpkg", "busybox"))

    @property
    def repo_db(self) -> Path:
        return self.db_path / "repo.db"

    @property
    def lock_path(self) -> Path:
        return self.db_path / ".lock"

    @property
    def journal_dir(self) -> Path:
        return self.db_path / ".journal"

    def archive_path(self, name: str) -> Path:
        """Cache location of the archive for ``name``."""
        return self.cache_path / f"{name}.tar.xz"

    def with_root(self, root: Path) -> "Config":
        return replace(self, root=Path(root))

    def ensure_dirs(self) -> None:
        """Create the index, cache and journal directories."""
        try:
            for d in (self.db_path, self.cache_path, self.journal_dir):
                d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create mpkg directories: {e}") from e


def parse_config(text: str) -> Dict[str, str]:
    """Parse ``KEY = value`` lines into a dict.

    Comments and blank lines are skipped, whitespace around key and value is
    trimmed, and the value is everything after the first ``=``. Lines
    without a key or value are ignored.
    """
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if not sep or not key or not value:
            continue
        values[key] = value
    return values


def load_config(path: Optional[Path] = None) -> Config:
    """Build the Config for this invocation.

    Priority:
    1) explicit ``path``
    2) $MPKG_CONFIG
    3) /etc/mpkg.conf

    A missing file yields the defaults.
    """
    if path is None:
        env_path = os.getenv("MPKG_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_FILE
    path = Path(path)

    if not path.is_file():
        logger.debug("No config file at %s, using defaults", path)
        return Config()

    try:
        values = parse_config(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise IOFailure(f"Cannot read config {path}: {e}") from e

    kwargs = {}
    for key, value in values.items():
        attr = CONFIG_KEYS.get(key)
        if attr is None:
            logger.debug("Ignoring unknown config key %s", key)
            continue
        kwargs[attr] = value if attr == "repo_url" else Path(value)
    return Config(**kwargs)
