"""Shared fixtures: an isolated mpkg host under tmp_path and an archive builder."""
import io
import os
import sys
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# tests/ -> repository root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from mpkg.config import Config
from mpkg.fetch import CacheFetcher
from mpkg.index import PackageIndex
from mpkg.transaction import Console, Orchestrator


def pkginfo_text(fields: Dict[str, object]) -> str:
    return "".join(f"{k}={v}\n" for k, v in fields.items())


def build_archive(
    dest: Path,
    files: Dict[str, Union[str, bytes]],
    pkginfo: Optional[Dict[str, object]] = None,
    dirs: Optional[List[str]] = None,
    symlinks: Optional[Dict[str, str]] = None,
    hardlinks: Optional[Dict[str, str]] = None,
    mode: int = 0o644,
    mtime: int = 1_000_000,
    pkginfo_name: str = "PKGINFO",
) -> Path:
    """Create a .tar.xz package archive.

    Args:
        dest: Archive path
        files: rel_path -> content
        pkginfo: PKGINFO fields (None = no metadata entry)
        dirs: Directory entries to add first
        symlinks: rel_path -> link target
        hardlinks: rel_path -> archive member it links to
        mode: Mode for regular files
        mtime: Modification time for every entry
        pkginfo_name: Entry name of the metadata file
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(dest, "w:xz") as tar:
        if pkginfo is not None:
            data = pkginfo_text(pkginfo).encode()
            info = tarfile.TarInfo(pkginfo_name)
            info.size = len(data)
            info.mtime = mtime
            tar.addfile(info, io.BytesIO(data))
        for d in dirs or []:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            info.mtime = mtime
            tar.addfile(info)
        for rel, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(rel)
            info.size = len(data)
            info.mode = mode
            info.mtime = mtime
            tar.addfile(info, io.BytesIO(data))
        for rel, target in (symlinks or {}).items():
            info = tarfile.TarInfo(rel)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            info.mtime = mtime
            tar.addfile(info)
        for rel, target in (hardlinks or {}).items():
            info = tarfile.TarInfo(rel)
            info.type = tarfile.LNKTYPE
            info.linkname = target
            info.mtime = mtime
            tar.addfile(info)
    return dest


class CountingFetcher(CacheFetcher):
    """Cache fetcher that remembers what was requested."""

    def __init__(self, config: Config):
        super().__init__(config)
        self.requested: List[str] = []

    def fetch(self, name: str) -> Path:
        self.requested.append(name)
        return super().fetch(name)


@pytest.fixture
def config(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return Config(
        db_path=tmp_path / "db",
        cache_path=tmp_path / "cache",
        repo_url="https://repo.example.org/mpkg/",
        root=root,
        log_file=tmp_path / "log" / "mpkg.log",
    )


@pytest.fixture
def root_real(config):
    return Path(os.path.realpath(config.root))


@pytest.fixture
def index(config):
    config.ensure_dirs()
    return PackageIndex(config)


@pytest.fixture
def fetcher(config):
    return CountingFetcher(config)


@pytest.fixture
def orchestrator(config, index, fetcher):
    return Orchestrator(config, fetcher, index=index, console=Console(quiet=True))


@pytest.fixture
def make_package(config):
    """Build <cache>/<name>.tar.xz for ``name``."""

    def _make(name, files, version="1.0", depends="", size=0, pkginfo=True, **kwargs):
        fields = None
        if pkginfo:
            fields = {
                "name": name,
                "version": version,
                "arch": "x86_64",
                "description": f"{name} package",
                "depends": depends,
                "size": size,
            }
        return build_archive(config.archive_path(name), files, pkginfo=fields, **kwargs)

    return _make
