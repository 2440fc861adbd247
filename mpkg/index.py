"""
index.py - Installed Package Index.

The index directory is the system of record for what is installed:

    <db>/<name>.installed   installed record (key=value lines)
    <db>/<name>.files       file manifest (one absolute path per line)
    <db>/.lock              advisory lock held for a whole transaction

Writes go to a temporary file in the same directory followed by
os.replace(), so a reader never observes a half-written record or
manifest. Reads of absent entries return None rather than raising.
"""
from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from mpkg.config import Config
from mpkg.descriptor import (
    InstalledRecord,
    format_record,
    read_record,
    validate_name,
)
from mpkg.errors import IndexLocked, IOFailure

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".installed"
MANIFEST_SUFFIX = ".files"

FileManifest = List[str]


def _atomic_write(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via temp file + rename."""
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise IOFailure(f"Failed to write {path}: {e}") from e


class PackageIndex:
    """Records and manifests keyed by package name."""

    def __init__(self, config: Config):
        self.config = config
        self.db_path = Path(config.db_path)

    # --- paths ---

    def record_path(self, name: str) -> Path:
        return self.db_path / f"{validate_name(name)}{RECORD_SUFFIX}"

    def manifest_path(self, name: str) -> Path:
        return self.db_path / f"{validate_name(name)}{MANIFEST_SUFFIX}"

    # --- records ---

    def is_installed(self, name: str) -> bool:
        """Presence predicate: an installed record exists for ``name``."""
        return self.record_path(name).is_file()

    def read_record(self, name: str) -> Optional[InstalledRecord]:
        return read_record(self.record_path(name))

    def write_record(self, name: str, record: InstalledRecord) -> Path:
        path = self.record_path(name)
        _atomic_write(path, format_record(record))
        logger.debug("Wrote record %s", path)
        return path

    def delete_record(self, name: str) -> bool:
        return self._delete(self.record_path(name))

    # --- manifests ---

    def read_manifest(self, name: str) -> Optional[FileManifest]:
        path = self.manifest_path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise IOFailure(f"Cannot read manifest {path}: {e}") from e
        return [line for line in text.splitlines() if line]

    def write_manifest(self, name: str, paths: FileManifest) -> Path:
        path = self.manifest_path(name)
        body = "".join(f"{p}\n" for p in paths)
        _atomic_write(path, body)
        logger.debug("Wrote manifest %s (%d paths)", path, len(paths))
        return path

    def delete_manifest(self, name: str) -> bool:
        return self._delete(self.manifest_path(name))

    # --- enumeration ---

    def _names(self, suffix: str) -> List[str]:
        if not self.db_path.is_dir():
            return []
        names = []
        for entry in self.db_path.iterdir():
            if entry.name.endswith(suffix) and not entry.name.startswith("."):
                names.append(entry.name[: -len(suffix)])
        return sorted(names)

    def installed_names(self) -> List[str]:
        return self._names(RECORD_SUFFIX)

    def manifest_names(self) -> List[str]:
        return self._names(MANIFEST_SUFFIX)

    def records(self) -> Iterator[InstalledRecord]:
        for name in self.installed_names():
            record = self.read_record(name)
            if record is not None:
                yield record

    def manifests(self) -> Dict[str, FileManifest]:
        result = {}
        for name in self.manifest_names():
            manifest = self.read_manifest(name)
            if manifest is not None:
                result[name] = manifest
        return result

    def ghosts(self) -> List[str]:
        """Manifests with no installed record (ghost installs)."""
        installed = set(self.installed_names())
        return [n for n in self.manifest_names() if n not in installed]

    # --- locking ---

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold an exclusive advisory lock on the index directory.

        Raises:
            IndexLocked: another process holds the lock
        """
        self.db_path.mkdir(parents=True, exist_ok=True)
        with open(self.config.lock_path, "a") as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise IndexLocked(
                    f"Index {self.db_path} is locked by another mpkg process"
                ) from e
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def _delete(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise IOFailure(f"Failed to delete {path}: {e}") from e
