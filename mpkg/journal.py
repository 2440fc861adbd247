"""
journal.py - Undo journal for filesystem-mutating transactions.

Every path a transaction is about to write is registered first:

1. An existing regular file or symlink is copied into the journal directory
2. A path that does not exist yet is remembered as created
3. Parent directories that do not exist yet are remembered as created

On rollback the created paths are removed, the backups are moved back
into place, and the created directories are removed deepest first (only
if empty). On commit the backups are discarded.

Usage:
    with UndoJournal(config.journal_dir, "foo") as journal:
        journal.track(target)
        write(target)
        journal.commit()
    # no commit -> rollback on exit
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from mpkg.errors import IOFailure

logger = logging.getLogger(__name__)


class RollbackError(IOFailure):
    """Raised when rollback fails (host may be in an inconsistent state)."""
    pass


@dataclass
class JournalEntry:
    """A tracked path."""
    path: Path
    backup_path: Optional[Path] = None  # None -> path was created


class UndoJournal:
    """Records what a transaction changed so it can be undone."""

    def __init__(self, journal_root: Path, label: str):
        self.journal_root = Path(journal_root)
        self.label = label

        self._dir: Optional[Path] = None
        self._entries: Dict[str, JournalEntry] = {}
        self._order: List[str] = []
        self._created_dirs: List[Path] = []
        self._committed = False
        self._rolled_back = False

    def __enter__(self) -> "UndoJournal":
        self.journal_root.mkdir(parents=True, exist_ok=True)
        self._dir = Path(tempfile.mkdtemp(prefix=f"{self.label}-", dir=self.journal_root))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if not self._committed:
                self.rollback()
        finally:
            self._cleanup()
        return False

    @property
    def tracked(self) -> List[Path]:
        return [self._entries[k].path for k in self._order]

    def track(self, path: Path) -> None:
        """Register ``path`` before it is written. Idempotent per path."""
        path = Path(path)
        key = str(path)
        if key in self._entries:
            return

        self._track_parents(path.parent)

        entry = JournalEntry(path=path)
        if path.is_symlink() or path.is_file():
            backup = self._dir / f"{len(self._order)}_{path.name}"
            try:
                if path.is_symlink():
                    os.symlink(os.readlink(path), backup)
                else:
                    shutil.copy2(path, backup)
            except OSError as e:
                raise IOFailure(f"Cannot back up {path}: {e}") from e
            entry.backup_path = backup
        self._entries[key] = entry
        self._order.append(key)

    def track_dir(self, directory: Path) -> None:
        """Register a directory (and missing parents) about to be created."""
        self._track_parents(Path(directory))

    def _track_parents(self, directory: Path) -> None:
        missing = []
        current = directory
        while not os.path.lexists(current):
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        for d in reversed(missing):
            if d not in self._created_dirs:
                self._created_dirs.append(d)

    def commit(self) -> None:
        """Keep every change; backups are discarded on exit."""
        if self._rolled_back:
            raise RollbackError("Journal already rolled back")
        self._committed = True

    def rollback(self) -> None:
        """Undo every tracked change, newest first."""
        if self._rolled_back or self._committed:
            return
        errors = []
        for key in reversed(self._order):
            entry = self._entries[key]
            try:
                if os.path.lexists(entry.path) and not entry.path.is_dir():
                    entry.path.unlink()
                if entry.backup_path is not None:
                    shutil.move(str(entry.backup_path), str(entry.path))
            except OSError as e:
                errors.append(f"{entry.path}: {e}")

        for d in sorted(self._created_dirs, key=lambda p: len(p.parts), reverse=True):
            try:
                d.rmdir()
            except OSError:
                logger.debug("Leaving non-empty directory %s", d)

        self._rolled_back = True
        if errors:
            raise RollbackError(
                "Rollback incomplete - host may be inconsistent: " + "; ".join(errors)
            )
        logger.info("Rolled back %d paths for %s", len(self._order), self.label)

    def _cleanup(self) -> None:
        if self._dir and self._dir.exists():
            shutil.rmtree(self._dir, ignore_errors=True)
