"""
extract.py - Extraction Engine.

Materializes an archive onto the configured filesystem root and captures
the File Manifest of regular files it wrote.

Archives are untrusted. Before anything is written, plan_archive() walks
the entry list and refuses:
- entries with '..' components
- entries whose resolved location falls outside the root
- entries nested beneath a symlink declared earlier in the same archive
- hard links whose target is not a regular file of the same archive

The plan's manifest is what the Conflict Detector checks, so ownership
is decided before extraction, never after.

Extraction never changes the process working directory. Every path is
registered with the UndoJournal before it is touched, so the caller can
roll the whole extraction back.
"""
from __future__ import annotations

import logging
import os
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import List, Optional, Set

from mpkg.errors import ExtractionFailure
from mpkg.index import FileManifest, PackageIndex
from mpkg.journal import UndoJournal

logger = logging.getLogger(__name__)

METADATA_NAMES = ("PKGINFO", "FILES")


def normalize_entry_name(name: str) -> str:
    """Strip leading './' and '/' so the entry is relative to the root."""
    while name.startswith("./"):
        name = name[2:]
    name = name.lstrip("/")
    if name in (".", ""):
        return ""
    return name.rstrip("/")


def is_metadata_entry(name: str) -> bool:
    return normalize_entry_name(name) in METADATA_NAMES


@dataclass
class PlannedEntry:
    """One archive member and where it will land."""
    member: tarfile.TarInfo
    rel: str
    target: str

    @property
    def owned(self) -> bool:
        """True for entries that belong in the File Manifest."""
        return self.member.isreg() or self.member.islnk()


@dataclass
class ArchivePlan:
    """Validated extraction plan for one archive."""
    archive: Path
    root: Path
    entries: List[PlannedEntry] = field(default_factory=list)

    @property
    def manifest(self) -> FileManifest:
        seen: Set[str] = set()
        paths = []
        for entry in self.entries:
            if entry.owned and entry.target not in seen:
                seen.add(entry.target)
                paths.append(entry.target)
        return paths

    @property
    def claimed(self) -> FileManifest:
        """Every non-directory target, symlinks included.

        Writing any of these replaces whatever is on disk at that path, so
        all of them are checked for ownership, not just the manifest.
        """
        seen: Set[str] = set()
        paths = []
        for entry in self.entries:
            if not entry.member.isdir() and entry.target not in seen:
                seen.add(entry.target)
                paths.append(entry.target)
        return paths


def _resolve_target(root_real: str, rel: str) -> str:
    """Absolute on-disk path for ``rel``, with existing symlinks resolved.

    The parent is resolved, the final component is not, so an entry that
    replaces a symlink replaces the link itself.
    """
    parts = PurePosixPath(rel).parts
    parent = os.path.realpath(os.path.join(root_real, *parts[:-1]))
    target = os.path.join(parent, parts[-1])
    if os.path.commonpath([root_real, target]) != root_real:
        raise ExtractionFailure(f"Entry '{rel}' resolves outside {root_real}")
    return target


def plan_archive(archive: Path, root: Path) -> ArchivePlan:
    """List and validate the entries of ``archive`` without writing.

    Raises:
        ExtractionFailure: archive unreadable or an entry is unsafe
    """
    root_real = os.path.realpath(root)
    plan = ArchivePlan(archive=Path(archive), root=Path(root_real))
    symlinks: Set[str] = set()
    regular: Set[str] = set()

    try:
        with tarfile.open(archive, "r:*") as tar:
            members = tar.getmembers()
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ExtractionFailure(f"Cannot open archive {archive}: {e}") from e

    for member in members:
        if is_metadata_entry(member.name):
            continue
        rel = normalize_entry_name(member.name)
        if not rel:
            continue
        parts = PurePosixPath(rel).parts
        if ".." in parts:
            raise ExtractionFailure(f"Unsafe entry '{member.name}': parent reference")
        for i in range(1, len(parts)):
            if "/".join(parts[:i]) in symlinks:
                raise ExtractionFailure(
                    f"Unsafe entry '{member.name}': nested under archive symlink"
                )
        if member.islnk():
            link = normalize_entry_name(member.linkname)
            if link not in regular:
                raise ExtractionFailure(
                    f"Unsafe hard link '{member.name}' -> '{member.linkname}'"
                )
        if member.issym():
            symlinks.add(rel)
        elif member.isreg():
            regular.add(rel)

        target = _resolve_target(root_real, rel)
        plan.entries.append(PlannedEntry(member=member, rel=rel, target=target))

    return plan


class ExtractionEngine:
    """Writes archive entries under the configured root."""

    def __init__(self, index: PackageIndex):
        self.index = index
        self.root = Path(index.config.root)

    def plan(self, archive: Path) -> ArchivePlan:
        return plan_archive(archive, self.root)

    def extract(
        self,
        name: str,
        archive: Path,
        journal: UndoJournal,
        plan: Optional[ArchivePlan] = None,
    ) -> FileManifest:
        """Extract ``archive`` and persist the resulting manifest.

        Args:
            name: Owning package
            archive: Archive path
            journal: Journal that records every path touched
            plan: Plan from plan(); computed if omitted

        Returns:
            The File Manifest (already written to the index)

        Raises:
            ExtractionFailure: open, header, or write failure
        """
        if plan is None:
            plan = self.plan(archive)
        root_real = str(plan.root)
        # A re-opened archive yields fresh TarInfo objects; match on header offset.
        by_offset = {e.member.offset: e for e in plan.entries}

        try:
            with tarfile.open(archive, "r:*") as tar:
                for member in tar.getmembers():
                    entry = by_offset.get(member.offset)
                    if entry is None or entry.member.name != member.name:
                        continue
                    self._extract_entry(tar, member, entry, root_real, journal)
        except ExtractionFailure:
            raise
        except (tarfile.TarError, OSError, EOFError) as e:
            raise ExtractionFailure(f"Extraction of {archive} failed: {e}") from e

        manifest = plan.manifest
        journal.track(self.index.manifest_path(name))
        self.index.write_manifest(name, manifest)
        return manifest

    def _extract_entry(
        self,
        tar: tarfile.TarFile,
        member: tarfile.TarInfo,
        entry: PlannedEntry,
        root_real: str,
        journal: UndoJournal,
    ) -> None:
        target = Path(entry.target)

        if member.isdir():
            if target.is_dir():
                # Existing directories keep their mode and owner.
                return
            journal.track_dir(target)
        else:
            journal.track(target)
            if os.path.lexists(target) and not target.is_dir():
                target.unlink()

        logger.debug("  %s", entry.rel)
        changes = {"name": entry.rel}
        if member.islnk():
            changes["linkname"] = normalize_entry_name(member.linkname)
        tar.extract(
            member.replace(**changes, deep=False),
            path=root_real,
            set_attrs=True,
            filter=tarfile.fully_trusted_filter,
        )
