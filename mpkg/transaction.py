"""
transaction.py - Transaction Orchestrator.

Sequences the components into the install, update, remove and ghost
protocols:

    FETCHING -> PARSING -> VERIFYING_DEPS -> CHECKING_CONFLICTS
             -> EXTRACTING -> RECORDING -> DONE        (FAILED from any step)

BINDING CONSTRAINTS:
- Dependencies are present before any file touches the filesystem
- No last-write-wins: a path owned by another package = FAIL
- Every file written is listed in exactly one manifest
- First failure aborts the pipeline; extraction and recording are undone
  through the UndoJournal so a failed install leaves no orphan files
- One transaction at a time per index (advisory lock)

Commands are a closed set of dataclasses dispatched by run():

    orch = Orchestrator(config, HttpFetcher(config))
    results = orch.run(Install(("foo", "bar")))
"""
from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, TextIO, Tuple, Union

from mpkg.checks import ConflictDetector, DependencyReport, DependencyVerifier
from mpkg.config import Config
from mpkg.descriptor import (
    InstalledRecord,
    PackageDescriptor,
    named,
    read_package_info,
    validate_name,
)
from mpkg.errors import (
    FetchFailure,
    MissingDependency,
    MpkgError,
    NotInCatalog,
    NotInstalled,
    ParseFailure,
)
from mpkg.extract import ExtractionEngine
from mpkg.fetch import PackageFetcher
from mpkg.index import FileManifest, PackageIndex
from mpkg.journal import UndoJournal
from mpkg.ledger import ActionLog
from mpkg.repository import RepositoryCache

logger = logging.getLogger(__name__)


class TxState(str, Enum):
    """Per-package transaction states."""
    FETCHING = "fetching"
    PARSING = "parsing"
    VERIFYING_DEPS = "verifying_deps"
    CHECKING_CONFLICTS = "checking_conflicts"
    EXTRACTING = "extracting"
    RECORDING = "recording"
    DONE = "done"
    FAILED = "failed"


# === Commands ===

@dataclass(frozen=True)
class Install:
    names: Tuple[str, ...]


@dataclass(frozen=True)
class Update:
    name: str


@dataclass(frozen=True)
class Sync:
    pass


@dataclass(frozen=True)
class Remove:
    name: str


@dataclass(frozen=True)
class GhostInstall:
    name: str


@dataclass(frozen=True)
class SelfUpdate:
    pass


@dataclass(frozen=True)
class Clean:
    """Remove every installed package except the protected ones."""
    pass


Command = Union[Install, Update, Sync, Remove, GhostInstall, SelfUpdate, Clean]


# === Results ===

@dataclass
class Transaction:
    """State tracking for one package transaction."""
    action: str
    name: str
    history: List[TxState] = field(default_factory=list)

    @property
    def state(self) -> Optional[TxState]:
        return self.history[-1] if self.history else None

    def advance(self, state: TxState) -> None:
        if self.state in (TxState.DONE, TxState.FAILED):
            raise RuntimeError(f"Transaction {self.action} {self.name} already finished")
        self.history.append(state)

    def fail(self, error: MpkgError) -> None:
        if error.state is None:
            error.state = self.state
        self.history.append(TxState.FAILED)


@dataclass
class TransactionResult:
    """Outcome of one transaction."""
    action: str
    name: str
    success: bool
    state: Optional[TxState] = None
    message: str = ""
    cause: str = ""
    error: Optional[MpkgError] = None
    descriptor: Optional[PackageDescriptor] = None
    manifest: FileManifest = field(default_factory=list)
    dependencies: Optional[DependencyReport] = None
    removed: int = 0
    failed: int = 0
    ghost: bool = False
    noop: bool = False
    history: List[TxState] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "success" if self.success else "failed"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "action": self.action,
            "name": self.name,
            "status": self.status,
            "state": self.state.value if self.state else None,
            "message": self.message,
            "cause": self.cause,
            "package": self.descriptor.to_dict() if self.descriptor else None,
            "files": len(self.manifest),
            "removed": self.removed,
            "failed": self.failed,
            "ghost": self.ghost,
            "noop": self.noop,
        }


class Console:
    """Progress output on stderr in ``[tag] message`` form."""

    def __init__(self, stream: Optional[TextIO] = None, quiet: bool = False):
        self.stream = stream
        self.quiet = quiet
        self.lines: List[str] = []

    def say(self, tag: str, message: str) -> None:
        line = f"[{tag}] {message}"
        self.lines.append(line)
        if not self.quiet:
            print(line, file=self.stream or sys.stderr)


class Orchestrator:
    """The only writer of the installed package index."""

    def __init__(
        self,
        config: Config,
        fetcher: PackageFetcher,
        index: Optional[PackageIndex] = None,
        action_log: Optional[ActionLog] = None,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.index = index or PackageIndex(config)
        self.action_log = action_log or ActionLog(config.log_file)
        self.console = console or Console()
        self.repository = RepositoryCache(config.repo_db)
        self.deps = DependencyVerifier(self.index)
        self.conflicts = ConflictDetector(self.index)
        self.extractor = ExtractionEngine(self.index)
        self._lock_depth = 0

    # === Dispatch ===

    def run(self, command: Command) -> List[TransactionResult]:
        """Execute ``command``; failures come back as failed results."""
        if isinstance(command, Install):
            return self.install_many(command.names)
        if isinstance(command, Clean):
            return self.clean()
        if isinstance(command, Update):
            return [self._capture("update", command.name, self.update)]
        if isinstance(command, Remove):
            return [self._capture("remove", command.name, self.remove)]
        if isinstance(command, GhostInstall):
            return [self._capture("ghost", command.name, self.ghost_install)]
        if isinstance(command, Sync):
            return [self._capture("sync", "repository", lambda _: self.sync())]
        if isinstance(command, SelfUpdate):
            return [self._capture("self-update", self.config.self_package,
                                  lambda _: self.self_update())]
        raise TypeError(f"Unknown command: {command!r}")

    def _capture(
        self, action: str, name: str, fn: Callable[[str], TransactionResult]
    ) -> TransactionResult:
        try:
            return fn(name)
        except MpkgError as e:
            return TransactionResult(
                action=action,
                name=name,
                success=False,
                state=e.state,
                message=f"{action} {name} failed",
                cause=e.message or str(e),
                error=e,
            )

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if self._lock_depth:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return
        self.config.ensure_dirs()
        with self.index.lock():
            self._lock_depth = 1
            try:
                yield
            finally:
                self._lock_depth = 0

    @contextmanager
    def _transaction(self, action: str, name: str) -> Iterator[Transaction]:
        """Run one transaction under the lock and record its outcome."""
        tx = Transaction(action=action, name=name)
        try:
            with self._locked():
                yield tx
        except MpkgError as e:
            tx.fail(e)
            self.console.say(action, f"FAILED: {e}")
            self.action_log.record(action, name, success=False, reason=str(e))
            raise
        self.action_log.record(action, name, success=True)

    # === Install pipeline ===

    def _pipeline(self, tx: Transaction, name: str, record: bool) -> TransactionResult:
        tag = tx.action

        tx.advance(TxState.FETCHING)
        archive = self.fetcher.fetch(name)

        tx.advance(TxState.PARSING)
        info = read_package_info(archive)
        if info is None:
            self.console.say(tag, f"No PKGINFO in {archive.name}, continuing with name only")
        elif info.name and info.name != name:
            raise ParseFailure(
                f"Archive for '{name}' describes package '{info.name}'"
            )
        descriptor = named(info, name)
        if info is not None:
            self.console.say(
                tag,
                f"name: {descriptor.name} version: {descriptor.version} "
                f"arch: {descriptor.arch} description: {descriptor.description}",
            )

        report = None
        if descriptor.dependencies:
            tx.advance(TxState.VERIFYING_DEPS)
            self.console.say(tag, f"depends: {descriptor.depends}")
            report = self.deps.check(descriptor.depends)
            for line in report.lines():
                self.console.say(tag, line)
            if report.missing:
                raise MissingDependency(report.missing, report.satisfied)
        if descriptor.size:
            self.console.say(tag, f"size: {descriptor.size} bytes")

        tx.advance(TxState.CHECKING_CONFLICTS)
        plan = self.extractor.plan(archive)
        self.conflicts.check(name, plan.claimed)

        tx.advance(TxState.EXTRACTING)
        self.console.say(tag, f"Unpacking {name}")
        with UndoJournal(self.config.journal_dir, name) as journal:
            manifest = self.extractor.extract(name, archive, journal, plan)
            if record:
                tx.advance(TxState.RECORDING)
                journal.track(self.index.record_path(name))
                self.index.write_record(name, InstalledRecord(descriptor=descriptor))
            journal.commit()

        tx.advance(TxState.DONE)
        return TransactionResult(
            action=tx.action,
            name=name,
            success=True,
            state=tx.state,
            descriptor=descriptor,
            manifest=manifest,
            dependencies=report,
            ghost=not record,
            history=list(tx.history),
        )

    def install(self, name: str) -> TransactionResult:
        """Install ``name``; a no-op if it is already installed.

        Raises:
            MpkgError: any pipeline step failed (err.state says which)
        """
        with self._transaction("install", name) as tx:
            validate_name(name)
            if self.index.is_installed(name):
                self.console.say("install", f"{name} is already installed")
                tx.advance(TxState.DONE)
                return TransactionResult(
                    action="install", name=name, success=True, state=tx.state,
                    message=f"{name} is already installed", noop=True,
                    descriptor=self.index.read_record(name).descriptor,
                    history=list(tx.history),
                )
            self.console.say("install", f"Installing {name}")
            result = self._pipeline(tx, name, record=True)
            result.message = f"{name} installed"
            self.console.say("install", result.message)
            return result

    def install_many(self, names: Sequence[str]) -> List[TransactionResult]:
        """Install each name in turn; one failure does not stop the rest."""
        return [self._capture("install", name, self.install) for name in names]

    def ghost_install(self, name: str) -> TransactionResult:
        """Extract and manifest ``name`` without writing an installed record.

        The manifest keeps the files claimed for conflict detection.
        """
        with self._transaction("ghost", name) as tx:
            validate_name(name)
            result = self._pipeline(tx, name, record=False)
            result.message = f"{name} ghost-installed (no DB entry)"
            self.console.say("ghost", result.message)
            return result

    # === Update ===

    def update(self, name: str) -> TransactionResult:
        """Bring ``name`` to the catalog version.

        Raises:
            NotInstalled: no installed record
            NotInCatalog: repo.db has no entry (or no version) for the package
        """
        with self._transaction("update", name) as tx:
            validate_name(name)
            local = self.index.read_record(name)
            if local is None:
                raise NotInstalled(f"{name} not installed")
            entry = self.repository.lookup(name)
            if entry is None or not entry.version:
                raise NotInCatalog(f"{name} has no version in {self.repository.path}")

            if local.version == entry.version:
                self.console.say("update", f"{name} is up to date")
                tx.advance(TxState.DONE)
                return TransactionResult(
                    action="update", name=name, success=True, state=tx.state,
                    message=f"{name} is up to date", noop=True,
                    descriptor=local.descriptor, history=list(tx.history),
                )

            self.console.say("update", f"Updating {name} {local.version} to {entry.version}")
            old_manifest = self.index.read_manifest(name) or []
            result = self._pipeline(tx, name, record=True)

            current = set(result.manifest)
            stale = [p for p in old_manifest if p not in current]
            removed, failed = self._delete_paths(stale, tag="update")
            result.removed, result.failed = removed, failed
            result.message = f"{name} updated"
            self.console.say("update", result.message)
            return result

    def sync(self) -> TransactionResult:
        """Refresh repo.db through the fetcher."""
        with self._transaction("sync", "repository") as tx:
            sync = getattr(self.fetcher, "sync", None)
            if sync is None:
                raise FetchFailure("Configured fetcher cannot sync the repository")
            tx.advance(TxState.FETCHING)
            sync()
            tx.advance(TxState.DONE)
            self.console.say("sync", "Repository synced")
            return TransactionResult(
                action="sync", name="repository", success=True, state=tx.state,
                message="Repository synced", history=list(tx.history),
            )

    def self_update(self) -> TransactionResult:
        """Update mpkg's own package (install it when it has no record)."""
        name = self.config.self_package
        if self.index.is_installed(name):
            return self.update(name)
        return self.install(name)

    # === Remove ===

    def _delete_paths(self, paths: Sequence[str], tag: str) -> Tuple[int, int]:
        removed = failed = 0
        for path in paths:
            self.console.say(tag, f"Deleting: {path}")
            try:
                os.unlink(path)
                removed += 1
            except OSError as e:
                logger.debug("Cannot delete %s: %s", path, e)
                failed += 1
        return removed, failed

    def remove(self, name: str) -> TransactionResult:
        """Delete the package's files, manifest and record (best effort).

        A ghost install (manifest, no record) is removed the same way.

        Raises:
            NotInstalled: neither a record nor a manifest exists
        """
        with self._transaction("remove", name) as tx:
            validate_name(name)
            has_record = self.index.is_installed(name)
            manifest = self.index.read_manifest(name)
            if not has_record and manifest is None:
                raise NotInstalled(f"{name} is not installed")

            self.console.say("remove", f"Removing {name}")
            removed, failed = self._delete_paths(manifest or [], tag="remove")
            if manifest is not None:
                self.console.say("remove", f"Cleanup: {removed} files trashed, {failed} failed")
            self.index.delete_manifest(name)
            self.index.delete_record(name)

            tx.advance(TxState.DONE)
            message = f"{name} removed"
            self.console.say("remove", message)
            return TransactionResult(
                action="remove", name=name, success=True, state=tx.state,
                message=message, removed=removed, failed=failed,
                ghost=not has_record, history=list(tx.history),
            )

    def clean(self) -> List[TransactionResult]:
        """Remove every installed package except the protected ones.

        A lock or index failure comes back as a single failed "clean" result.
        """
        try:
            with self._locked():
                names = [n for n in self.index.installed_names()
                         if n not in self.config.protected]
                results = [self._capture("remove", n, self.remove) for n in names]
        except MpkgError as e:
            self.console.say("clean", f"FAILED: {e}")
            self.action_log.record("clean", "all", success=False, reason=str(e))
            return [TransactionResult(
                action="clean", name="all", success=False,
                message="clean all failed", cause=e.message or str(e), error=e,
            )]
        self.console.say("clean", "Aggressive clean complete")
        self.action_log.record("clean", "all", success=all(r.success for r in results))
        return results
