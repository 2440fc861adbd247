"""Exception taxonomy for mpkg transactions.

Every failure a transaction can surface derives from MpkgError. The
orchestrator stamps the state a transaction was in when the error was
raised onto ``err.state`` so callers can tell *where* a pipeline stopped.
"""
from __future__ import annotations

from typing import List, Optional


class MpkgError(Exception):
    """Base class for all package manager failures."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message
        self.state = None


class FetchFailure(MpkgError):
    """Archive could not be obtained from the fetcher."""
    pass


class ParseFailure(MpkgError):
    """Metadata entry missing, malformed, or carrying unacceptable values."""
    pass


class InvalidPackageName(ParseFailure):
    """Package name is not usable as an index key."""
    pass


class MissingDependency(MpkgError):
    """One or more declared dependencies have no installed record."""

    def __init__(self, missing: List[str], satisfied: Optional[List[str]] = None):
        self.missing = list(missing)
        self.satisfied = list(satisfied or [])
        super().__init__(
            f"{len(self.missing)} dependencies are missing: {', '.join(self.missing)}"
        )


class ConflictDetected(MpkgError):
    """A path is already owned by another package (no last-write-wins)."""

    def __init__(self, path: str, owner: str):
        self.path = path
        self.owner = owner
        super().__init__(f"Conflict: {path} already owned by {owner}")


class ExtractionFailure(MpkgError):
    """Archive could not be opened or an entry could not be written."""
    pass


class IOFailure(MpkgError):
    """Record, manifest, or log read/write/delete failed."""
    pass


class IndexLocked(IOFailure):
    """Another process holds the index lock."""
    pass


class NotInstalled(MpkgError):
    """Operation requires an installed package."""
    pass


class NotInCatalog(MpkgError):
    """Repository cache has no entry for the package."""
    pass
