"""
checks.py - Pre-extraction checks shared by install, update and ghost.

- DependencyVerifier: every declared dependency must have an installed record
- ConflictDetector: no path may be owned by another package (no last-write-wins)

Both read the index only; neither writes anything.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from mpkg.errors import ConflictDetected, InvalidPackageName, MissingDependency
from mpkg.index import PackageIndex

logger = logging.getLogger(__name__)


@dataclass
class DependencyReport:
    """Outcome of a dependency check.

    Attributes:
        satisfied: Dependencies with an installed record
        missing: Dependencies without one
    """
    satisfied: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.missing

    def lines(self) -> List[str]:
        """Human-readable per-dependency status lines."""
        out = [f"Dependency '{d}' is installed." for d in self.satisfied]
        out += [f"Error: dependency '{d}' is missing!" for d in self.missing]
        return out


class DependencyVerifier:
    """Checks dependency names against the index presence predicate."""

    def __init__(self, index: PackageIndex):
        self.index = index

    def check(self, depends: str) -> DependencyReport:
        """Classify each comma-separated dependency name.

        Empty input (no dependencies) always passes.
        """
        report = DependencyReport()
        for dep in depends.split(","):
            dep = dep.strip()
            if not dep:
                continue
            try:
                installed = self.index.is_installed(dep)
            except InvalidPackageName:
                # No record can exist under a name the index refuses.
                installed = False
            if installed:
                report.satisfied.append(dep)
            else:
                report.missing.append(dep)
        return report

    def verify(self, depends: str) -> DependencyReport:
        """Like check(), but raise when anything is missing.

        Raises:
            MissingDependency: one or more dependencies are not installed
        """
        report = self.check(depends)
        if report.missing:
            raise MissingDependency(report.missing, report.satisfied)
        return report


class ConflictDetector:
    """Compares a candidate manifest with every other package's manifest.

    Ghost installs keep their manifest, so their files stay claimed here.
    """

    def __init__(self, index: PackageIndex):
        self.index = index

    def check(self, name: str, paths: Optional[Iterable[str]] = None) -> None:
        """Raise on the first path owned by a package other than ``name``.

        Args:
            name: Package being installed
            paths: Candidate paths; defaults to the package's stored manifest

        Raises:
            ConflictDetected: a path is listed in another package's manifest
        """
        if paths is None:
            paths = self.index.read_manifest(name) or []
        candidates = list(paths)
        if not candidates:
            return

        for other in self.index.manifest_names():
            if other == name:
                continue
            owned = set(self.index.read_manifest(other) or [])
            for path in candidates:
                if path in owned:
                    logger.info("Conflict: %s owned by %s", path, other)
                    raise ConflictDetected(path, other)
