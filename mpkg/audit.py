"""Filesystem Auditor (``mpkg doctor``).

Walks every File Manifest and reports the paths that no longer exist.
Read-only: nothing is repaired.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from mpkg.index import PackageIndex


@dataclass(frozen=True)
class MissingFile:
    package: str
    path: str


@dataclass
class AuditReport:
    """Doctor findings.

    Attributes:
        missing: Manifest paths absent from the filesystem
        checked: Number of manifest paths examined
        ghosts: Packages with a manifest but no installed record
        orphans: Packages with an installed record but no manifest
    """
    missing: List[MissingFile] = field(default_factory=list)
    checked: int = 0
    ghosts: List[str] = field(default_factory=list)
    orphans: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.missing


class FilesystemAuditor:

    def __init__(self, index: PackageIndex):
        self.index = index

    def audit(self) -> AuditReport:
        report = AuditReport()
        for name, paths in self.index.manifests().items():
            for path in paths:
                report.checked += 1
                if not os.path.lexists(path):
                    report.missing.append(MissingFile(package=name, path=path))
        report.ghosts = self.index.ghosts()
        manifest_names = set(self.index.manifest_names())
        report.orphans = [n for n in self.index.installed_names() if n not in manifest_names]
        return report
