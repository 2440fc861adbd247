"""Repository Descriptor Cache.

Read-only view of ``repo.db``, the local mirror of the remote catalog.
The file is a sequence of blocks; each block starts with ``name=`` and
carries ``version=`` / ``description=`` lines until the next ``name=``
or end of file.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from mpkg.errors import IOFailure


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    version: str = ""
    description: str = ""


def parse_catalog(text: str) -> List[CatalogEntry]:
    """Split repo.db text into catalog entries, in file order."""
    entries: List[CatalogEntry] = []
    current = None
    for raw in text.splitlines():
        key, sep, value = raw.rstrip("\r").partition("=")
        if not sep:
            continue
        if key == "name":
            if current is not None:
                entries.append(CatalogEntry(**current))
            current = {"name": value}
        elif current is not None and key in ("version", "description"):
            # First occurrence within a block wins.
            current.setdefault(key, value)
    if current is not None:
        entries.append(CatalogEntry(**current))
    return entries


class RepositoryCache:
    """Lookups against the synced catalog. A missing file is an empty catalog."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def entries(self) -> List[CatalogEntry]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise IOFailure(f"Cannot read repository cache {self.path}: {e}") from e
        return parse_catalog(text)

    def lookup(self, name: str) -> Optional[CatalogEntry]:
        for entry in self.entries():
            if entry.name == name:
                return entry
        return None

    def search(self, query: str) -> List[CatalogEntry]:
        return [e for e in self.entries() if query in e.name]
