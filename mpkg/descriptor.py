"""Package metadata: descriptors, installed records, and the Metadata Reader.

Two on-disk forms share the same ``key=value`` line syntax:

- the PKGINFO entry embedded in a package archive
  (name, version, arch, description, depends, size)
- the installed record written to ``<db>/<name>.installed``
  (the same keys plus install_time and installed=1)

Values are split on the first ``=``, unknown keys are ignored and numeric
fields fall back to 0 when they do not parse. Overlong values and values
containing newlines are rejected rather than truncated.
"""
from __future__ import annotations

import logging
import re
import tarfile
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from mpkg.errors import InvalidPackageName, IOFailure, ParseFailure

logger = logging.getLogger(__name__)

METADATA_ENTRIES = ("PKGINFO", "./PKGINFO")
MAX_PKGINFO_BYTES = 1024 * 1024
MAX_FIELD_LENGTH = 4096
MAX_NAME_LENGTH = 255

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


def validate_name(name: str) -> str:
    """Return ``name`` if it is usable as an index key, else raise.

    Names become file names under the index directory, so anything that
    could address another path (separators, dot-dot, newlines) is refused.
    """
    if not name or len(name) > MAX_NAME_LENGTH or not _NAME_RE.match(name):
        raise InvalidPackageName(f"Invalid package name: {name!r}")
    return name


def _to_int(value: str) -> int:
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return 0


def _parse_lines(text: str) -> Dict[str, str]:
    """Split ``key=value`` lines; last occurrence of a key wins."""
    values: Dict[str, str] = {}
    for raw in text.split("\n"):
        line = raw.rstrip("\r")
        key, sep, value = line.partition("=")
        if not sep or not key:
            continue
        if len(value) > MAX_FIELD_LENGTH:
            raise ParseFailure(
                f"Field '{key}' is {len(value)} chars (limit {MAX_FIELD_LENGTH})"
            )
        values[key] = value
    return values


@dataclass(frozen=True)
class PackageDescriptor:
    """Parsed package metadata. Immutable once read."""
    name: str
    version: str = ""
    arch: str = ""
    depends: str = ""
    description: str = ""
    size: int = 0

    @property
    def dependencies(self) -> List[str]:
        """Dependency names, whitespace trimmed, empty entries dropped."""
        return [d.strip() for d in self.depends.split(",") if d.strip()]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "arch": self.arch,
            "depends": self.depends,
            "description": self.description,
            "size": self.size,
        }


@dataclass(frozen=True)
class InstalledRecord:
    """Persisted proof that a package is installed."""
    descriptor: PackageDescriptor
    install_time: int = field(default_factory=lambda: int(time.time()))
    installed: bool = True

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def version(self) -> str:
        return self.descriptor.version

    @property
    def size(self) -> int:
        return self.descriptor.size


def parse_descriptor(text: str) -> PackageDescriptor:
    """Decode PKGINFO text into a descriptor.

    Raises:
        ParseFailure: a value exceeds the field limit
    """
    values = _parse_lines(text)
    return PackageDescriptor(
        name=values.get("name", ""),
        version=values.get("version", ""),
        arch=values.get("arch", ""),
        depends=values.get("depends", ""),
        description=values.get("description", ""),
        size=_to_int(values.get("size", "0")),
    )


def _is_metadata_entry(member: tarfile.TarInfo) -> bool:
    return member.name in METADATA_ENTRIES


def read_package_info(archive_path: Path) -> Optional[PackageDescriptor]:
    """Extract the descriptor from an archive's PKGINFO entry.

    Returns None if the archive cannot be opened or has no PKGINFO entry.

    Raises:
        ParseFailure: the entry is oversized or carries an overlong field
    """
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            for member in tar:
                if not _is_metadata_entry(member) or not member.isfile():
                    continue
                if member.size > MAX_PKGINFO_BYTES:
                    raise ParseFailure(
                        f"PKGINFO in {archive_path} is {member.size} bytes "
                        f"(limit {MAX_PKGINFO_BYTES})"
                    )
                f = tar.extractfile(member)
                if f is None:
                    return None
                text = f.read().decode("utf-8", errors="replace")
                return parse_descriptor(text)
    except (tarfile.TarError, OSError, EOFError) as e:
        logger.debug("Cannot read metadata from %s: %s", archive_path, e)
        return None
    return None


def _check_value(key: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ParseFailure(f"Field '{key}' contains a line break")
    if len(value) > MAX_FIELD_LENGTH:
        raise ParseFailure(f"Field '{key}' exceeds {MAX_FIELD_LENGTH} chars")
    return value


def format_record(record: InstalledRecord) -> str:
    """Serialize an installed record to its on-disk form."""
    d = record.descriptor
    lines = [f"name={_check_value('name', d.name)}"]
    for key in ("version", "arch", "description", "depends"):
        lines.append(f"{key}={_check_value(key, getattr(d, key))}")
    lines.append(f"size={d.size}")
    lines.append(f"install_time={record.install_time}")
    lines.append(f"installed={1 if record.installed else 0}")
    return "\n".join(lines) + "\n"


def parse_record(text: str) -> InstalledRecord:
    values = _parse_lines(text)
    return InstalledRecord(
        descriptor=parse_descriptor(text),
        install_time=_to_int(values.get("install_time", "0")),
        installed=values.get("installed", "1").strip() == "1",
    )


def read_record(path: Path) -> Optional[InstalledRecord]:
    """Decode an installed record file; None if it does not exist."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise IOFailure(f"Cannot read record {path}: {e}") from e
    return parse_record(text)


def named(descriptor: Optional[PackageDescriptor], name: str) -> PackageDescriptor:
    """Descriptor for ``name``: the archive's one, or a name-only stand-in."""
    if descriptor is None:
        return PackageDescriptor(name=name)
    if not descriptor.name:
        return replace(descriptor, name=name)
    return descriptor
