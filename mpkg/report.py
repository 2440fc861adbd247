"""Text rendering for list, search, info, stats and doctor."""
from __future__ import annotations

import time
from typing import List

from mpkg.audit import AuditReport
from mpkg.index import PackageIndex
from mpkg.repository import RepositoryCache
from mpkg.stats import TOP_N, Stats

INFO_FILE_LIMIT = 10


def _line(index: PackageIndex, name: str) -> str:
    record = index.read_record(name)
    if record is None:
        return f" {name}"
    return f" {record.name}-{record.version} ({record.descriptor.description})"


def render_list(index: PackageIndex) -> str:
    lines = ["Installed packages:"]
    lines += [_line(index, name) for name in index.installed_names()]
    return "\n".join(lines)


def render_search(index: PackageIndex, repository: RepositoryCache, query: str) -> str:
    lines = [f"Searching for '{query}':"]
    lines += [_line(index, n) for n in index.installed_names() if query in n]
    for entry in repository.search(query):
        lines.append(f" {entry.name}-{entry.version} ({entry.description}) [repo]")
    return "\n".join(lines)


def render_info(index: PackageIndex, name: str) -> str:
    record = index.read_record(name)
    if record is None:
        return f"{name} is not installed"
    d = record.descriptor
    lines: List[str] = [
        "Package info:",
        f" name: {d.name}",
        f" version: {d.version}",
        f" arch: {d.arch}",
        f" description: {d.description}",
    ]
    if d.depends:
        lines.append(f" dependencies: {d.depends}")
    if d.size:
        lines.append(f" installed size: {d.size} bytes")
    if record.install_time:
        lines.append(f" install date: {time.ctime(record.install_time)}")
    manifest = index.read_manifest(name)
    if manifest:
        lines.append(f" files (first {INFO_FILE_LIMIT}):")
        lines += [f" {p}" for p in manifest[:INFO_FILE_LIMIT]]
    return "\n".join(lines)


def render_stats(stats: Stats) -> str:
    lines = [
        f"Packages: {stats.count}",
        f"Total size: {stats.total_size} bytes",
        f"Top {TOP_N} by size:",
    ]
    lines += [f" {name}: {size}" for name, size in stats.top]
    return "\n".join(lines)


def render_audit(report: AuditReport) -> str:
    lines = ["Running mpkg doctor..."]
    for missing in report.missing:
        lines.append(f"Missing file: {missing.path} (owned by {missing.package})")
    for name in report.ghosts:
        lines.append(f"Ghost install: {name} (files manifested, no record)")
    for name in report.orphans:
        lines.append(f"Orphan record: {name} (no file manifest)")
    lines.append(f"Doctor finished: {report.checked} files checked, {len(report.missing)} missing")
    return "\n".join(lines)
