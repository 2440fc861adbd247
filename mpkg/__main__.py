#!/usr/bin/env python3
"""
mpkg - local package manager.

Usage:
    mpkg install <pkg> [<pkg> ...]
    mpkg remove <pkg>
    mpkg list
    mpkg info <pkg>
    mpkg update [<pkg>]          (no package: sync repo.db)
    mpkg search <query>
    mpkg ghost <pkg>
    mpkg self-update
    mpkg stats
    mpkg clean --aggressive
    mpkg doctor
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from mpkg.audit import FilesystemAuditor
from mpkg.config import load_config
from mpkg.errors import (
    ConflictDetected,
    IndexLocked,
    MissingDependency,
    MpkgError,
    NotInstalled,
)
from mpkg.fetch import CacheFetcher, HttpFetcher
from mpkg.index import PackageIndex
from mpkg.report import (
    render_audit,
    render_info,
    render_list,
    render_search,
    render_stats,
)
from mpkg.repository import RepositoryCache
from mpkg.stats import StatsAggregator
from mpkg.transaction import (
    Clean,
    Command,
    GhostInstall,
    Install,
    Orchestrator,
    Remove,
    SelfUpdate,
    Sync,
    TransactionResult,
    Update,
)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISSING_DEPENDENCY = 2
EXIT_CONFLICT = 3
EXIT_NOT_INSTALLED = 4
EXIT_LOCKED = 5


def exit_code(results: List[TransactionResult]) -> int:
    """Map the first failed result to an exit code."""
    for result in results:
        if result.success:
            continue
        err = result.error
        if isinstance(err, MissingDependency):
            return EXIT_MISSING_DEPENDENCY
        if isinstance(err, ConflictDetected):
            return EXIT_CONFLICT
        if isinstance(err, NotInstalled):
            return EXIT_NOT_INSTALLED
        if isinstance(err, IndexLocked):
            return EXIT_LOCKED
        return EXIT_ERROR
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="mpkg",
        description="Install, update, remove and audit local packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
    0 success, 1 error, 2 missing dependency, 3 conflict,
    4 not installed, 5 index locked

Examples:
    mpkg install foo bar
    mpkg --offline install foo       # use archives already in the cache
    mpkg --root /mnt/target install foo
""",
    )
    ap.add_argument("--config", type=Path, help="Config file (default /etc/mpkg.conf or $MPKG_CONFIG)")
    ap.add_argument("--root", type=Path, help="Filesystem root to install into")
    ap.add_argument("--offline", action="store_true", help="Fetch from the local cache only")
    ap.add_argument("--json", action="store_true", help="Output transaction results as JSON")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = ap.add_subparsers(dest="cmd", required=True)
    p = sub.add_parser("install", help="Install packages")
    p.add_argument("names", nargs="+")
    p = sub.add_parser("remove", help="Remove a package")
    p.add_argument("name")
    sub.add_parser("list", help="List installed packages")
    p = sub.add_parser("info", help="Show package info")
    p.add_argument("name")
    p = sub.add_parser("update", help="Update a package, or sync the repository")
    p.add_argument("name", nargs="?")
    p = sub.add_parser("search", help="Search installed packages and the repository")
    p.add_argument("query")
    p = sub.add_parser("ghost", help="Install files without a database entry")
    p.add_argument("name")
    sub.add_parser("self-update", help="Update mpkg itself")
    sub.add_parser("stats", help="Show package statistics")
    p = sub.add_parser("clean", help="Remove packages")
    p.add_argument("--aggressive", action="store_true", required=True,
                   help="Remove every package except protected ones")
    sub.add_parser("doctor", help="Report files missing from disk")
    return ap


def to_command(args: argparse.Namespace) -> Optional[Command]:
    """Translate parsed arguments into a transaction command (None = report)."""
    if args.cmd == "install":
        return Install(tuple(args.names))
    if args.cmd == "remove":
        return Remove(args.name)
    if args.cmd == "update":
        return Update(args.name) if args.name else Sync()
    if args.cmd == "ghost":
        return GhostInstall(args.name)
    if args.cmd == "self-update":
        return SelfUpdate()
    if args.cmd == "clean":
        return Clean()
    return None


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except MpkgError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR
    if args.root:
        config = config.with_root(args.root.resolve())

    index = PackageIndex(config)
    command = to_command(args)

    if command is None:
        if args.cmd == "list":
            print(render_list(index))
        elif args.cmd == "info":
            print(render_info(index, args.name))
        elif args.cmd == "search":
            print(render_search(index, RepositoryCache(config.repo_db), args.query))
        elif args.cmd == "stats":
            print(render_stats(StatsAggregator(index).collect()))
        elif args.cmd == "doctor":
            print(render_audit(FilesystemAuditor(index).audit()))
        return EXIT_OK

    fetcher = CacheFetcher(config) if args.offline else HttpFetcher(config)
    orchestrator = Orchestrator(config, fetcher, index=index)
    results = orchestrator.run(command)

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            if not result.success:
                print(f"{result.message}: {result.cause}", file=sys.stderr)
    return exit_code(results)


if __name__ == "__main__":
    raise SystemExit(main())
