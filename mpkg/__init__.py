"""mpkg - local package transaction engine.

Installs, updates, removes and audits packages shipped as compressed tar
archives carrying a PKGINFO metadata entry. The installed package index
(records + file manifests) is the system of record; the orchestrator is
its only writer.

Example usage:
    from mpkg import Config, Orchestrator, CacheFetcher

    config = Config(db_path=Path("/var/db/mpkg"))
    orch = Orchestrator(config, CacheFetcher(config))
    orch.install("foo")
"""

from mpkg.config import Config, load_config
from mpkg.descriptor import InstalledRecord, PackageDescriptor, read_package_info
from mpkg.errors import (
    ConflictDetected,
    ExtractionFailure,
    FetchFailure,
    IndexLocked,
    IOFailure,
    MissingDependency,
    MpkgError,
    NotInCatalog,
    NotInstalled,
    ParseFailure,
)
from mpkg.fetch import CacheFetcher, HttpFetcher
from mpkg.index import PackageIndex
from mpkg.transaction import Orchestrator, TransactionResult, TxState

__all__ = [
    "Config",
    "load_config",
    "PackageDescriptor",
    "InstalledRecord",
    "read_package_info",
    "PackageIndex",
    "Orchestrator",
    "TransactionResult",
    "TxState",
    "CacheFetcher",
    "HttpFetcher",
    "MpkgError",
    "FetchFailure",
    "ParseFailure",
    "MissingDependency",
    "ConflictDetected",
    "ExtractionFailure",
    "IOFailure",
    "IndexLocked",
    "NotInstalled",
    "NotInCatalog",
]

__version__ = "0.1.0"
