"""Action log for mpkg.

Append-only JSONL file recording the outcome of every command:
which action ran, on which target, and whether it succeeded.

Usage:
    from mpkg.ledger import ActionLog

    log = ActionLog(config.log_file)
    log.record("install", "foo", success=True)
    entries = log.read_all()
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """One command outcome."""

    action: str
    target: str
    status: str  # success|failed
    reason: str = ""
    id: str = field(default_factory=lambda: f"ACT-{uuid.uuid4().hex[:8]}")
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "LogEntry":
        return cls(**json.loads(json_str))


class ActionLog:
    """Append-only JSONL action log."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, entry: LogEntry) -> str:
        """Append ``entry``; returns its id.

        A log that cannot be written never changes a transaction's outcome,
        so failures are only reported through logging.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(entry.to_json() + "\n")
        except OSError as e:
            logger.warning("Cannot write action log %s: %s", self.path, e)
        return entry.id

    def record(self, action: str, target: str, success: bool, reason: str = "") -> str:
        return self.write(LogEntry(
            action=action,
            target=target,
            status="success" if success else "failed",
            reason=reason[:500],
        ))

    def read_all(self) -> List[LogEntry]:
        """Read all entries in order, skipping malformed lines."""
        if not self.path.exists():
            return []
        entries: List[LogEntry] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(LogEntry.from_json(line))
                except (json.JSONDecodeError, TypeError):
                    pass
        return entries

    def read_recent(self, limit: int = 10) -> List[LogEntry]:
        return self.read_all()[-limit:]
