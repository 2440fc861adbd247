"""Stats Aggregator: package count, total declared size, largest packages."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from mpkg.index import PackageIndex

TOP_N = 5


@dataclass
class Stats:
    count: int = 0
    total_size: int = 0
    top: List[Tuple[str, int]] = field(default_factory=list)  # (name, size), descending


def insert_top(top: List[Tuple[str, int]], name: str, size: int, limit: int = TOP_N) -> None:
    """Insert into a fixed-length descending list.

    An entry is placed before the first slot it is strictly larger than,
    so ties keep first-seen order and zero sizes are never ranked.
    """
    for i in range(limit):
        if i == len(top):
            if size > 0:
                top.append((name, size))
            return
        if size > top[i][1]:
            top.insert(i, (name, size))
            del top[limit:]
            return


class StatsAggregator:

    def __init__(self, index: PackageIndex):
        self.index = index

    def collect(self) -> Stats:
        stats = Stats()
        for record in self.index.records():
            stats.count += 1
            stats.total_size += record.size
            insert_top(stats.top, record.name, record.size)
        return stats
