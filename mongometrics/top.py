"""Per-collection operation counters reported by the ``top`` command."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pymongo.errors import PyMongoError

from .metrics import Desc, MetricType, Sample, build_fq_name
from .mongod_storage import NAMESPACE

log = logging.getLogger(__name__)

_LABELS = ("type", "database", "collection")

top_count_total_desc = Desc(
    build_fq_name(NAMESPACE, "", "top_count_total"),
    "The top command provides operation count for each database collection",
    _LABELS,
    MetricType.COUNTER,
)

top_time_seconds_total_desc = Desc(
    build_fq_name(NAMESPACE, "", "top_time_seconds_total"),
    "The top command provides operation time, in seconds, for each database collection",
    _LABELS,
    MetricType.COUNTER,
)


def _num(doc: Mapping[str, Any], key: str) -> float:
    value = doc.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


@dataclass
class TopCounterStats:
    """Time (microseconds) and count of one kind of operation."""

    time: float = 0.0
    count: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TopCounterStats":
        return cls(_num(doc, "time"), _num(doc, "count"))


# (attribute, document key, exported type label), in export order.
_TOP_FIELDS = (
    ("total", "total", "Total"),
    ("read_lock", "readLock", "ReadLock"),
    ("write_lock", "writeLock", "WriteLock"),
    ("queries", "queries", "Queries"),
    ("get_more", "getmore", "GetMore"),
    ("insert", "insert", "Insert"),
    ("update", "update", "Update"),
    ("remove", "remove", "Remove"),
    ("commands", "commands", "Commands"),
)


@dataclass
class TopStats:
    """All top counters of one collection."""

    total: TopCounterStats = field(default_factory=TopCounterStats)
    read_lock: TopCounterStats = field(default_factory=TopCounterStats)
    write_lock: TopCounterStats = field(default_factory=TopCounterStats)
    queries: TopCounterStats = field(default_factory=TopCounterStats)
    get_more: TopCounterStats = field(default_factory=TopCounterStats)
    insert: TopCounterStats = field(default_factory=TopCounterStats)
    update: TopCounterStats = field(default_factory=TopCounterStats)
    remove: TopCounterStats = field(default_factory=TopCounterStats)
    commands: TopCounterStats = field(default_factory=TopCounterStats)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TopStats":
        values = {}
        for attr, key, _ in _TOP_FIELDS:
            sub = doc.get(key)
            values[attr] = (
                TopCounterStats.from_document(sub)
                if isinstance(sub, Mapping)
                else TopCounterStats()
            )
        return cls(**values)


def export_top_stats(top_stats: Mapping[str, TopStats]) -> list[Sample]:
    """Turn per-namespace top stats into count and time samples."""
    samples: list[Sample] = []
    for namespace, stats in top_stats.items():
        database, _, collection = namespace.partition(".")
        for attr, _, label in _TOP_FIELDS:
            counter: TopCounterStats = getattr(stats, attr)
            samples.append(top_count_total_desc.sample(counter.count, label, database, collection))
            samples.append(
                top_time_seconds_total_desc.sample(
                    counter.time / 1e6, label, database, collection
                )
            )
    return samples


@dataclass
class TopStatus:
    """Result of the ``top`` command, keyed by ``database.collection``."""

    top_stats: dict[str, TopStats] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TopStatus":
        totals = doc.get("totals") or {}
        return cls(
            {
                namespace: TopStats.from_document(value)
                for namespace, value in totals.items()
                if isinstance(value, Mapping)
            }
        )

    def export(self) -> list[Sample]:
        return export_top_stats(self.top_stats)


def get_top_stats(client: Any) -> TopStatus:
    """Run ``top`` on the admin database; errors propagate."""
    return TopStatus.from_document(client.admin.command("top"))


def get_top_status(client: Any) -> TopStatus | None:
    """Run ``top``, returning None when it fails."""
    try:
        return get_top_stats(client)
    except PyMongoError:
        log.debug("Failed to get top status.")
        return None