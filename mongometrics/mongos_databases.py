"""Per-database and per-collection statistics (dbStats and collStats)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pymongo.errors import PyMongoError

from .metrics import Desc, Metric, MetricType, Sample
from .mongos_server import NAMESPACE

log = logging.getLogger(__name__)

_G = MetricType.GAUGE
_COLL_LABELS = ("db", "coll")
_DB_LABELS = ("db", "shard")

collection_size = Metric(
    _G, "size", "The total size in memory of all records in a collection",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)
collection_object_count = Metric(
    _G, "count", "The number of objects or documents in this collection",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)
collection_avg_obj_size = Metric(
    _G, "avgobjsize", "The average size of an object in the collection (plus any padding)",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)
collection_storage_size = Metric(
    _G, "storage_size",
    "The total amount of storage allocated to this collection for document storage",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)
collection_indexes = Metric(
    _G, "indexes", "The number of indexes on the collection",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)
collection_indexes_size = Metric(
    _G, "indexes_size", "The total size of all indexes",
    _COLL_LABELS, namespace=NAMESPACE, subsystem="db_coll",
)

_COLLECTION_FAMILIES = (
    collection_size,
    collection_object_count,
    collection_avg_obj_size,
    collection_storage_size,
    collection_indexes,
    collection_indexes_size,
)

index_size = Metric(
    _G, "index_size_bytes", "The total size in bytes of all indexes created on this database",
    _DB_LABELS, namespace=NAMESPACE, subsystem="db",
)
data_size = Metric(
    _G, "data_size_bytes",
    "The total size in bytes of the uncompressed data held in this database",
    _DB_LABELS, namespace=NAMESPACE, subsystem="db",
)
collections_total = Metric(
    _G, "collections_total", "Contains a count of the number of collections in that database",
    _DB_LABELS, namespace=NAMESPACE, subsystem="db",
)
indexes_total = Metric(
    _G, "indexes_total",
    "Contains a count of the total number of indexes across all collections in the database",
    _DB_LABELS, namespace=NAMESPACE, subsystem="db",
)
objects_total = Metric(
    _G, "objects_total",
    "Contains a count of the number of objects (i.e. documents) in the database across all "
    "collections",
    _DB_LABELS, namespace=NAMESPACE, subsystem="db",
)

_DATABASE_FAMILIES = (index_size, data_size, collections_total, indexes_total, objects_total)


def _int(doc: Mapping[str, Any], key: str) -> int:
    value = doc.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


@dataclass
class CollectionStatus:
    """collStats of one collection."""

    database: str = ""
    name: str = ""
    size: int = 0
    count: int = 0
    avg_obj_size: int = 0
    storage_size: int = 0
    indexes: int = 0
    indexes_size: int = 0

    @classmethod
    def from_document(
        cls, doc: Mapping[str, Any], database: str, name: str
    ) -> "CollectionStatus":
        return cls(
            database=database,
            name=name,
            size=_int(doc, "size"),
            count=_int(doc, "count"),
            avg_obj_size=_int(doc, "avgObjSize"),
            storage_size=_int(doc, "storageSize"),
            indexes=_int(doc, "indexSizes"),
            indexes_size=_int(doc, "totalIndexSize"),
        )


@dataclass
class CollectionStatList:
    """Stats of every collection that could be read."""

    members: list[CollectionStatus] = field(default_factory=list)

    def export(self) -> list[Sample]:
        for m in self.members:
            labels = (m.database, m.name)
            collection_size.set(m.size, *labels)
            collection_object_count.set(m.count, *labels)
            collection_avg_obj_size.set(m.avg_obj_size, *labels)
            collection_storage_size.set(m.storage_size, *labels)
            collection_indexes.set(m.indexes, *labels)
            collection_indexes_size.set(m.indexes_size, *labels)
        return [s for metric in _COLLECTION_FAMILIES for s in metric.collect()]

    def describe(self) -> list[Desc]:
        return [d for metric in _COLLECTION_FAMILIES for d in metric.describe()]


@dataclass
class RawStatus:
    """dbStats figures of one database, or of one shard of it."""

    name: str = ""
    index_size: int = 0
    data_size: int = 0
    collections: int = 0
    objects: int = 0
    indexes: int = 0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "RawStatus":
        db = doc.get("db")
        return cls(
            name=db if isinstance(db, str) else "",
            index_size=_int(doc, "indexSize"),
            data_size=_int(doc, "dataSize"),
            collections=_int(doc, "collections"),
            objects=_int(doc, "objects"),
            indexes=_int(doc, "indexes"),
        )


@dataclass
class DatabaseStatus(RawStatus):
    """dbStats of a database with the per-shard breakdown a mongos returns."""

    shards: dict[str, RawStatus] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "DatabaseStatus":
        top = RawStatus.from_document(doc)
        raw = doc.get("raw") or {}
        shards = {
            shard: RawStatus.from_document(stats)
            for shard, stats in raw.items()
            if isinstance(stats, Mapping)
        }
        return cls(
            name=top.name,
            index_size=top.index_size,
            data_size=top.data_size,
            collections=top.collections,
            objects=top.objects,
            indexes=top.indexes,
            shards=shards,
        )


@dataclass
class DatabaseStatList:
    """Stats of every database."""

    members: list[DatabaseStatus] = field(default_factory=list)

    def export(self) -> list[Sample]:
        for member in self.members:
            for shard, stats in member.shards.items():
                labels = (stats.name, shard.split("/")[0])
                index_size.set(stats.index_size, *labels)
                data_size.set(stats.data_size, *labels)
                collections_total.set(stats.collections, *labels)
                indexes_total.set(stats.indexes, *labels)
                objects_total.set(stats.objects, *labels)
        samples = [s for metric in _DATABASE_FAMILIES for s in metric.collect()]
        for metric in _DATABASE_FAMILIES:
            metric.reset()
        return samples

    def describe(self) -> list[Desc]:
        return [d for metric in _DATABASE_FAMILIES for d in metric.describe()]


# Keys whose failure has already been logged; cleared again once they succeed.
_log_suppressed: set[str] = set()


def _log_once(key: str, message: str) -> None:
    if key not in _log_suppressed:
        log.error("%s This log message will be suppressed from now.", message)
        _log_suppressed.add(key)


def get_collection_stat_list(client: Any) -> CollectionStatList | None:
    """Gather collStats of every collection, skipping those that fail."""
    result = CollectionStatList()
    try:
        database_names = client.list_database_names()
    except PyMongoError as err:
        _log_once("", f"{err}. Collection stats will not be collected.")
        return None
    _log_suppressed.discard("")
    for db_name in database_names:
        database = client[db_name]
        try:
            coll_names = database.list_collection_names()
        except PyMongoError as err:
            _log_once(
                db_name, f"{err}. Collection stats will not be collected for this db."
            )
            continue
        _log_suppressed.discard(db_name)
        for coll_name in coll_names:
            key = f"{db_name}.{coll_name}"
            try:
                doc = database.command("collStats", coll_name, scale=1)
            except PyMongoError as err:
                _log_once(
                    key,
                    f"{err}. Collection stats will not be collected for this collection.",
                )
                continue
            _log_suppressed.discard(key)
            result.members.append(CollectionStatus.from_document(doc, db_name, coll_name))
    return result


def get_database_stat_list(client: Any) -> DatabaseStatList | None:
    """Gather dbStats of every database; None if any of it fails."""
    result = DatabaseStatList()
    try:
        database_names = client.list_database_names()
    except PyMongoError:
        log.error("Failed to get database names")
        return None
    for db_name in database_names:
        try:
            doc = client[db_name].command("dbStats", scale=1)
        except PyMongoError:
            log.error("Failed to get database status.")
            return None
        result.members.append(DatabaseStatus.from_document(doc))
    return result