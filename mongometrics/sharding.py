"""Sharding state of a cluster seen through a mongos: balancer, changelog and topology."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pymongo.errors import PyMongoError

from .connection import add_code_comment_to_query
from .metrics import Desc, Metric, MetricType, Sample
from .mongos_server import NAMESPACE

log = logging.getLogger(__name__)

_C = MetricType.COUNTER
_G = MetricType.GAUGE

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_WINDOW = timedelta(minutes=10)

sharding_changelog_info = Metric(
    _C,
    "changelog_10min_total",
    "Total # of Cluster Balancer log events over the last 10 minutes",
    ["event"],
    namespace=NAMESPACE,
    subsystem="sharding",
)

balancer_is_enabled = Metric(
    _G,
    "balancer_enabled",
    "Boolean reporting if cluster balancer is enabled (1 = enabled/0 = disabled)",
    namespace=NAMESPACE,
    subsystem="sharding",
)
balancer_chunks_balanced = Metric(
    _G,
    "chunks_is_balanced",
    "Boolean reporting if cluster chunks are evenly balanced across shards (1 = yes/0 = no)",
    namespace=NAMESPACE,
    subsystem="sharding",
)
mongos_up_secs = Metric(
    _G,
    "mongos_uptime_seconds",
    "The uptime of the Mongos processes in seconds",
    ["name"],
    namespace=NAMESPACE,
    subsystem="sharding",
)
mongos_ping = Metric(
    _G,
    "mongos_last_ping_timestamp",
    "The unix timestamp of the last Mongos ping to the Cluster config servers",
    ["name"],
    namespace=NAMESPACE,
    subsystem="sharding",
)
mongos_balancer_lock_timestamp = Metric(
    _G,
    "balancer_lock_timestamp",
    "The unix timestamp of the last update to the Cluster balancer lock",
    ["name"],
    namespace=NAMESPACE,
    subsystem="sharding",
)
mongos_balancer_lock_state = Metric(
    _G,
    "balancer_lock_state",
    "The state of the Cluster balancer lock (-1 = none/0 = unlocked/1 = contention/2 = locked)",
    ["name"],
    namespace=NAMESPACE,
    subsystem="sharding",
)

sharding_topo_info_total_shards = Metric(
    _G,
    "shards_total",
    "Total # of Shards in the Cluster",
    namespace=NAMESPACE,
    subsystem="sharding",
)
sharding_topo_info_draining_shards = Metric(
    _G,
    "shards_draining_total",
    "Total # of Shards in the Cluster in draining state",
    namespace=NAMESPACE,
    subsystem="sharding",
)
sharding_topo_info_total_chunks = Metric(
    _G,
    "chunks_total",
    "Total # of Chunks in the Cluster",
    namespace=NAMESPACE,
    subsystem="sharding",
)
sharding_topo_info_shard_chunks = Metric(
    _G,
    "shard_chunks_total",
    "Total number of chunks per shard",
    ["shard"],
    namespace=NAMESPACE,
    subsystem="sharding",
)
sharding_topo_info_total_databases = Metric(
    _G,
    "databases_total",
    "Total # of Databases in the Cluster",
    ["type"],
    namespace=NAMESPACE,
    subsystem="sharding",
)
sharding_topo_info_total_collections = Metric(
    _G,
    "collections_total",
    "Total # of Collections with Sharding enabled",
    namespace=NAMESPACE,
    subsystem="sharding",
)

# Event types always reported, so that they show up even with no events in the window.
_EXPECTED_EVENTS = (
    "moveChunk.start",
    "moveChunk.to",
    "moveChunk.to_failed",
    "moveChunk.from",
    "moveChunk.from_failed",
    "moveChunk.commit",
    "addShard",
    "removeShard.start",
    "shardCollection",
    "shardCollection.start",
    "split",
    "multi-split",
)
_MIGRATION_EVENTS = ("moveChunk.to", "moveChunk.from")


def _num(doc: Mapping[str, Any], key: str) -> float:
    value = doc.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


def _str(doc: Mapping[str, Any], key: str) -> str:
    value = doc.get(key)
    return value if isinstance(value, str) else ""


def _time(doc: Mapping[str, Any], key: str) -> datetime:
    value = doc.get(key)
    return value if isinstance(value, datetime) else _ZERO_TIME


def _unix(moment: datetime) -> float:
    """Whole seconds since the epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return float((moment - _EPOCH) // timedelta(seconds=1))


def _window_start() -> datetime:
    return datetime.now(timezone.utc) - _WINDOW


# --- changelog -------------------------------------------------------------


@dataclass
class ShardingChangelogSummary:
    """Number of changelog events of one kind and outcome."""

    event: str = ""
    note: str = ""
    count: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ShardingChangelogSummary":
        ident = doc.get("_id")
        if not isinstance(ident, Mapping):
            ident = {}
        return cls(_str(ident, "event"), _str(ident, "note"), _num(doc, "count"))


@dataclass
class ShardingChangelogStats:
    """Balancer changelog events of the last ten minutes."""

    items: list[ShardingChangelogSummary] = field(default_factory=list)

    def export(self) -> list[Sample]:
        for event in _EXPECTED_EVENTS:
            sharding_changelog_info.set(0, event)
        for item in self.items:
            if item.event in _MIGRATION_EVENTS and item.note not in ("success", ""):
                sharding_changelog_info.set(item.count, item.event + "_failed")
            else:
                sharding_changelog_info.set(item.count, item.event)
        return sharding_changelog_info.collect()

    def describe(self) -> list[Desc]:
        return sharding_changelog_info.describe()


def get_sharding_changelog_status(client: Any) -> ShardingChangelogStats:
    """Summarise config.changelog events of the last ten minutes."""
    pipeline = [
        {"$match": {"time": {"$gt": _window_start()}}},
        {
            "$group": {
                "_id": {"event": "$what", "note": "$details.note"},
                "count": {"$sum": 1},
            }
        },
    ]
    items: list[ShardingChangelogSummary] = []
    try:
        for doc in client["config"]["changelog"].aggregate(pipeline):
            items.append(ShardingChangelogSummary.from_document(doc))
    except PyMongoError:
        log.error("Failed to execute find query on 'config.changelog'!")
    return ShardingChangelogStats(items)


# --- topology --------------------------------------------------------------


@dataclass
class ShardingTopoShardInfo:
    """One entry of config.shards."""

    shard: str = ""
    host: str = ""
    draining: bool = False

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ShardingTopoShardInfo":
        return cls(_str(doc, "_id"), _str(doc, "host"), bool(doc.get("draining", False)))


@dataclass
class ShardingTopoChunkInfo:
    """Number of chunks held by one shard."""

    shard: str = ""
    chunks: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ShardingTopoChunkInfo":
        return cls(_str(doc, "_id"), _num(doc, "count"))


@dataclass
class ShardingTopoStatsTotalDatabases:
    """Number of databases that are, or are not, partitioned."""

    partitioned: bool = False
    total: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ShardingTopoStatsTotalDatabases":
        return cls(bool(doc.get("_id")), _num(doc, "total"))


@dataclass
class ShardingTopoStats:
    """Shards, chunks, databases and sharded collections of the cluster."""

    total_chunks: float = 0.0
    total_collections: float = 0.0
    total_databases: list[ShardingTopoStatsTotalDatabases] | None = None
    shards: list[ShardingTopoShardInfo] | None = None
    shard_chunks: list[ShardingTopoChunkInfo] | None = None

    def export(self) -> list[Sample]:
        if self.shards is not None:
            draining = sum(1 for shard in self.shards if shard.draining)
            sharding_topo_info_draining_shards.set(draining)
            sharding_topo_info_total_shards.set(len(self.shards))
        sharding_topo_info_total_chunks.set(self.total_chunks)
        sharding_topo_info_total_collections.set(self.total_collections)

        sharding_topo_info_total_databases.set(0, "partitioned")
        sharding_topo_info_total_databases.set(0, "unpartitioned")
        for item in self.total_databases or ():
            label = "partitioned" if item.partitioned else "unpartitioned"
            sharding_topo_info_total_databases.set(item.total, label)

        if self.shard_chunks is not None:
            # Known shards start at zero so that shards without chunks still show.
            for shard in self.shards or ():
                sharding_topo_info_shard_chunks.set(0, shard.shard)
            for chunk in self.shard_chunks:
                sharding_topo_info_shard_chunks.set(chunk.chunks, chunk.shard)

        return [
            s
            for metric in (
                sharding_topo_info_total_shards,
                sharding_topo_info_draining_shards,
                sharding_topo_info_total_chunks,
                sharding_topo_info_shard_chunks,
                sharding_topo_info_total_collections,
                sharding_topo_info_total_databases,
            )
            for s in metric.collect()
        ]

    def describe(self) -> list[Desc]:
        return [
            d
            for metric in (
                sharding_topo_info_total_shards,
                sharding_topo_info_draining_shards,
                sharding_topo_info_total_chunks,
                sharding_topo_info_shard_chunks,
                sharding_topo_info_total_databases,
                sharding_topo_info_total_collections,
            )
            for d in metric.describe()
        ]


def get_shards(client: Any) -> list[ShardingTopoShardInfo]:
    """List config.shards; empty when the query fails."""
    try:
        cursor = add_code_comment_to_query(client["config"]["shards"].find({}))
        return [ShardingTopoShardInfo.from_document(doc) for doc in cursor]
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.shards': %s.", err)
        return []


def get_total_chunks(client: Any) -> float:
    """Count config.chunks; 0 when the query fails."""
    try:
        return float(client["config"]["chunks"].count_documents({}))
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.chunks': %s.", err)
        return 0.0


def get_total_chunks_by_shard(client: Any) -> list[ShardingTopoChunkInfo]:
    """Count chunks per shard; empty when the query fails."""
    pipeline = [{"$group": {"_id": "$shard", "count": {"$sum": 1}}}]
    try:
        return [
            ShardingTopoChunkInfo.from_document(doc)
            for doc in client["config"]["chunks"].aggregate(pipeline)
        ]
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.chunks': %s.", err)
        return []


def get_total_databases(client: Any) -> list[ShardingTopoStatsTotalDatabases]:
    """Count databases other than admin by partitioning; empty on failure."""
    pipeline = [
        {"$match": {"_id": {"$ne": "admin"}}},
        {"$group": {"_id": "$partitioned", "total": {"$sum": 1}}},
    ]
    try:
        return [
            ShardingTopoStatsTotalDatabases.from_document(doc)
            for doc in client["config"]["databases"].aggregate(pipeline)
        ]
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.databases': %s.", err)
        return []


def get_total_sharded_collections(client: Any) -> float:
    """Count sharded collections that are not dropped; 0 on failure."""
    try:
        return float(client["config"]["collections"].count_documents({"dropped": False}))
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.collections': %s.", err)
        return 0.0


def get_sharding_topo_status(client: Any) -> ShardingTopoStats:
    """Gather every part of the cluster topology."""
    return ShardingTopoStats(
        shards=get_shards(client),
        total_chunks=get_total_chunks(client),
        shard_chunks=get_total_chunks_by_shard(client),
        total_databases=get_total_databases(client),
        total_collections=get_total_sharded_collections(client),
    )


# --- balancer and mongos processes ----------------------------------------


@dataclass
class MongosInfo:
    """One entry of config.mongos."""

    name: str = ""
    ping: datetime = _ZERO_TIME
    up: float = 0.0
    waiting: bool = False
    mongo_version: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "MongosInfo":
        return cls(
            name=_str(doc, "_id"),
            ping=_time(doc, "ping"),
            up=_num(doc, "up"),
            waiting=bool(doc.get("waiting", False)),
            mongo_version=_str(doc, "mongoVersion"),
        )


@dataclass
class MongosBalancerLock:
    """The balancer entry of config.locks."""

    state: float = 0.0
    process: str = ""
    who: str = ""
    when: datetime = _ZERO_TIME
    why: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "MongosBalancerLock":
        return cls(
            state=_num(doc, "state"),
            process=_str(doc, "process"),
            who=_str(doc, "who"),
            when=_time(doc, "when"),
            why=_str(doc, "why"),
        )


def _balancer_settings(client: Any) -> Mapping[str, Any] | None:
    cursor = add_code_comment_to_query(
        client["config"]["settings"].find({"_id": "balancer"}).limit(1)
    )
    return next(iter(cursor), None)


def get_mongos_info(client: Any) -> list[MongosInfo]:
    """List mongos processes that pinged in the last ten minutes."""
    try:
        cursor = add_code_comment_to_query(
            client["config"]["mongos"].find({"ping": {"$gte": _window_start()}})
        )
        return [MongosInfo.from_document(doc) for doc in cursor]
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.mongos': %s.", err)
        return []


def get_mongos_balancer_lock(client: Any) -> MongosBalancerLock | None:
    """Read the balancer lock, or None when it is missing or unreadable."""
    try:
        cursor = add_code_comment_to_query(
            client["config"]["locks"].find({"_id": "balancer"}).limit(1)
        )
        doc = next(iter(cursor), None)
    except PyMongoError as err:
        log.error("Failed to execute find query on 'config.locks': %s.", err)
        return None
    if doc is None:
        log.error("Failed to execute find query on 'config.locks': not found.")
        return None
    return MongosBalancerLock.from_document(doc)


def is_balancer_enabled(client: Any) -> float:
    """1 unless the balancer settings say it is stopped."""
    try:
        settings = _balancer_settings(client)
    except PyMongoError:
        return 1.0
    if settings is None:
        return 1.0
    return 0.0 if settings.get("stopped") else 1.0


def is_cluster_balanced(client: Any) -> float:
    """1 when the chunk counts of the shards differ by less than the migration threshold."""
    threshold = 8.0
    total_chunk_count = get_total_chunks(client)
    if total_chunk_count < 20:
        threshold = 2.0
    elif 21 < total_chunk_count < 80:
        threshold = 4.0

    min_chunk_count = -1.0
    max_chunk_count = 0.0
    for shard in get_total_chunks_by_shard(client):
        if shard.chunks > max_chunk_count:
            max_chunk_count = shard.chunks
        if min_chunk_count == -1 or shard.chunks < min_chunk_count:
            min_chunk_count = shard.chunks

    return 1.0 if max_chunk_count - min_chunk_count < threshold else 0.0


@dataclass
class ShardingStats:
    """Everything reported about a sharded cluster."""

    is_balanced: float = 0.0
    balancer_enabled: float = 0.0
    changelog: ShardingChangelogStats | None = None
    topology: ShardingTopoStats | None = None
    balancer_lock: MongosBalancerLock | None = None
    mongos: list[MongosInfo] | None = None

    def export(self) -> list[Sample]:
        samples: list[Sample] = []
        if self.changelog is not None:
            samples.extend(self.changelog.export())
        if self.topology is not None:
            samples.extend(self.topology.export())
        if self.mongos is not None and self.balancer_lock is not None:
            who = self.balancer_lock.who.split(":")
            if len(who) < 2:
                raise ValueError(
                    f"balancer lock holder {self.balancer_lock.who!r} has no host:port"
                )
            host_port = who[0] + ":" + who[1]
            mongos_balancer_lock_timestamp.set(_unix(self.balancer_lock.when), host_port)
            for mongos in self.mongos:
                mongos_up_secs.set(mongos.up, mongos.name)
                mongos_ping.set(_unix(mongos.ping), mongos.name)
                mongos_balancer_lock_state.set(-1, mongos.name)
                if mongos.name == host_port:
                    mongos_balancer_lock_state.set(self.balancer_lock.state, mongos.name)
        balancer_is_enabled.set(self.balancer_enabled)
        balancer_chunks_balanced.set(self.is_balanced)

        for metric in (
            balancer_is_enabled,
            balancer_chunks_balanced,
            mongos_up_secs,
            mongos_ping,
            mongos_balancer_lock_state,
            mongos_balancer_lock_timestamp,
        ):
            samples.extend(metric.collect())
        return samples

    def describe(self) -> list[Desc]:
        descs: list[Desc] = []
        if self.changelog is not None:
            descs.extend(self.changelog.describe())
        if self.topology is not None:
            descs.extend(self.topology.describe())
        for metric in (
            balancer_is_enabled,
            balancer_chunks_balanced,
            mongos_up_secs,
            mongos_ping,
            mongos_balancer_lock_state,
            mongos_balancer_lock_timestamp,
        ):
            descs.extend(metric.describe())
        return descs


def get_sharding_status(client: Any) -> ShardingStats:
    """Gather balancer, changelog, topology and mongos state of the cluster."""
    return ShardingStats(
        is_balanced=is_cluster_balanced(client),
        balancer_enabled=is_balancer_enabled(client),
        changelog=get_sharding_changelog_status(client),
        topology=get_sharding_topo_status(client),
        mongos=get_mongos_info(client),
        balancer_lock=get_mongos_balancer_lock(client),
    )