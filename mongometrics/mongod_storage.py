"""Storage engine and WiredTiger sections of mongod serverStatus."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, TypeVar

from .metrics import Desc, Metric, MetricType, Sample

NAMESPACE = "mongodb_mongod"

_C = MetricType.COUNTER
_G = MetricType.GAUGE

storage_engine = Metric(
    _C,
    "storage_engine",
    "The storage engine used by the MongoDB instance",
    ["engine"],
    namespace=NAMESPACE,
)

wt_block_manager_blocks_total = Metric(
    _C,
    "blocks_total",
    "The total number of blocks read by the WiredTiger BlockManager",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_blockmanager",
)
wt_block_manager_bytes_total = Metric(
    _C,
    "bytes_total",
    "The total number of bytes read by the WiredTiger BlockManager",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_blockmanager",
)

wt_cache_pages = Metric(
    _G,
    "pages",
    "The current number of pages in the WiredTiger Cache",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_pages_total = Metric(
    _C,
    "pages_total",
    "The total number of pages read into/from the WiredTiger Cache",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_bytes = Metric(
    _G,
    "bytes",
    "The current size of data in the WiredTiger Cache in bytes",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_max_bytes = Metric(
    _G,
    "max_bytes",
    "The maximum size of data in the WiredTiger Cache in bytes",
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_bytes_total = Metric(
    _C,
    "bytes_total",
    "The total number of bytes read into/from the WiredTiger Cache",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_evicted_total = Metric(
    _C,
    "evicted_total",
    "The total number of pages evicted from the WiredTiger Cache",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)
wt_cache_percent_overhead = Metric(
    _G,
    "overhead_percent",
    "The percentage overhead of the WiredTiger Cache",
    namespace=NAMESPACE,
    subsystem="wiredtiger_cache",
)

wt_transactions_total = Metric(
    _C,
    "total",
    "The total number of transactions WiredTiger has handled",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_transactions",
)
wt_transactions_total_checkpoint_ms = Metric(
    _C,
    "checkpoint_milliseconds_total",
    "The total time in milliseconds transactions have checkpointed in WiredTiger",
    namespace=NAMESPACE,
    subsystem="wiredtiger_transactions",
)
wt_transactions_checkpoint_ms = Metric(
    _G,
    "checkpoint_milliseconds",
    "The time in milliseconds transactions have checkpointed in WiredTiger",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_transactions",
)
wt_transactions_checkpoints_running = Metric(
    _G,
    "running_checkpoints",
    "The number of currently running checkpoints in WiredTiger",
    namespace=NAMESPACE,
    subsystem="wiredtiger_transactions",
)

wt_log_records_scanned_total = Metric(
    _C,
    "records_scanned_total",
    "The total number of records scanned by log scan in the WiredTiger log",
    namespace=NAMESPACE,
    subsystem="wiredtiger_log",
)
wt_log_records_total = Metric(
    _C,
    "records_total",
    "The total number of compressed/uncompressed records written to the WiredTiger log",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_log",
)
wt_log_bytes_total = Metric(
    _C,
    "bytes_total",
    "The total number of bytes written to the WiredTiger log",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_log",
)
wt_log_operations_total = Metric(
    _C,
    "operations_total",
    "The total number of WiredTiger log operations",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_log",
)

wt_open_cursors = Metric(
    _G,
    "open_cursors_total",
    "The total number of cursors opened in WiredTiger",
    namespace=NAMESPACE,
    subsystem="wiredtiger_session",
)
wt_open_sessions = Metric(
    _G,
    "open_sessions_total",
    "The total number of sessions opened in WiredTiger",
    namespace=NAMESPACE,
    subsystem="wiredtiger_session",
)

wt_concurrent_transactions_out = Metric(
    _G,
    "out_tickets",
    "The number of tickets that are currently in use (out) in WiredTiger",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_concurrent_transactions",
)
wt_concurrent_transactions_available = Metric(
    _G,
    "available_tickets",
    "The number of tickets that are available in WiredTiger",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_concurrent_transactions",
)
wt_concurrent_transactions_total_tickets = Metric(
    _G,
    "total_tickets",
    "The total number of tickets that are available in WiredTiger",
    ["type"],
    namespace=NAMESPACE,
    subsystem="wiredtiger_concurrent_transactions",
)

_T = TypeVar("_T")


def _stat(key: str) -> Any:
    return field(default=0.0, metadata={"bson": key})


def _from_numbers(cls: type[_T], doc: Mapping[str, Any]) -> _T:
    values = {}
    for f in fields(cls):  # type: ignore[arg-type]
        raw = doc.get(f.metadata["bson"])
        values[f.name] = float(raw) if raw is not None else 0.0
    return cls(**values)


def _describe_all(*metrics: Metric) -> list[Desc]:
    return [d for metric in metrics for d in metric.describe()]


@dataclass
class StorageEngineStats:
    name: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "StorageEngineStats":
        return cls(str(doc.get("name") or ""))

    def export(self) -> list[Sample]:
        storage_engine.set(1, self.name)
        return storage_engine.collect()

    def describe(self) -> list[Desc]:
        return storage_engine.describe()


@dataclass
class WTBlockManagerStats:
    mapped_bytes_read: float = _stat("mapped bytes read")
    bytes_read: float = _stat("bytes read")
    bytes_written: float = _stat("bytes written")
    mapped_blocks_read: float = _stat("mapped blocks read")
    blocks_pre_loaded: float = _stat("blocks pre-loaded")
    blocks_read: float = _stat("blocks read")
    blocks_written: float = _stat("blocks written")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTBlockManagerStats":
        return _from_numbers(cls, doc)

    def update(self) -> None:
        """Set the block manager metrics; collected by WiredTigerStats."""
        wt_block_manager_blocks_total.set(self.blocks_read, "read")
        wt_block_manager_blocks_total.set(self.mapped_blocks_read, "read_mapped")
        wt_block_manager_blocks_total.set(self.blocks_pre_loaded, "pre_loaded")
        wt_block_manager_blocks_total.set(self.blocks_written, "written")
        wt_block_manager_bytes_total.set(self.bytes_read, "read")
        wt_block_manager_bytes_total.set(self.mapped_bytes_read, "read_mapped")
        wt_block_manager_bytes_total.set(self.bytes_written, "written")

    def describe(self) -> list[Desc]:
        return _describe_all(wt_block_manager_blocks_total, wt_block_manager_bytes_total)


@dataclass
class WTCacheStats:
    bytes_total: float = _stat("bytes currently in the cache")
    bytes_dirty: float = _stat("tracked dirty bytes in the cache")
    bytes_internal_pages: float = _stat(
        "tracked bytes belonging to internal pages in the cache"
    )
    bytes_leaf_pages: float = _stat("tracked bytes belonging to leaf pages in the cache")
    max_bytes: float = _stat("maximum bytes configured")
    bytes_read_into: float = _stat("bytes read into cache")
    bytes_written_from: float = _stat("bytes written from cache")
    evicted_unmodified: float = _stat("unmodified pages evicted")
    evicted_modified: float = _stat("modified pages evicted")
    percent_overhead: float = _stat("percentage overhead")
    pages_total: float = _stat("pages currently held in the cache")
    pages_read_into: float = _stat("pages read into cache")
    pages_written_from: float = _stat("pages written from cache")
    pages_dirty: float = _stat("tracked dirty pages in the cache")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTCacheStats":
        return _from_numbers(cls, doc)

    def update(self) -> None:
        """Set the cache metrics; collected by WiredTigerStats."""
        wt_cache_pages_total.set(self.pages_read_into, "read")
        wt_cache_pages_total.set(self.pages_written_from, "written")
        wt_cache_bytes_total.set(self.bytes_read_into, "read")
        wt_cache_bytes_total.set(self.bytes_written_from, "written")
        wt_cache_evicted_total.set(self.evicted_modified, "modified")
        wt_cache_evicted_total.set(self.evicted_unmodified, "unmodified")
        wt_cache_pages.set(self.pages_total, "total")
        wt_cache_pages.set(self.pages_dirty, "dirty")
        wt_cache_bytes.set(self.bytes_total, "total")
        wt_cache_bytes.set(self.bytes_dirty, "dirty")
        wt_cache_bytes.set(self.bytes_internal_pages, "internal_pages")
        wt_cache_bytes.set(self.bytes_leaf_pages, "leaf_pages")
        wt_cache_max_bytes.set(self.max_bytes)
        wt_cache_percent_overhead.set(self.percent_overhead)

    def describe(self) -> list[Desc]:
        return _describe_all(
            wt_cache_pages_total,
            wt_cache_evicted_total,
            wt_cache_pages,
            wt_cache_bytes,
            wt_cache_max_bytes,
            wt_cache_percent_overhead,
        )


@dataclass
class WTLogStats:
    total_buffer_size: float = _stat("total log buffer size")
    total_size_compressed: float = _stat("total size of compressed records")
    bytes_payload_data: float = _stat("log bytes of payload data")
    bytes_written: float = _stat("log bytes written")
    records_uncompressed: float = _stat("log records not compressed")
    records_compressed: float = _stat("log records compressed")
    records_processed_log_scan: float = _stat("records processed by log scan")
    max_log_size: float = _stat("maximum log file size")
    log_flushes: float = _stat("log flush operations")
    log_reads: float = _stat("log read operations")
    log_scans_double: float = _stat("log scan records requiring two reads")
    log_scans: float = _stat("log scan operations")
    log_syncs: float = _stat("log sync operations")
    log_sync_dirs: float = _stat("log sync_dir operations")
    log_writes: float = _stat("log write operations")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTLogStats":
        return _from_numbers(cls, doc)

    def update(self) -> None:
        """Set the log metrics; collected by WiredTigerStats."""
        wt_log_records_total.set(self.records_compressed, "compressed")
        wt_log_records_total.set(self.records_uncompressed, "uncompressed")
        wt_log_bytes_total.set(self.bytes_payload_data, "payload")
        wt_log_bytes_total.set(self.bytes_written, "written")
        wt_log_operations_total.set(self.log_reads, "read")
        wt_log_operations_total.set(self.log_writes, "write")
        wt_log_operations_total.set(self.log_scans, "scan")
        wt_log_operations_total.set(self.log_scans_double, "scan_double")
        wt_log_operations_total.set(self.log_syncs, "sync")
        wt_log_operations_total.set(self.log_sync_dirs, "sync_dir")
        wt_log_operations_total.set(self.log_flushes, "flush")
        wt_log_records_scanned_total.set(self.records_processed_log_scan)

    def describe(self) -> list[Desc]:
        return _describe_all(
            wt_log_records_total,
            wt_log_bytes_total,
            wt_log_operations_total,
            wt_log_records_scanned_total,
        )


@dataclass
class WTSessionStats:
    cursors: float = _stat("open cursor count")
    sessions: float = _stat("open session count")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTSessionStats":
        return _from_numbers(cls, doc)

    def update(self) -> None:
        """Set the session metrics; collected by WiredTigerStats."""
        wt_open_cursors.set(self.cursors)
        wt_open_sessions.set(self.sessions)

    def describe(self) -> list[Desc]:
        return _describe_all(wt_open_cursors, wt_open_sessions)


@dataclass
class WTTransactionStats:
    begins: float = _stat("transaction begins")
    checkpoints: float = _stat("transaction checkpoints")
    checkpoints_running: float = _stat("transaction checkpoint currently running")
    checkpoint_max_ms: float = _stat("transaction checkpoint max time (msecs)")
    checkpoint_min_ms: float = _stat("transaction checkpoint min time (msecs)")
    checkpoint_last_ms: float = _stat("transaction checkpoint most recent time (msecs)")
    checkpoint_total_ms: float = _stat("transaction checkpoint total time (msecs)")
    committed: float = _stat("transactions committed")
    cache_overflow_failure: float = _stat("transaction failures due to cache overflow")
    rolled_back: float = _stat("transactions rolled back")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTTransactionStats":
        return _from_numbers(cls, doc)

    def update(self) -> None:
        """Set the transaction metrics; collected by WiredTigerStats."""
        wt_transactions_total.set(self.begins, "begins")
        wt_transactions_total.set(self.checkpoints, "checkpoints")
        wt_transactions_total.set(self.committed, "committed")
        wt_transactions_total.set(self.rolled_back, "rolledback")
        wt_transactions_checkpoint_ms.set(self.checkpoint_min_ms, "min")
        wt_transactions_checkpoint_ms.set(self.checkpoint_max_ms, "max")
        wt_transactions_total_checkpoint_ms.set(self.checkpoint_total_ms)
        wt_transactions_checkpoints_running.set(self.checkpoints_running)

    def describe(self) -> list[Desc]:
        return _describe_all(
            wt_transactions_total,
            wt_transactions_total_checkpoint_ms,
            wt_transactions_checkpoint_ms,
            wt_transactions_checkpoints_running,
        )


@dataclass
class WTConcurrentTransactionsTypeStats:
    out: float = _stat("out")
    available: float = _stat("available")
    total_tickets: float = _stat("totalTickets")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTConcurrentTransactionsTypeStats":
        return _from_numbers(cls, doc)


@dataclass
class WTConcurrentTransactionsStats:
    read: WTConcurrentTransactionsTypeStats = field(
        default_factory=WTConcurrentTransactionsTypeStats
    )
    write: WTConcurrentTransactionsTypeStats = field(
        default_factory=WTConcurrentTransactionsTypeStats
    )

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WTConcurrentTransactionsStats":
        return cls(
            WTConcurrentTransactionsTypeStats.from_document(doc.get("read") or {}),
            WTConcurrentTransactionsTypeStats.from_document(doc.get("write") or {}),
        )

    def update(self) -> None:
        """Set the ticket metrics; collected by WiredTigerStats."""
        wt_concurrent_transactions_out.set(self.read.out, "read")
        wt_concurrent_transactions_out.set(self.write.out, "write")
        wt_concurrent_transactions_available.set(self.read.available, "read")
        wt_concurrent_transactions_available.set(self.write.available, "write")
        wt_concurrent_transactions_total_tickets.set(self.read.total_tickets, "read")
        wt_concurrent_transactions_total_tickets.set(self.write.total_tickets, "write")

    def describe(self) -> list[Desc]:
        return _describe_all(
            wt_concurrent_transactions_out,
            wt_concurrent_transactions_available,
            wt_concurrent_transactions_total_tickets,
        )


_WIREDTIGER_FAMILIES = (
    wt_block_manager_blocks_total,
    wt_block_manager_bytes_total,
    wt_cache_pages_total,
    wt_cache_bytes_total,
    wt_cache_evicted_total,
    wt_cache_pages,
    wt_cache_bytes,
    wt_cache_max_bytes,
    wt_cache_percent_overhead,
    wt_transactions_total,
    wt_transactions_total_checkpoint_ms,
    wt_transactions_checkpoint_ms,
    wt_transactions_checkpoints_running,
    wt_log_records_total,
    wt_log_bytes_total,
    wt_log_operations_total,
    wt_log_records_scanned_total,
    wt_open_cursors,
    wt_open_sessions,
    wt_concurrent_transactions_out,
    wt_concurrent_transactions_available,
    wt_concurrent_transactions_total_tickets,
)


@dataclass
class WiredTigerStats:
    block_manager: WTBlockManagerStats | None = None
    cache: WTCacheStats | None = None
    log: WTLogStats | None = None
    session: WTSessionStats | None = None
    transaction: WTTransactionStats | None = None
    concurrent_transactions: WTConcurrentTransactionsStats | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WiredTigerStats":
        def section(key: str, kind: Any) -> Any:
            sub = doc.get(key)
            return kind.from_document(sub) if sub is not None else None

        return cls(
            block_manager=section("block-manager", WTBlockManagerStats),
            cache=section("cache", WTCacheStats),
            log=section("log", WTLogStats),
            session=section("session", WTSessionStats),
            transaction=section("transaction", WTTransactionStats),
            concurrent_transactions=section(
                "concurrentTransactions", WTConcurrentTransactionsStats
            ),
        )

    def _sections(self) -> list[Any]:
        return [
            s
            for s in (
                self.block_manager,
                self.cache,
                self.transaction,
                self.log,
                self.session,
                self.concurrent_transactions,
            )
            if s is not None
        ]

    def export(self) -> list[Sample]:
        for section in self._sections():
            section.update()
        return [s for metric in _WIREDTIGER_FAMILIES for s in metric.collect()]

    def describe(self) -> list[Desc]:
        return [d for section in self._sections() for d in section.describe()]