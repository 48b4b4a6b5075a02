"""serverStatus sections shared by mongos: asserts, connections, network, metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .metrics import Desc, Metric, MetricType, Sample

NAMESPACE = "mongodb_mongos"

_C = MetricType.COUNTER
_G = MetricType.GAUGE

asserts_total = Metric(
    _C,
    "asserts_total",
    "The asserts document reports the number of asserts on the database. While assert "
    "errors are typically uncommon, if there are non-zero values for the asserts, you "
    "should check the log file for the mongod process for more information. In many cases "
    "these errors are trivial, but are worth investigating.",
    ["type"],
    namespace=NAMESPACE,
)

connections = Metric(
    _G,
    "connections",
    "The connections sub document data regarding the current status of incoming "
    "connections and availability of the database server. Use these values to assess the "
    "current load and capacity requirements of the server",
    ["state"],
    namespace=NAMESPACE,
)
connections_metrics_created_total = Metric(
    _C,
    "created_total",
    "totalCreated provides a count of all incoming connections created to the server. "
    "This number includes connections that have since closed",
    namespace=NAMESPACE,
    subsystem="connections_metrics",
)

network_bytes_total = Metric(
    _C,
    "network_bytes_total",
    "The network data structure contains data regarding MongoDB’s network use",
    ["state"],
    namespace=NAMESPACE,
)
network_metrics_num_requests_total = Metric(
    _C,
    "num_requests_total",
    "The numRequests field is a counter of the total number of distinct requests that the "
    "server has received. Use this value to provide context for the bytesIn and bytesOut "
    "values to ensure that MongoDB’s network utilization is consistent with expectations "
    "and application use",
    namespace=NAMESPACE,
    subsystem="network_metrics",
)

metrics_cursor_timed_out_total = Metric(
    _C,
    "timed_out_total",
    "timedOut provides the total number of cursors that have timed out since the server "
    "process started. If this number is large or growing at a regular rate, this may "
    "indicate an application error",
    namespace=NAMESPACE,
    subsystem="metrics_cursor",
)
metrics_cursor_open = Metric(
    _G,
    "metrics_cursor_open",
    "The open is an embedded document that contains data regarding open cursors",
    ["state"],
    namespace=NAMESPACE,
)
metrics_get_last_error_wtime_num_total = Metric(
    _G,
    "num_total",
    "num reports the total number of getLastError operations with a specified write "
    "concern (i.e. w) that wait for one or more members of a replica set to acknowledge "
    "the write operation (i.e. a w value greater than 1.)",
    namespace=NAMESPACE,
    subsystem="metrics_get_last_error_wtime",
)
metrics_get_last_error_wtime_total_milliseconds = Metric(
    _C,
    "total_milliseconds",
    "total_millis reports the total amount of time in milliseconds that the mongod has "
    "spent performing getLastError operations with write concern (i.e. w) that wait for "
    "one or more members of a replica set to acknowledge the write operation (i.e. a w "
    "value greater than 1.)",
    namespace=NAMESPACE,
    subsystem="metrics_get_last_error_wtime",
)
metrics_get_last_error_wtimeouts_total = Metric(
    _C,
    "wtimeouts_total",
    "wtimeouts reports the number of times that write concern operations have timed out "
    "as a result of the wtimeout threshold to getLastError.",
    namespace=NAMESPACE,
    subsystem="metrics_get_last_error",
)


def _num(doc: Mapping[str, Any], key: str) -> float:
    value = doc.get(key)
    return float(value) if value is not None else 0.0


@dataclass
class AssertsStats:
    regular: float = 0.0
    warning: float = 0.0
    msg: float = 0.0
    user: float = 0.0
    rollovers: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "AssertsStats":
        return cls(*(_num(doc, k) for k in ("regular", "warning", "msg", "user", "rollovers")))

    def export(self) -> list[Sample]:
        for label, value in (
            ("regular", self.regular),
            ("warning", self.warning),
            ("msg", self.msg),
            ("user", self.user),
            ("rollovers", self.rollovers),
        ):
            asserts_total.set(value, label)
        return asserts_total.collect()

    def describe(self) -> list[Desc]:
        return asserts_total.describe()


@dataclass
class ConnectionStats:
    current: float = 0.0
    available: float = 0.0
    total_created: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ConnectionStats":
        return cls(_num(doc, "current"), _num(doc, "available"), _num(doc, "totalCreated"))

    def export(self) -> list[Sample]:
        connections.set(self.current, "current")
        connections.set(self.available, "available")
        samples = connections.collect()
        connections_metrics_created_total.set(self.total_created)
        return samples + connections_metrics_created_total.collect()

    def describe(self) -> list[Desc]:
        return connections.describe() + connections_metrics_created_total.describe()


@dataclass
class NetworkStats:
    bytes_in: float = 0.0
    bytes_out: float = 0.0
    num_requests: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "NetworkStats":
        return cls(_num(doc, "bytesIn"), _num(doc, "bytesOut"), _num(doc, "numRequests"))

    def export(self) -> list[Sample]:
        network_bytes_total.set(self.bytes_in, "in_bytes")
        network_bytes_total.set(self.bytes_out, "out_bytes")
        network_metrics_num_requests_total.set(self.num_requests)
        return network_metrics_num_requests_total.collect() + network_bytes_total.collect()

    def describe(self) -> list[Desc]:
        return network_metrics_num_requests_total.describe() + network_bytes_total.describe()


@dataclass
class BenchmarkStats:
    num: float = 0.0
    total_millis: float = 0.0


@dataclass
class GetLastErrorStats:
    wtimeouts: float = 0.0
    wtime: BenchmarkStats = field(default_factory=BenchmarkStats)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "GetLastErrorStats":
        wtime = doc.get("wtime") or {}
        return cls(
            _num(doc, "wtimeouts"),
            BenchmarkStats(_num(wtime, "num"), _num(wtime, "totalMillis")),
        )

    def export(self) -> None:
        """Update the getLastError metrics; collected by MetricsStats."""
        metrics_get_last_error_wtime_num_total.set(self.wtime.num)
        metrics_get_last_error_wtime_total_milliseconds.set(self.wtime.total_millis)
        metrics_get_last_error_wtimeouts_total.set(self.wtimeouts)


@dataclass
class CursorStatsOpen:
    no_timeout: float = 0.0
    pinned: float = 0.0
    total: float = 0.0


@dataclass
class CursorStats:
    timed_out: float = 0.0
    open: CursorStatsOpen = field(default_factory=CursorStatsOpen)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "CursorStats":
        open_doc = doc.get("open") or {}
        return cls(
            _num(doc, "timedOut"),
            CursorStatsOpen(
                _num(open_doc, "noTimeout"), _num(open_doc, "pinned"), _num(open_doc, "total")
            ),
        )

    def export(self) -> None:
        """Update the cursor metrics; collected by MetricsStats."""
        metrics_cursor_timed_out_total.set(self.timed_out)
        metrics_cursor_open.set(self.open.no_timeout, "noTimeout")
        metrics_cursor_open.set(self.open.pinned, "pinned")
        metrics_cursor_open.set(self.open.total, "total")


_METRICS_STATS_FAMILIES = (
    metrics_cursor_timed_out_total,
    metrics_cursor_open,
    metrics_get_last_error_wtime_num_total,
    metrics_get_last_error_wtime_total_milliseconds,
    metrics_get_last_error_wtimeouts_total,
)


@dataclass
class MetricsStats:
    get_last_error: GetLastErrorStats | None = None
    cursor: CursorStats | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "MetricsStats":
        gle = doc.get("getLastError")
        cursor = doc.get("cursor")
        return cls(
            GetLastErrorStats.from_document(gle) if gle is not None else None,
            CursorStats.from_document(cursor) if cursor is not None else None,
        )

    def export(self) -> list[Sample]:
        if self.get_last_error is not None:
            self.get_last_error.export()
        if self.cursor is not None:
            self.cursor.export()
        return [s for metric in _METRICS_STATS_FAMILIES for s in metric.collect()]

    def describe(self) -> list[Desc]:
        return [d for metric in _METRICS_STATS_FAMILIES for d in metric.describe()]