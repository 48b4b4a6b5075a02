import pytest
from pymongo.errors import OperationFailure

from mongometrics.top import (
    TopCounterStats,
    TopStats,
    TopStatus,
    export_top_stats,
    get_top_stats,
    get_top_status,
    top_count_total_desc,
    top_time_seconds_total_desc,
)

COLLECTIONS = [
    "admin.system.roles",
    "admin.system.version",
    "dummy.collection",
    "dummy.users",
    "local.oplog.rs",
    "local.startup_log",
    "local.system.replset",
]

DUMMY_USERS = {
    "total": {"time": 1095531, "count": 17428},
    "readLock": {"time": 267953, "count": 17420},
    "writeLock": {"time": 827578, "count": 8},
    "queries": {"time": 899, "count": 10},
    "getmore": {"time": 0, "count": 0},
    "insert": {"time": 826929, "count": 5},
    "update": {"time": 456, "count": 2},
    "remove": {"time": 193, "count": 1},
    "commands": {"time": 0, "count": 0},
}


def _top_document():
    totals = {"note": "all times in micros"}
    for name in COLLECTIONS:
        totals[name] = {"total": {"time": 1, "count": 1}}
    totals["dummy.users"] = DUMMY_USERS
    return {"totals": totals, "ok": 1.0}


class _Admin:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def command(self, name):
        assert name == "top"
        if self.error is not None:
            raise self.error
        return self.result


class _Client:
    def __init__(self, result=None, error=None):
        self.admin = _Admin(result, error)


def test_parser_top_status():
    status = TopStatus.from_document(_top_document())
    assert len(status.top_stats) == len(COLLECTIONS)
    for name in COLLECTIONS:
        assert name in status.top_stats

    stats = status.top_stats["dummy.users"]
    assert stats.total.time == 1095531
    assert stats.total.count == 17428
    assert stats.read_lock.time == 267953
    assert stats.read_lock.count == 17420
    assert stats.write_lock.time == 827578
    assert stats.write_lock.count == 8
    assert stats.queries.time == 899
    assert stats.queries.count == 10
    assert stats.get_more.time == 0
    assert stats.get_more.count == 0
    assert stats.insert.time == 826929
    assert stats.insert.count == 5
    assert stats.update.time == 456
    assert stats.update.count == 2
    assert stats.remove.time == 193
    assert stats.remove.count == 1
    assert stats.commands.time == 0
    assert stats.commands.count == 0


def test_missing_sections_default_to_zero():
    stats = TopStats.from_document({"total": {"time": 5}})
    assert stats.total == TopCounterStats(time=5.0, count=0.0)
    assert stats.insert == TopCounterStats()


def test_export_labels_and_values():
    status = TopStatus.from_document({"totals": {"dummy.users": DUMMY_USERS}})
    samples = status.export()
    assert len(samples) == 18
    counts = {s.label_values: s.value for s in samples if s.desc == top_count_total_desc}
    times = {s.label_values: s.value for s in samples if s.desc == top_time_seconds_total_desc}
    assert counts[("Total", "dummy", "users")] == 17428
    assert counts[("ReadLock", "dummy", "users")] == 17420
    assert times[("Insert", "dummy", "users")] == pytest.approx(0.826929)


def test_export_splits_namespace_on_first_dot():
    stats = {"local.oplog.rs": TopStats(total=TopCounterStats(time=2_000_000, count=3))}
    samples = export_top_stats(stats)
    first, second = samples[0], samples[1]
    assert first.labels == {"type": "Total", "database": "local", "collection": "oplog.rs"}
    assert first.value == 3
    assert second.value == 2.0


def test_export_empty():
    assert TopStatus().export() == []


def test_get_top_stats_uses_client():
    status = get_top_stats(_Client(_top_document()))
    assert status.top_stats["dummy.users"].insert.count == 5


def test_get_top_stats_raises_on_error():
    with pytest.raises(OperationFailure):
        get_top_stats(_Client(error=OperationFailure("denied")))


def test_get_top_status_returns_none_on_error():
    assert get_top_status(_Client(error=OperationFailure("denied"))) is None


def test_get_top_status_success():
    status = get_top_status(_Client(_top_document()))
    assert sorted(status.top_stats) == sorted(COLLECTIONS)