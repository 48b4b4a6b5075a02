import pytest

from mongometrics.mongod_storage import (
    NAMESPACE,
    StorageEngineStats,
    WiredTigerStats,
    WTCacheStats,
    WTConcurrentTransactionsStats,
    WTSessionStats,
    WTTransactionStats,
)


def _find(samples, name, **labels):
    matches = [s for s in samples if s.name == name and s.labels == labels]
    assert len(matches) == 1, f"{name} {labels}: {len(matches)} matches"
    return matches[0].value


WT_DOC = {
    "block-manager": {"blocks read": 123, "bytes written": 4567},
    "cache": {
        "tracked dirty bytes in the cache": 2048,
        "maximum bytes configured": 1073741824,
        "percentage overhead": 8,
    },
    "transaction": {
        "transaction checkpoint total time (msecs)": 321,
        "transaction checkpoint min time (msecs)": 3,
        "transaction checkpoint max time (msecs)": 77,
    },
    "log": {"log write operations": 999},
    "session": {"open cursor count": 11, "open session count": 22},
    "concurrentTransactions": {
        "read": {"out": 1, "available": 127, "totalTickets": 128},
        "write": {"out": 2, "available": 126, "totalTickets": 128},
    },
}


def test_storage_engine_export_marks_engine():
    samples = StorageEngineStats.from_document({"name": "wiredTiger"}).export()
    assert _find(samples, f"{NAMESPACE}_storage_engine", engine="wiredTiger") == 1.0


def test_storage_engine_describe():
    descs = StorageEngineStats(name="mmapv1").describe()
    assert [d.fq_name for d in descs] == [f"{NAMESPACE}_storage_engine"]
    assert descs[0].label_names == ("engine",)


def test_cache_from_document_reads_fields():
    stats = WTCacheStats.from_document(WT_DOC["cache"])
    assert stats.bytes_dirty == 2048
    assert stats.max_bytes == 1073741824
    assert stats.percent_overhead == 8
    assert stats.pages_dirty == 0


def test_missing_keys_default_to_zero():
    stats = WTTransactionStats.from_document({})
    assert stats == WTTransactionStats()
    assert stats.begins == 0


def test_concurrent_transactions_parse():
    stats = WTConcurrentTransactionsStats.from_document(WT_DOC["concurrentTransactions"])
    assert stats.read.available == 127
    assert stats.write.out == 2
    assert stats.write.total_tickets == 128


def test_wiredtiger_export_values():
    samples = WiredTigerStats.from_document(WT_DOC).export()
    assert _find(samples, f"{NAMESPACE}_wiredtiger_blockmanager_blocks_total", type="read") == 123
    assert _find(samples, f"{NAMESPACE}_wiredtiger_blockmanager_bytes_total", type="written") == 4567
    assert _find(samples, f"{NAMESPACE}_wiredtiger_cache_bytes", type="dirty") == 2048
    assert _find(samples, f"{NAMESPACE}_wiredtiger_cache_max_bytes") == 1073741824
    assert _find(samples, f"{NAMESPACE}_wiredtiger_cache_overhead_percent") == 8
    assert _find(samples, f"{NAMESPACE}_wiredtiger_log_operations_total", type="write") == 999
    assert _find(samples, f"{NAMESPACE}_wiredtiger_session_open_cursors_total") == 11
    assert _find(samples, f"{NAMESPACE}_wiredtiger_session_open_sessions_total") == 22


def test_wiredtiger_export_transactions_and_tickets():
    samples = WiredTigerStats.from_document(WT_DOC).export()
    assert (
        _find(samples, f"{NAMESPACE}_wiredtiger_transactions_checkpoint_milliseconds_total")
        == 321
    )
    assert (
        _find(samples, f"{NAMESPACE}_wiredtiger_transactions_checkpoint_milliseconds", type="min")
        == 3
    )
    assert (
        _find(samples, f"{NAMESPACE}_wiredtiger_transactions_checkpoint_milliseconds", type="max")
        == 77
    )
    assert (
        _find(samples, f"{NAMESPACE}_wiredtiger_concurrent_transactions_available_tickets", type="read")
        == 127
    )


def test_describe_covers_only_present_sections():
    stats = WiredTigerStats(session=WTSessionStats(cursors=5, sessions=6))
    names = [d.fq_name for d in stats.describe()]
    assert names == [
        f"{NAMESPACE}_wiredtiger_session_open_cursors_total",
        f"{NAMESPACE}_wiredtiger_session_open_sessions_total",
    ]


def test_cache_describe_leaves_out_bytes_total():
    names = {d.fq_name for d in WTCacheStats().describe()}
    assert f"{NAMESPACE}_wiredtiger_cache_bytes_total" not in names
    assert f"{NAMESPACE}_wiredtiger_cache_bytes" in names


def test_export_collects_all_families_even_without_sections():
    samples = WiredTigerStats().export()
    names = {s.name for s in samples}
    assert f"{NAMESPACE}_wiredtiger_session_open_sessions_total" in names
    assert f"{NAMESPACE}_wiredtiger_cache_max_bytes" in names
    assert f"{NAMESPACE}_wiredtiger_log_records_scanned_total" in names


@pytest.mark.parametrize(
    "key",
    ["block-manager", "cache", "log", "session", "transaction", "concurrentTransactions"],
)
def test_from_document_section_presence(key):
    stats = WiredTigerStats.from_document({key: {}})
    present = [
        name
        for name in (
            "block_manager",
            "cache",
            "log",
            "session",
            "transaction",
            "concurrent_transactions",
        )
        if getattr(stats, name) is not None
    ]
    assert len(present) == 1