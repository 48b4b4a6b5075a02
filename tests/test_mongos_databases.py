import logging

from pymongo.errors import OperationFailure

from mongometrics.mongos_databases import (
    CollectionStatList,
    CollectionStatus,
    DatabaseStatList,
    DatabaseStatus,
    RawStatus,
    collection_size,
    collection_object_count,
    data_size,
    get_collection_stat_list,
    get_database_stat_list,
    index_size,
)


class _FakeDatabase:
    def __init__(self, name, collections, coll_error=None, failing=(), db_stats=None):
        self.name = name
        self.collections = collections
        self.coll_error = coll_error
        self.failing = set(failing)
        self.db_stats = db_stats
        self.calls = []

    def list_collection_names(self):
        if self.coll_error is not None:
            raise self.coll_error
        return list(self.collections)

    def command(self, name, value=1, **kwargs):
        self.calls.append((name, value, kwargs))
        if name == "collStats":
            if value in self.failing:
                raise OperationFailure("collStats failed")
            return self.collections[value]
        if name == "dbStats":
            if self.db_stats is None:
                raise OperationFailure("dbStats failed")
            return self.db_stats
        raise AssertionError(name)


class _FakeClient:
    def __init__(self, databases, error=None):
        self.databases = databases
        self.error = error

    def list_database_names(self):
        if self.error is not None:
            raise self.error
        return list(self.databases)

    def __getitem__(self, name):
        return self.databases[name]


def _values(samples, metric):
    return {s.label_values: s.value for s in samples if s.desc == metric.desc}


def test_collection_status_from_document():
    doc = {"size": 100, "count": 4, "avgObjSize": 25, "storageSize": 4096,
           "totalIndexSize": 8192, "ok": 1.0}
    status = CollectionStatus.from_document(doc, "shop", "orders")
    assert status == CollectionStatus("shop", "orders", 100, 4, 25, 4096, 0, 8192)


def test_collection_stat_list_export():
    stat_list = CollectionStatList([CollectionStatus("cs_export", "items", size=10, count=2)])
    samples = stat_list.export()
    assert _values(samples, collection_size)[("cs_export", "items")] == 10
    assert _values(samples, collection_object_count)[("cs_export", "items")] == 2
    assert collection_size.desc.fq_name == "mongodb_mongos_db_coll_size"


def test_collection_describe_covers_exported_families():
    stat_list = CollectionStatList([CollectionStatus("cs_desc", "c")])
    exported = {s.desc for s in stat_list.export()}
    assert exported == set(stat_list.describe())


def test_get_collection_stat_list_collects_and_skips_failures():
    db = _FakeDatabase(
        "gcs_db",
        {"good": {"size": 7, "count": 1}, "bad": {}},
        failing=["bad"],
    )
    result = get_collection_stat_list(_FakeClient({"gcs_db": db}))
    assert [(m.database, m.name, m.size) for m in result.members] == [("gcs_db", "good", 7)]
    assert ("collStats", "good", {"scale": 1}) in db.calls


def test_get_collection_stat_list_skips_database_on_error():
    broken = _FakeDatabase("gcs_broken", {}, coll_error=OperationFailure("no access"))
    fine = _FakeDatabase("gcs_fine", {"c": {"count": 3}})
    result = get_collection_stat_list(_FakeClient({"gcs_broken": broken, "gcs_fine": fine}))
    assert [m.database for m in result.members] == ["gcs_fine"]


def test_get_collection_stat_list_none_when_names_fail(caplog):
    client = _FakeClient({}, error=OperationFailure("unauthorized"))
    with caplog.at_level(logging.ERROR, logger="mongometrics.mongos_databases"):
        assert get_collection_stat_list(client) is None
        assert get_collection_stat_list(client) is None
    assert len([r for r in caplog.records if "unauthorized" in r.getMessage()]) == 1


def test_database_status_from_document_with_shards():
    doc = {
        "db": "app",
        "dataSize": 500,
        "raw": {
            "rs0/host1:27017,host2:27017": {"db": "app", "dataSize": 200, "indexes": 3},
            "rs1/host3:27017": {"db": "app", "dataSize": 300},
        },
    }
    status = DatabaseStatus.from_document(doc)
    assert status.name == "app"
    assert status.data_size == 500
    assert status.shards["rs1/host3:27017"] == RawStatus(name="app", data_size=300)
    assert status.shards["rs0/host1:27017,host2:27017"].indexes == 3


def test_database_stat_list_export_and_reset():
    status = DatabaseStatus(
        name="dbx",
        shards={"rs0/host1:27017": RawStatus(name="dbx", index_size=11, data_size=22)},
    )
    samples = DatabaseStatList([status]).export()
    assert _values(samples, index_size) == {("dbx", "rs0"): 11}
    assert _values(samples, data_size) == {("dbx", "rs0"): 22}
    assert DatabaseStatList().export() == []


def test_database_without_shards_exports_nothing():
    samples = DatabaseStatList([DatabaseStatus(name="plain", data_size=5)]).export()
    assert samples == []


def test_get_database_stat_list():
    db = _FakeDatabase("gd", {}, db_stats={"db": "gd", "objects": 9})
    result = get_database_stat_list(_FakeClient({"gd": db}))
    assert [(m.name, m.objects) for m in result.members] == [("gd", 9)]
    assert db.calls == [("dbStats", 1, {"scale": 1})]


def test_get_database_stat_list_none_on_failure():
    ok = _FakeDatabase("a", {}, db_stats={"db": "a"})
    broken = _FakeDatabase("b", {}, db_stats=None)
    assert get_database_stat_list(_FakeClient({"a": ok, "b": broken})) is None
    failing = _FakeClient({}, error=OperationFailure("denied"))
    assert get_database_stat_list(failing) is None