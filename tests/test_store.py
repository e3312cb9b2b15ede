import sys
from dataclasses import replace

import pytest

from hygiene_core.store import SqliteStore, RegistryStore, open_store

SID = "S-1-5-21-1111-2222-3333-1001"


def test_missing_database_reads_as_empty(store):
    assert not store.root_exists()
    assert store.get(SID) is None
    assert store.list_records() == []
    assert store.read_version() is None
    assert store.delete(SID) is False
    # Reads must not create the store root
    assert not store.root_exists()


def test_upsert_creates_root_and_record(store):
    store.upsert(SID, "alice", "2026-01-02 03:04:05", "C:\\Users\\alice")

    assert store.root_exists()
    record = store.get(SID)
    assert record.username == "alice"
    assert record.last_logon == "2026-01-02 03:04:05"
    assert record.profile_path == "C:\\Users\\alice"


def test_upsert_is_keyed_by_identity(store):
    store.upsert(SID, "alice", "2026-01-01 00:00:00", "C:\\Users\\alice")
    store.upsert(SID, "alice.renamed", "2026-02-01 00:00:00", "C:\\Users\\alice")
    store.upsert(SID.lower(), "alice.renamed", "2026-03-01 00:00:00", None)

    records = store.list_records()
    assert len(records) == 1
    assert records[0].username == "alice.renamed"
    assert records[0].last_logon == "2026-03-01 00:00:00"


def test_upsert_without_path_keeps_existing_path(store):
    store.upsert(SID, "alice", "2026-01-01 00:00:00", "C:\\Users\\alice")
    store.upsert(SID, "alice", "2026-01-05 00:00:00", None)
    assert store.get(SID).profile_path == "C:\\Users\\alice"


def test_delete_removes_only_that_identity(store):
    other = "S-1-5-21-1111-2222-3333-1002"
    store.upsert(SID, "alice", "2026-01-01 00:00:00", None)
    store.upsert(other, "bob", "2026-01-01 00:00:00", None)

    assert store.delete(SID) is True
    assert store.delete(SID) is False
    assert [r.identity for r in store.list_records()] == [other]


def test_version_marker_round_trip(store):
    store.write_version("1.3.0")
    assert store.root_exists()
    assert store.read_version() == "1.3.0"
    store.write_version("1.4.0")
    assert store.read_version() == "1.4.0"


def test_destroy_removes_database(store):
    store.upsert(SID, "alice", "2026-01-01 00:00:00", None)
    store.write_version("1.3.0")
    store.destroy()
    assert not store.root_exists()
    assert store.list_records() == []


def test_open_store_selects_sqlite(settings):
    store = open_store(settings)
    assert isinstance(store, SqliteStore)
    assert store.db_path == settings.db_file


def test_open_store_rejects_unknown_backend(settings):
    with pytest.raises(ValueError):
        open_store(replace(settings, store_backend="etcd"))


@pytest.mark.skipif(sys.platform == "win32", reason="registry is available on Windows")
def test_registry_backend_falls_back_off_windows(settings):
    store = open_store(replace(settings, store_backend="registry"))
    assert isinstance(store, SqliteStore)


@pytest.mark.skipif(sys.platform != "win32", reason="needs winreg")
def test_registry_store_contract():
    import winreg
    root = r"Software\FleetHygieneTest\ProfileTracker"
    store = RegistryStore(root, hive=winreg.HKEY_CURRENT_USER)
    try:
        store.destroy()
        assert not store.root_exists()
        store.upsert(SID, "alice", "2026-01-01 00:00:00", "C:\\Users\\alice")
        store.upsert(SID, "alice", "2026-02-01 00:00:00", None)
        store.write_version("1.3.0")
        assert store.read_version() == "1.3.0"
        records = store.list_records()
        assert len(records) == 1
        assert records[0].last_logon == "2026-02-01 00:00:00"
        assert records[0].profile_path == "C:\\Users\\alice"
        assert store.delete(SID) is True
        assert store.get(SID) is None
    finally:
        store.destroy()
        try:
            winreg.DeleteKey(winreg.HKEY_CURRENT_USER, r"Software\FleetHygieneTest")
        except OSError:
            pass
