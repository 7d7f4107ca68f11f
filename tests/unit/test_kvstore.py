"""
Unit tests for context_cache/persist/sqlite_store.py

Tests thread-safe SQLite entry, bucket and meta operations with WAL mode.
"""
import threading
import time

import pytest

from context_cache.persist.sqlite_store import KVStore


def _row(entry_id, scope="u1", created_at=0.0, value=b"{}", embedding=None):
    return (entry_id, scope, created_at, value, embedding)


def test_put_get_delete_roundtrip(kv):
    """Basic put/get/delete operations."""
    kv.put_entry(_row("e1", value=b"payload", embedding=b"\x00\x01"))

    row = kv.get_entry("e1")
    assert row == ("e1", "u1", 0.0, b"payload", b"\x00\x01")

    assert kv.delete_entry("e1") is True
    assert kv.get_entry("e1") is None
    assert kv.delete_entry("e1") is False


def test_put_replaces_existing(kv):
    kv.put_entry(_row("e1", value=b"old"))
    kv.put_entry(_row("e1", value=b"new"))

    assert kv.count_entries() == 1
    assert kv.get_entry("e1")[3] == b"new"


def test_persistence_after_reopen(tmp_path):
    """Values should persist after closing and reopening store."""
    db_path = tmp_path / "persist_test.db"

    store1 = KVStore(db_path)
    store1.put_entry(_row("e1"))
    store1.put_bucket("0101", ["e1"])
    store1.set_meta("lsh_planes", b"[]")
    store1.close()

    store2 = KVStore(db_path)
    assert store2.get_entry("e1") is not None
    assert store2.all_buckets() == {"0101": ["e1"]}
    assert store2.get_meta("lsh_planes") == b"[]"
    store2.close()


def test_delete_scope_only_touches_that_scope(kv):
    kv.put_entry(_row("a1", scope="a"))
    kv.put_entry(_row("a2", scope="a"))
    kv.put_entry(_row("b1", scope="b"))

    assert sorted(kv.delete_scope("a")) == ["a1", "a2"]
    assert kv.count_entries() == 1
    assert kv.get_entry("b1") is not None


def test_delete_oldest_by_created_at(kv):
    for i, ts in enumerate([30.0, 10.0, 20.0, 40.0]):
        kv.put_entry(_row(f"e{i}", created_at=ts))

    assert kv.delete_oldest(2) == ["e1", "e2"]
    assert kv.count_entries() == 2


def test_iter_entries_ordered_across_batches(kv):
    """Iteration spans several batches and keeps created_at order."""
    for i in range(10):
        kv.put_entry(_row(f"e{i:02d}", created_at=float(10 - i)))

    ids = [row[0] for row in kv.iter_entries(batch_size=3)]

    assert len(ids) == 10
    assert ids == [f"e{i:02d}" for i in reversed(range(10))]


def test_iter_entries_ties_on_created_at(kv):
    for name in ("c", "a", "b"):
        kv.put_entry(_row(name, created_at=5.0))

    assert [row[0] for row in kv.iter_entries(batch_size=2)] == ["a", "b", "c"]


def test_buckets_skip_unreadable_rows(kv):
    kv.put_bucket("0000", ["x", "y"])
    kv._conn.execute("INSERT INTO buckets (hash, entries) VALUES (?, ?)", ("1111", "not json"))
    kv._conn.commit()

    assert kv.all_buckets() == {"0000": ["x", "y"]}

    kv.delete_bucket("0000")
    assert kv.all_buckets() == {}


def test_parallel_writes_no_crash(kv):
    """Parallel writes from multiple threads should not crash."""
    num_threads = 10
    writes_per_thread = 20
    errors = []

    def write_task(thread_id):
        try:
            for i in range(writes_per_thread):
                kv.put_entry(_row(f"t{thread_id}_{i}", created_at=time.time()))
                time.sleep(0.001)  # Small delay to encourage interleaving
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=write_task, args=(i,)) for i in range(num_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(errors) == 0
    assert kv.count_entries() == num_threads * writes_per_thread


def test_purge_table(kv):
    kv.put_entry(_row("e1"))
    kv.put_entry(_row("e2"))

    assert kv.purge_table("entries") == 2
    assert kv.count_entries() == 0

    with pytest.raises(ValueError):
        kv.purge_table("sqlite_master")


def test_stats(kv):
    kv.put_entry(_row("e1", created_at=100.0, value=b"abcd"))
    kv.put_entry(_row("e2", created_at=200.0, value=b"ab", embedding=b"\x00" * 8))

    stats = kv.stats()

    assert stats["count"] == 2
    assert stats["total_bytes"] == 4 + 2 + 8
    assert stats["oldest_created_at"] == 100.0
    assert stats["newest_created_at"] == 200.0


def test_stats_empty(kv):
    assert kv.stats() == {
        "count": 0,
        "total_bytes": 0,
        "oldest_created_at": 0.0,
        "newest_created_at": 0.0,
    }


def test_context_manager(tmp_path):
    with KVStore(tmp_path / "ctx.db") as store:
        store.put_entry(_row("e1"))
        assert store.count_entries() == 1


def test_vacuum_after_bulk_delete(tmp_path):
    """Vacuum after a bulk delete leaves a usable, empty store."""
    store = KVStore(tmp_path / "vacuum_test.db")

    for i in range(500):
        store.put_entry(_row(f"e{i}", created_at=float(i), value=b"x" * 1000))
    assert len(store.delete_oldest(500)) == 500

    store.vacuum()

    assert store.count_entries() == 0
    store.put_entry(_row("after"))
    assert store.get_entry("after") is not None
    store.close()
