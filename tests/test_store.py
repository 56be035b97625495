"""
Tests for the Key-Value Store

These tests verify the basic KVStore operations:
- set(): Insert or update key-value pairs, optionally conditioned (NX/XX)
- get(): Retrieve values by key
- getset(): Swap a value and return the previous one
- delete(): Remove key-value pairs
- exists(): Check if key exists

Run with: python -m pytest tests/test_store.py -v
"""

import threading

import pytest
from kvwire.cache.store import KVStore


class TestKVStoreSet:
    """Test set() method."""

    def test_set_new_key(self, store: KVStore):
        """Test inserting a new key-value pair."""
        generation = store.set("key1", "value1")
        assert generation is not None
        assert store.size() == 1

    def test_set_update_existing_key(self, store: KVStore):
        """Test updating an existing key's value."""
        store.set("key1", "value1")
        store.set("key1", "value2")

        assert store.get("key1") == "value2"
        assert store.size() == 1  # Size should not increase

    def test_set_generations_increase(self, store: KVStore):
        """Test every write gets a fresh, larger generation."""
        first = store.set("key", "v1")
        second = store.set("key", "v2")
        third = store.set("other", "v3")

        assert first < second < third

    def test_set_overwrite_multiple_times(self, store: KVStore):
        """Test overwriting the same key multiple times."""
        for i in range(10):
            store.set("key", f"value{i}")

        assert store.get("key") == "value9"
        assert store.size() == 1

    def test_set_empty_value(self, store: KVStore):
        """Test an empty string is a real value."""
        store.set("key", "")
        assert store.get("key") == ""
        assert store.exists("key") is True


class TestKVStoreConditionalSet:
    """Test NX/XX conditions of set()."""

    def test_only_if_absent_on_new_key(self, store: KVStore):
        assert store.set("key", "value", only_if_absent=True) is not None
        assert store.get("key") == "value"

    def test_only_if_absent_on_existing_key(self, store: KVStore):
        store.set("key", "original")

        assert store.set("key", "other", only_if_absent=True) is None
        assert store.get("key") == "original"

    def test_only_if_present_on_missing_key(self, store: KVStore):
        assert store.set("key", "value", only_if_present=True) is None
        assert store.exists("key") is False

    def test_only_if_present_on_existing_key(self, store: KVStore):
        store.set("key", "original")

        assert store.set("key", "updated", only_if_present=True) is not None
        assert store.get("key") == "updated"

    def test_expired_key_counts_as_absent(self, store: KVStore):
        """Test NX succeeds over a logically expired key."""
        store.set("key", "old", expire_at=1.0)

        assert store.set("key", "new", only_if_absent=True) is not None
        assert store.get("key") == "new"


class TestKVStoreGet:
    """Test get() method."""

    def test_get_existing_key(self, store: KVStore):
        """Test retrieving an existing key."""
        store.set("mykey", "myvalue")
        assert store.get("mykey") == "myvalue"

    def test_get_nonexistent_key(self, store: KVStore):
        """Test retrieving a key that doesn't exist returns None."""
        assert store.get("nonexistent") is None

    def test_get_multiple_keys(self, store: KVStore):
        """Test getting multiple different keys."""
        store.set("a", "1")
        store.set("b", "2")
        store.set("c", "3")

        assert store.get("a") == "1"
        assert store.get("b") == "2"
        assert store.get("c") == "3"


class TestKVStoreGetSet:
    """Test getset() method."""

    def test_getset_missing_key(self, store: KVStore):
        assert store.getset("key", "new") is None
        assert store.get("key") == "new"

    def test_getset_existing_key(self, store: KVStore):
        store.set("key", "old")

        assert store.getset("key", "new") == "old"
        assert store.get("key") == "new"

    def test_getset_clears_expiration(self, store: KVStore):
        store.set("key", "old", expire_at=9999999999.0)
        store.getset("key", "new")

        assert store.get_expire_at("key") is None


class TestKVStoreDelete:
    """Test delete() method."""

    def test_delete_existing_key(self, store: KVStore):
        """Test deleting an existing key."""
        store.set("key1", "value1")

        assert store.delete("key1") is True
        assert store.get("key1") is None
        assert store.size() == 0

    def test_delete_nonexistent_key(self, store: KVStore):
        """Test deleting a key that doesn't exist returns False."""
        assert store.delete("nonexistent") is False

    def test_delete_twice_is_noop(self, store: KVStore):
        """Test deleting an already deleted key is harmless."""
        store.set("key", "value")

        assert store.delete("key") is True
        assert store.delete("key") is False

    def test_delete_one_of_many(self, store: KVStore):
        """Test deleting one key doesn't affect others."""
        store.set("key1", "value1")
        store.set("key2", "value2")
        store.set("key3", "value3")

        store.delete("key2")

        assert store.get("key1") == "value1"
        assert store.get("key2") is None
        assert store.get("key3") == "value3"
        assert store.size() == 2


class TestKVStoreDeleteIfGeneration:
    """Test generation-guarded deletion."""

    def test_matching_generation_deletes(self, store: KVStore):
        generation = store.set("key", "value")

        assert store.delete_if_generation("key", generation) is True
        assert store.exists("key") is False

    def test_stale_generation_keeps_newer_value(self, store: KVStore):
        """Test a deletion scheduled for an old write spares a newer one."""
        old = store.set("key", "first")
        store.set("key", "second")

        assert store.delete_if_generation("key", old) is False
        assert store.get("key") == "second"

    def test_missing_key(self, store: KVStore):
        assert store.delete_if_generation("missing", 1) is False


class TestKVStoreExists:
    """Test exists() method."""

    def test_exists_with_existing_key(self, store: KVStore):
        """Test exists returns True for existing key."""
        store.set("key1", "value1")
        assert store.exists("key1") is True

    def test_exists_with_nonexistent_key(self, store: KVStore):
        """Test exists returns False for non-existent key."""
        assert store.exists("nonexistent") is False

    def test_exists_after_delete(self, store: KVStore):
        """Test exists returns False after deletion."""
        store.set("key", "value")
        store.delete("key")
        assert store.exists("key") is False


class TestKVStoreSizeAndClear:
    """Test size() and clear() methods."""

    def test_size_empty_store(self, store: KVStore):
        """Test size of empty store is 0."""
        assert store.size() == 0

    def test_size_after_delete(self, store: KVStore):
        """Test size decreases after delete."""
        store.set("key1", "value1")
        store.set("key2", "value2")
        store.delete("key1")
        assert store.size() == 1

    def test_clear(self, store: KVStore):
        """Test clear removes all keys."""
        store.set("key1", "value1")
        store.set("key2", "value2")

        store.clear()

        assert store.size() == 0
        assert store.get("key1") is None
        assert store.get("key2") is None


class TestKVStoreConcurrency:
    """Test the store under concurrent access from threads."""

    def test_concurrent_sets_same_key(self, store: KVStore):
        """Test racing writers leave exactly one of their values."""
        values = {f"value-{i}" * 50 for i in range(8)}
        seen = set()
        barrier = threading.Barrier(len(values) + 1)

        def writer(value: str):
            barrier.wait()
            for _ in range(500):
                store.set("shared", value)

        def reader():
            barrier.wait()
            for _ in range(2000):
                value = store.get("shared")
                if value is not None:
                    seen.add(value)

        threads = [threading.Thread(target=writer, args=(v,)) for v in values]
        threads.append(threading.Thread(target=reader))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get("shared") in values
        assert seen <= values

    def test_concurrent_nx_single_winner(self, store: KVStore):
        """Test only one of many racing NX writes succeeds."""
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def writer(i: int):
            barrier.wait()
            generation = store.set("lock", f"owner-{i}", only_if_absent=True)
            with lock:
                results.append(generation)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r is not None) == 1

    @pytest.mark.slow
    def test_concurrent_deletes_count_once(self, store: KVStore):
        """Test a key deleted by many threads is counted removed once."""
        for round_number in range(50):
            store.set("key", str(round_number))
            removed = []
            barrier = threading.Barrier(8)

            def deleter():
                barrier.wait()
                removed.append(store.delete("key"))

            threads = [threading.Thread(target=deleter) for _ in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert removed.count(True) == 1
