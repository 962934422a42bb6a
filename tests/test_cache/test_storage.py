"""Tests for the persistent key/value stores."""

from __future__ import annotations

import pytest

from komikcast.cache import CacheManager, DiskStore, MemoryStore, StorageQuotaExceeded
from komikcast.models import CacheConfig


@pytest.fixture()
def disk_store(tmp_path):
    store = DiskStore(tmp_path / "responses")
    yield store
    store.close()


class TestDiskStore:
    def test_roundtrip(self, disk_store: DiskStore) -> None:
        disk_store.set_item("a", "1")
        assert disk_store.get_item("a") == "1"
        assert disk_store.keys() == ["a"]

    def test_missing_key(self, disk_store: DiskStore) -> None:
        assert disk_store.get_item("nope") is None

    def test_remove_missing_is_noop(self, disk_store: DiskStore) -> None:
        disk_store.remove_item("nope")
        assert disk_store.keys() == []

    def test_persists_across_instances(self, tmp_path) -> None:
        first = DiskStore(tmp_path / "d")
        first.set_item("k", "v")
        first.close()
        second = DiskStore(tmp_path / "d")
        assert second.get_item("k") == "v"
        second.close()

    def test_quota(self, tmp_path) -> None:
        store = DiskStore(tmp_path / "q", quota_bytes=1)
        with pytest.raises(StorageQuotaExceeded):
            store.set_item("k", "x" * 100)
        store.close()

    def test_backs_cache_manager(self, tmp_path, clock) -> None:
        store = DiskStore(tmp_path / "c")
        cache = CacheManager(CacheConfig(), store, time_fn=clock)
        cache.set("detail_solo-leveling", {"title": "Solo Leveling"})
        store.close()

        reopened = CacheManager(CacheConfig(), DiskStore(tmp_path / "c"), time_fn=clock)
        assert reopened.get("detail_solo-leveling") == {"title": "Solo Leveling"}


class TestMemoryStore:
    def test_max_keys(self) -> None:
        store = MemoryStore(max_keys=1)
        store.set_item("a", "1")
        store.set_item("a", "2")
        with pytest.raises(StorageQuotaExceeded):
            store.set_item("b", "1")
        assert store.get_item("a") == "2"
