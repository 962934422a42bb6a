"""Key/value stores backing the persistent cache tier.

:class:`~komikcast.cache.manager.CacheManager` only needs string keys and
string values with four operations, captured by :class:`KeyValueStore`.
Two implementations ship:

* :class:`DiskStore` -- a :class:`diskcache.Cache` directory that survives
  restarts, with an optional byte quota.
* :class:`MemoryStore` -- a process-local dict with an optional key-count
  quota, for tests and for runs with persistence switched off.

A write that would exceed the quota raises :class:`StorageQuotaExceeded`,
which the cache manager answers with a purge and one retry.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import diskcache


class StorageQuotaExceeded(Exception):
    """Raised by :meth:`KeyValueStore.set_item` when the store is full."""


class KeyValueStore(ABC):
    """Minimal string key/value store interface."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None``."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store *value* under *key*.

        Raises:
            StorageQuotaExceeded: When the write does not fit.
        """

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete *key*; missing keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return a snapshot of every stored key."""

    def close(self) -> None:
        """Release resources held by the store."""


class DiskStore(KeyValueStore):
    """Persistent store on top of :class:`diskcache.Cache`.

    diskcache's own eviction is disabled; capacity is governed by
    *quota_bytes* and the cache manager's purge instead.

    Args:
        directory: Directory holding the cache database.
        quota_bytes: Soft limit on the on-disk volume. ``None`` disables
            the check.
    """

    def __init__(self, directory: str | Path, quota_bytes: Optional[int] = None) -> None:
        self._directory = Path(directory)
        self._quota_bytes = quota_bytes
        self._cache = diskcache.Cache(str(self._directory), eviction_policy="none")

    @property
    def directory(self) -> Path:
        return self._directory

    def get_item(self, key: str) -> Optional[str]:
        return self._cache.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            projected = self._cache.volume() + len(value.encode("utf-8"))
            if key not in self._cache and projected > self._quota_bytes:
                raise StorageQuotaExceeded(
                    f"Cache volume would reach {projected} bytes (quota {self._quota_bytes})"
                )
        try:
            self._cache.set(key, value)
        except sqlite3.OperationalError as exc:
            if "full" in str(exc).lower():
                raise StorageQuotaExceeded(str(exc)) from exc
            raise

    def remove_item(self, key: str) -> None:
        self._cache.delete(key)

    def keys(self) -> list[str]:
        return [k for k in self._cache if isinstance(k, str)]

    def volume(self) -> int:
        """Estimated on-disk size in bytes."""
        return self._cache.volume()

    def close(self) -> None:
        self._cache.close()


class MemoryStore(KeyValueStore):
    """Process-local store.

    Args:
        max_keys: Maximum number of stored keys; a write of a new key
            beyond it raises :class:`StorageQuotaExceeded`.
    """

    def __init__(self, max_keys: Optional[int] = None) -> None:
        self._data: dict[str, str] = {}
        self._max_keys = max_keys

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if (
            self._max_keys is not None
            and key not in self._data
            and len(self._data) >= self._max_keys
        ):
            raise StorageQuotaExceeded(f"Store holds {len(self._data)} keys (quota {self._max_keys})")
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)
