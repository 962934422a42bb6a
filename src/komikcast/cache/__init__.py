"""Two-tier response caching for komikcast.

:class:`CacheManager` keeps a bounded in-memory tier in front of a
persistent :class:`KeyValueStore` (:class:`DiskStore` backed by
:mod:`diskcache`, or :class:`MemoryStore`), with per-entry TTL, quota
handling, pattern invalidation and periodic cleanup.

The cache is consumed by :class:`~komikcast.fetcher.Resource`; the API
facade itself never caches.
"""

from komikcast.cache.manager import CacheManager
from komikcast.cache.storage import DiskStore, KeyValueStore, MemoryStore, StorageQuotaExceeded

__all__ = ["CacheManager", "DiskStore", "KeyValueStore", "MemoryStore", "StorageQuotaExceeded"]
