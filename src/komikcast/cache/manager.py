"""Two-tier cache: a bounded in-memory dict in front of a persistent key/value store.

Reads check memory first, then the persistent tier; a persistent hit is
copied back into memory with its remaining lifetime. Writes go through to
both tiers with the same expiry.

The memory tier holds at most ``max_memory_entries`` entries. Inserting a
new key into a full tier evicts the oldest *inserted* key, even if it was
read a moment ago; reads do not refresh an entry's position.

The persistent tier stores two keys per entry::

    komikcast_cache:<key>       JSON-encoded value
    komikcast_cache_time:<key>  expiry as epoch milliseconds

Persistent writes are advisory: a full store is purged and the write
retried once, and any remaining storage failure is logged, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
import sqlite3
import time
from typing import Any, Callable, Optional, Union

import diskcache

from komikcast.cache.storage import KeyValueStore, StorageQuotaExceeded
from komikcast.models import CacheConfig, CacheEntry

logger = logging.getLogger(__name__)

VALUE_PREFIX = "komikcast_cache:"
TIME_PREFIX = "komikcast_cache_time:"

# Probability that a periodic cleanup also sweeps the persistent tier.
PERSISTENT_SWEEP_PROBABILITY = 0.1

# Share of entries dropped by a quota purge when nothing has expired.
PURGE_FRACTION = 0.25

_STORE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class CacheManager:
    """Memory + persistent cache with per-entry TTL.

    Args:
        config: Capacity, default TTL and cleanup interval.
        store: Persistent tier. ``None`` keeps the cache memory-only.
        time_fn: Wall clock in epoch seconds (:func:`time.time` by default).
        random_fn: Source of ``[0, 1)`` floats deciding persistent sweeps.

    Example::

        async with CacheManager(CacheConfig(), DiskStore(cache_dir)) as cache:
            cache.set("detail_solo-leveling", payload, ttl=1800)
            cache.get("detail_solo-leveling")
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[KeyValueStore] = None,
        *,
        time_fn: Optional[Callable[[], float]] = None,
        random_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self._config = config or CacheConfig()
        self._store = store
        self._time_fn = time_fn or time.time
        self._random_fn = random_fn or random.random
        self._memory: dict[str, CacheEntry] = {}
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> CacheManager:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def start(self) -> None:
        """Schedule periodic :meth:`cleanup` on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def close(self) -> None:
        """Stop the periodic cleanup and close the persistent store."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        if self._store is not None:
            self._store.close()

    @property
    def running(self) -> bool:
        """Whether the periodic cleanup task is scheduled."""
        return self._cleanup_task is not None and not self._cleanup_task.done()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @staticmethod
    def generate_key(key: Any) -> str:
        """Strings are used as-is; anything else becomes sorted-key JSON."""
        if isinstance(key, str):
            return key
        return json.dumps(key, sort_keys=True, separators=(",", ":"), default=str)

    def get(self, key: Any) -> Any:
        """Return the cached value, or ``None`` on a miss or expired entry."""
        cache_key = self.generate_key(key)
        now = self._time_fn()

        entry = self._memory.get(cache_key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry.value
            del self._memory[cache_key]

        found = self._get_persistent(cache_key, now)
        if found is None:
            return None
        value, expires_at = found
        self._set_memory(cache_key, value, now, expires_at)
        return value

    def set(self, key: Any, value: Any, ttl: Optional[float] = None) -> None:
        """Store *value* in both tiers for *ttl* seconds (config default when omitted)."""
        cache_key = self.generate_key(key)
        now = self._time_fn()
        if ttl is None:
            ttl = self._config.ttl_seconds
        expires_at = now + ttl
        self._set_memory(cache_key, value, now, expires_at)
        self._set_persistent(cache_key, value, expires_at)

    def remove(self, key: Any) -> None:
        cache_key = self.generate_key(key)
        self._memory.pop(cache_key, None)
        self._remove_persistent(cache_key)

    def invalidate_pattern(self, pattern: Union[str, re.Pattern[str]]) -> int:
        """Remove every key (both tiers) matched by the regular expression *pattern*.

        Returns:
            Number of distinct keys removed.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        removed: set[str] = set()

        for cache_key in list(self._memory):
            if regex.search(cache_key):
                del self._memory[cache_key]
                removed.add(cache_key)

        for cache_key in self._persistent_keys():
            if regex.search(cache_key):
                self._remove_persistent(cache_key)
                removed.add(cache_key)

        return len(removed)

    def clear(self) -> None:
        """Drop every entry from both tiers (unrelated store keys are kept)."""
        self._memory.clear()
        if self._store is None:
            return
        try:
            for store_key in self._store.keys():
                if store_key.startswith((VALUE_PREFIX, TIME_PREFIX)):
                    self._store.remove_item(store_key)
        except _STORE_ERRORS as exc:
            logger.warning("Could not clear persistent cache: %s", exc)

    def cleanup(self) -> None:
        """Sweep expired memory entries; occasionally sweep the persistent tier too."""
        now = self._time_fn()
        for cache_key, entry in list(self._memory.items()):
            if entry.is_expired(now):
                del self._memory[cache_key]

        if self._store is not None and self._random_fn() < PERSISTENT_SWEEP_PROBABILITY:
            self._remove_expired_persistent(now)

    def purge_persistent(self) -> int:
        """Free persistent space: drop expired entries, else the oldest quarter.

        Returns:
            Number of entries removed.
        """
        if self._store is None:
            return 0
        now = self._time_fn()
        removed = self._remove_expired_persistent(now)
        if removed:
            return removed

        by_expiry = sorted(self._persistent_expiries().items(), key=lambda item: item[1])
        oldest = by_expiry[: int(len(by_expiry) * PURGE_FRACTION)]
        for cache_key, _ in oldest:
            self._remove_persistent(cache_key)
        return len(oldest)

    def stats(self) -> dict[str, Any]:
        return {
            "memory_size": len(self._memory),
            "max_memory_size": self._config.max_memory_entries,
            "persistent_enabled": self._store is not None,
            "persistent_size": len(self._persistent_keys()),
            "default_ttl": self._config.ttl_seconds,
        }

    # ------------------------------------------------------------------ #
    # Memory tier
    # ------------------------------------------------------------------ #

    def _set_memory(self, cache_key: str, value: Any, now: float, expires_at: Optional[float]) -> None:
        if cache_key not in self._memory and len(self._memory) >= self._config.max_memory_entries:
            oldest = next(iter(self._memory))
            del self._memory[oldest]
        self._memory[cache_key] = CacheEntry(
            key=cache_key, value=value, created_at=now, expires_at=expires_at
        )

    # ------------------------------------------------------------------ #
    # Persistent tier
    # ------------------------------------------------------------------ #

    def _get_persistent(self, cache_key: str, now: float) -> Optional[tuple[Any, float]]:
        if self._store is None:
            return None
        try:
            raw_value = self._store.get_item(VALUE_PREFIX + cache_key)
            raw_time = self._store.get_item(TIME_PREFIX + cache_key)
        except _STORE_ERRORS as exc:
            logger.warning("Could not read cache entry %r: %s", cache_key, exc)
            return None
        if raw_value is None or raw_time is None:
            return None

        try:
            expires_at = int(raw_time) / 1000
            value = json.loads(raw_value)
        except ValueError:
            logger.warning("Discarding unreadable cache entry %r", cache_key)
            self._remove_persistent(cache_key)
            return None

        if now > expires_at:
            self._remove_persistent(cache_key)
            return None
        return value, expires_at

    def _set_persistent(self, cache_key: str, value: Any, expires_at: float) -> None:
        if self._store is None:
            return
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.warning("Value for %r is not JSON-serialisable, kept in memory only: %s", cache_key, exc)
            return

        try:
            self._write(cache_key, payload, expires_at)
        except StorageQuotaExceeded:
            logger.warning("Persistent cache quota exceeded, clearing old entries")
            self.purge_persistent()
            try:
                self._write(cache_key, payload, expires_at)
            except (StorageQuotaExceeded, *_STORE_ERRORS) as exc:
                logger.error("Failed to cache %r after cleanup: %s", cache_key, exc)
        except _STORE_ERRORS as exc:
            logger.warning("Could not write cache entry %r: %s", cache_key, exc)

    def _write(self, cache_key: str, payload: str, expires_at: float) -> None:
        assert self._store is not None
        self._store.set_item(VALUE_PREFIX + cache_key, payload)
        try:
            self._store.set_item(TIME_PREFIX + cache_key, str(int(expires_at * 1000)))
        except Exception:
            # A value without its expiry key is unreadable; do not leave one behind.
            self._store.remove_item(VALUE_PREFIX + cache_key)
            raise

    def _remove_persistent(self, cache_key: str) -> None:
        if self._store is None:
            return
        try:
            self._store.remove_item(VALUE_PREFIX + cache_key)
            self._store.remove_item(TIME_PREFIX + cache_key)
        except _STORE_ERRORS as exc:
            logger.warning("Could not remove cache entry %r: %s", cache_key, exc)

    def _persistent_keys(self) -> list[str]:
        """Cache keys (prefix stripped) that have a persisted value."""
        if self._store is None:
            return []
        try:
            return [
                store_key[len(VALUE_PREFIX):]
                for store_key in self._store.keys()
                if store_key.startswith(VALUE_PREFIX)
            ]
        except _STORE_ERRORS as exc:
            logger.warning("Could not list persistent cache: %s", exc)
            return []

    def _persistent_expiries(self) -> dict[str, float]:
        """Map of cache key to expiry (epoch seconds) for every persisted entry.

        A value key with no sibling expiry key maps to ``0.0`` so sweeps reclaim it.
        """
        assert self._store is not None
        expiries: dict[str, float] = {}
        try:
            store_keys = set(self._store.keys())
            for store_key in store_keys:
                if store_key.startswith(VALUE_PREFIX):
                    cache_key = store_key[len(VALUE_PREFIX):]
                    if TIME_PREFIX + cache_key not in store_keys:
                        expiries[cache_key] = 0.0
                    continue
                if not store_key.startswith(TIME_PREFIX):
                    continue
                raw_time = self._store.get_item(store_key)
                try:
                    expiries[store_key[len(TIME_PREFIX):]] = int(raw_time or "") / 1000
                except ValueError:
                    # Unparseable expiry: treat as already expired.
                    expiries[store_key[len(TIME_PREFIX):]] = 0.0
        except _STORE_ERRORS as exc:
            logger.warning("Could not scan persistent cache: %s", exc)
        return expiries

    def _remove_expired_persistent(self, now: float) -> int:
        expired = [key for key, expires_at in self._persistent_expiries().items() if now > expires_at]
        for cache_key in expired:
            self._remove_persistent(cache_key)
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval)
            self.cleanup()
