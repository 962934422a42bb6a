"""Default wiring of limiter, client, cache, facade and fetcher.

Nothing in komikcast is a module-level singleton. :func:`build_api`
constructs one of each component from a :class:`~komikcast.models.Settings`
and returns them bundled in a :class:`Session`, which opens and closes them
together.
"""

from __future__ import annotations

from typing import Optional

import httpx

from komikcast.api import KomikcastAPI
from komikcast.cache import CacheManager, DiskStore, KeyValueStore
from komikcast.client import AsyncClient
from komikcast.fetcher import DataFetcher
from komikcast.models import Settings
from komikcast.ratelimit import RateLimiter


class Session:
    """Wired components sharing one lifecycle.

    Attributes:
        settings: The settings the components were built from.
        rate_limiter: ``None`` when rate limiting is disabled.
        client: The HTTP wrapper.
        cache: ``None`` when caching is disabled.
        api: The facade.
        fetcher: Cache-aware resource builder over :attr:`api`.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: Optional[RateLimiter],
        client: AsyncClient,
        cache: Optional[CacheManager],
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.client = client
        self.cache = cache
        self.api = KomikcastAPI(client)
        self.fetcher = DataFetcher(self.api, cache, settings.ttl)

    async def __aenter__(self) -> Session:
        await self.client.open()
        if self.cache is not None:
            self.cache.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        try:
            await self.client.close()
        finally:
            if self.cache is not None:
                await self.cache.close()


def build_api(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    store: Optional[KeyValueStore] = None,
) -> Session:
    """Build a :class:`Session` from *settings* (defaults when ``None``).

    Args:
        settings: Effective configuration, e.g. from
            :func:`~komikcast.config.resolve_settings`.
        transport: Optional ``httpx`` transport for the client.
        store: Persistent cache tier. When omitted and
            ``settings.cache.persistent`` is set, a :class:`DiskStore` in
            the user cache directory is used.

    Example::

        async with build_api(resolve_settings()) as session:
            resource = await session.fetcher.fetch("popular")
    """
    settings = settings or Settings()

    rate_limiter = RateLimiter(settings.rate_limit) if settings.rate_limit.enabled else None
    client = AsyncClient(
        settings.request,
        rate_limiter=rate_limiter,
        rate_limit_enabled=settings.rate_limit.enabled,
        transport=transport,
    )

    cache: Optional[CacheManager] = None
    if settings.cache.enabled:
        if store is None and settings.cache.persistent:
            from komikcast.config import get_cache_dir

            store = DiskStore(get_cache_dir() / "responses", settings.cache.quota_bytes)
        cache = CacheManager(settings.cache, store)

    return Session(settings, rate_limiter, client, cache)
