"""HTTP client module for komikcast.

Provides :class:`AsyncClient`, a non-blocking wrapper around
:class:`httpx.AsyncClient` with in-flight request deduplication,
client-side rate limiting, retry with exponential backoff, cooperative
cancellation, and response-envelope unwrapping.

Example::

    from komikcast.client import AsyncClient

    async with AsyncClient(config, rate_limiter=limiter) as client:
        data = await client.get("/popular")
"""

from komikcast.client.async_client import AsyncClient

__all__ = ["AsyncClient"]
