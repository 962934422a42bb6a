"""komikcast -- asynchronous data-access layer for the Komikcast comic API.

The package turns the Komikcast REST API into typed, cache-aware calls:
requests are rate limited on the client, retried with exponential backoff,
deduplicated while in flight, and every failure surfaces as a
:class:`~komikcast.exceptions.KomikcastError` with a readable message.

Typical use::

    from komikcast import build_api

    async with build_api() as session:
        latest = await session.api.get_latest(page=1)
        detail = await session.fetcher.fetch("detail", "solo-leveling")

Modules:
    api: The API facade, one coroutine per operation.
    client: HTTP wrapper with dedup, rate limiting, retry and unwrapping.
    cache: Two-tier (memory + disk) response cache.
    ratelimit: Sliding-window client-side rate limiter.
    errors: Error normalisation and classification.
    fetcher: Cache-aware resources, route mapping, parallel fetching.
    config: XDG-aware settings and precedence resolution.
    app: Typer CLI entry point.
"""

__version__ = "0.1.0"

from komikcast.session import Session, build_api  # noqa: E402

__all__ = ["Session", "__version__", "build_api"]
