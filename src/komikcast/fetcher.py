"""Cache-aware data fetching on top of the API facade.

:class:`Resource` is the unit a UI or CLI consumes: it checks the cache,
calls the facade on a miss, stores the result and exposes ``data``,
``loading`` and ``error``. :meth:`Resource.load` never raises; failures are
captured as a :class:`~komikcast.exceptions.KomikcastError` in ``error``.

:class:`DataFetcher` builds resources by operation name, with default
cache keys and per-operation TTLs from :class:`~komikcast.models.CacheTTL`.
It also resolves route strings (``detail/solo-leveling``,
``genre/action?page=2``) through :func:`resolve_route`.

:func:`fetch_all` and :func:`fetch_batched` run several fetches at once and
report each slot's outcome separately.
"""

from __future__ import annotations

import asyncio
import functools
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar
from urllib.parse import parse_qs, unquote, urlsplit

from komikcast.api import KomikcastAPI
from komikcast.cache import CacheManager
from komikcast.cancellation import CancellationToken
from komikcast.errors import normalize
from komikcast.exceptions import KomikcastError, RequestCancelledError, ValidationError
from komikcast.models import CacheTTL
from komikcast.output import get_output

T = TypeVar("T")

FetchFn = Callable[..., Awaitable[Any]]

# operation name -> (facade method, CacheTTL field)
OPERATIONS: dict[str, tuple[str, str]] = {
    "recommended": ("get_recommended", "recommended"),
    "popular": ("get_popular", "popular"),
    "latest": ("get_latest", "latest"),
    "detail": ("get_detail", "detail"),
    "search": ("search", "search"),
    "chapter": ("read_chapter", "chapter"),
    "genres": ("get_genres", "genre"),
    "genre_comics": ("get_genre_comics", "genre"),
}

ROUTE_KEY_PREFIX = "route_"

_GENRE_ROUTE_RE = re.compile(r"^genre/([^?]+)(?:\?page=(\d+))?$")


class Resource:
    """One cacheable piece of remote data.

    Args:
        fetch_fn: Coroutine function performing the fetch. It is called
            with a ``cancel_token`` keyword argument.
        cache: Cache consulted before and filled after each fetch. ``None``
            disables caching.
        cache_key: Key under which the result is cached. Without one the
            resource is never cached.
        cache_ttl: Entry lifetime in seconds (cache default when omitted).
        enable_cache: Switch caching off for this resource.
        skip: Make :meth:`load` a no-op, e.g. while an argument is missing.

    Example::

        resource = Resource(api.get_popular, cache, cache_key="popular")
        await resource.load()
        if resource.error is None:
            render(resource.data)
    """

    def __init__(
        self,
        fetch_fn: FetchFn,
        cache: Optional[CacheManager] = None,
        *,
        cache_key: Optional[str] = None,
        cache_ttl: Optional[float] = None,
        enable_cache: bool = True,
        skip: bool = False,
    ) -> None:
        self._fetch_fn = fetch_fn
        self._cache = cache
        self._cache_key = cache_key
        self._cache_ttl = cache_ttl
        self._enable_cache = enable_cache
        self._skip = skip
        self._token: Optional[CancellationToken] = None

        self.data: Any = None
        self.error: Optional[KomikcastError] = None
        self.loading = not skip

    @property
    def cache_key(self) -> Optional[str]:
        return self._cache_key

    @property
    def cacheable(self) -> bool:
        return self._enable_cache and self._cache is not None and self._cache_key is not None

    async def load(self, *, use_cache: bool = True) -> Any:
        """Populate ``data`` (or ``error``) and return ``data``.

        A cache hit is returned without touching the network. A cancelled
        load leaves ``data`` and ``error`` as they were.
        """
        if self._skip:
            self.loading = False
            return self.data

        if use_cache and self.cacheable:
            assert self._cache is not None
            cached = self._cache.get(self._cache_key)
            if cached is not None:
                get_output().debug(f"Cache hit: {self._cache_key}")
                self.data = cached
                self.error = None
                self.loading = False
                return self.data

        token = CancellationToken()
        self._token = token
        self.loading = True
        self.error = None
        try:
            data = await self._fetch_fn(cancel_token=token)
        except RequestCancelledError:
            pass
        except KomikcastError as exc:
            self.error = exc
            self.data = None
        else:
            self.data = data
            if self.cacheable:
                assert self._cache is not None
                self._cache.set(self._cache_key, data, self._cache_ttl)
        finally:
            if self._token is token:
                self._token = None
                self.loading = False
        return self.data

    async def refetch(self) -> Any:
        """Drop the cached entry and load fresh data from the network."""
        if self.cacheable:
            assert self._cache is not None
            self._cache.remove(self._cache_key)
        return await self.load(use_cache=False)

    def cancel(self, reason: Optional[str] = None) -> None:
        """Abort the load in progress, if any."""
        if self._token is not None:
            self._token.cancel(reason)

    def __repr__(self) -> str:
        state = "loading" if self.loading else ("error" if self.error else "ready")
        return f"<Resource {self._cache_key or '?'} {state}>"


def resolve_route(route: str) -> Optional[tuple[str, tuple[Any, ...]]]:
    """Map a route string to ``(operation, args)``, or ``None`` if unknown.

    Recognised routes::

        recommended
        popular
        terbaru?page=2            -> latest
        detail/<endpoint>
        read/<endpoint>           -> chapter
        search/<keyword>  or  search?keyword=<keyword>
        genre                     -> genres
        genre/<name>?page=N       -> genre_comics
    """
    route = route.strip().strip("/")
    if not route:
        return None

    if route.startswith("recommended"):
        return "recommended", ()
    if route.startswith("popular"):
        return "popular", ()
    if route.startswith(("terbaru", "latest")):
        page = _query_value(route, "page")
        return "latest", (int(page),) if page and page.isdigit() else ()
    if route.startswith("detail/"):
        return "detail", (unquote(route[len("detail/"):]),)
    if route.startswith("read/"):
        return "chapter", (unquote(route[len("read/"):]),)
    if route.startswith("search"):
        keyword = _query_value(route, "keyword")
        if keyword is None and route.startswith("search/"):
            keyword = unquote(route[len("search/"):].split("?", 1)[0])
        return ("search", (keyword,)) if keyword else None
    if route == "genre":
        return "genres", ()

    match = _GENRE_ROUTE_RE.match(route)
    if match:
        genre, page = match.groups()
        return "genre_comics", (unquote(genre), int(page) if page else 1)
    return None


def _query_value(route: str, name: str) -> Optional[str]:
    values = parse_qs(urlsplit(route).query).get(name)
    return values[0] if values else None


class DataFetcher:
    """Builds :class:`Resource` objects for facade operations.

    Args:
        api: The facade to call.
        cache: Shared cache, or ``None`` for uncached resources.
        ttl: Per-operation lifetimes.
    """

    def __init__(
        self,
        api: KomikcastAPI,
        cache: Optional[CacheManager] = None,
        ttl: Optional[CacheTTL] = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._ttl = ttl or CacheTTL()

    @property
    def api(self) -> KomikcastAPI:
        return self._api

    @property
    def cache(self) -> Optional[CacheManager]:
        return self._cache

    def resource(
        self,
        operation: str,
        *args: Any,
        cache_key: Optional[str] = None,
        cache_ttl: Optional[float] = None,
        enable_cache: bool = True,
        skip: bool = False,
        **options: Any,
    ) -> Resource:
        """Resource for ``operation`` called with ``args``.

        ``options`` are forwarded to the facade method on every load. The
        default cache key joins the operation and its arguments, e.g.
        ``genre_comics_action_2``.

        Raises:
            ValidationError: If *operation* is unknown.
        """
        try:
            method_name, ttl_field = OPERATIONS[operation]
        except KeyError:
            raise ValidationError(f"Operasi tidak dikenal: {operation}") from None

        method = getattr(self._api, method_name)
        fetch_fn = functools.partial(method, *args, **options)
        if cache_key is None:
            cache_key = "_".join([operation, *(str(arg) for arg in args)])
        if cache_ttl is None:
            cache_ttl = getattr(self._ttl, ttl_field)
        return Resource(
            fetch_fn,
            self._cache,
            cache_key=cache_key,
            cache_ttl=cache_ttl,
            enable_cache=enable_cache,
            skip=skip,
        )

    def route(self, route: str, *, cache_key: Optional[str] = None, **kwargs: Any) -> Resource:
        """Resource for a route string, cached under ``route_<route>``.

        An unknown route yields a resource whose load fails with
        :class:`~komikcast.exceptions.ValidationError`.
        """
        resolved = resolve_route(route)
        if resolved is None:
            return Resource(_invalid_route(route), enable_cache=False)
        operation, args = resolved
        if cache_key is None:
            cache_key = f"{ROUTE_KEY_PREFIX}{route}"
        return self.resource(operation, *args, cache_key=cache_key, **kwargs)

    async def fetch(self, operation: str, *args: Any, **kwargs: Any) -> Resource:
        """Build a resource and load it."""
        resource = self.resource(operation, *args, **kwargs)
        await resource.load()
        return resource


def _invalid_route(route: str) -> FetchFn:
    async def _fail(**_: Any) -> Any:
        raise ValidationError(f"Rute tidak valid: {route}")

    return _fail


# --------------------------------------------------------------------- #
# Parallel and batched fetching
# --------------------------------------------------------------------- #


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one slot in :func:`fetch_all` or :func:`fetch_batched`."""

    index: int
    data: Any = None
    error: Optional[KomikcastError] = None
    item: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _settle(index: int, call: Awaitable[Any], item: Any = None) -> FetchOutcome:
    try:
        data = await call
    except RequestCancelledError:
        raise
    except Exception as exc:
        return FetchOutcome(index=index, error=normalize(exc), item=item)
    return FetchOutcome(index=index, data=data, item=item)


async def fetch_all(
    calls: Sequence[FetchFn],
    *,
    cancel_token: Optional[CancellationToken] = None,
) -> list[FetchOutcome]:
    """Run every call concurrently; one failure does not fail the others.

    Each call receives ``cancel_token``. Outcomes come back in call order.

    Raises:
        RequestCancelledError: If *cancel_token* fires.

    Example::

        popular, latest = await fetch_all([api.get_popular, api.get_latest])
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    return list(
        await asyncio.gather(
            *(_settle(index, call(cancel_token=cancel_token)) for index, call in enumerate(calls))
        )
    )


async def fetch_batched(
    items: Iterable[T],
    fetch_one: Callable[[T, int], Awaitable[Any]],
    *,
    batch_size: int = 3,
    delay: float = 0.1,
    cancel_token: Optional[CancellationToken] = None,
) -> list[FetchOutcome]:
    """Fetch ``fetch_one(item, index)`` for each item, ``batch_size`` at a time.

    Batches run one after another with *delay* seconds between them. When
    *cancel_token* fires, no further batch starts and the outcomes gathered
    so far are returned.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    pending = list(items)
    outcomes: list[FetchOutcome] = []
    output = get_output()

    for start in range(0, len(pending), batch_size):
        if cancel_token is not None and cancel_token.cancelled:
            output.debug(f"Batch fetch cancelled after {len(outcomes)} item(s)")
            break
        batch = pending[start : start + batch_size]
        settled = await asyncio.gather(
            *(
                _settle(start + offset, fetch_one(item, start + offset), item)
                for offset, item in enumerate(batch)
            ),
            return_exceptions=True,
        )
        cancelled = False
        for outcome in settled:
            if isinstance(outcome, RequestCancelledError):
                cancelled = True
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if outcome.error is not None:
                output.debug(f"Failed to fetch item {outcome.index}: {outcome.error.message}")
            outcomes.append(outcome)
        if cancelled:
            break

        if start + batch_size < len(pending) and delay > 0:
            try:
                if cancel_token is None:
                    await asyncio.sleep(delay)
                else:
                    await cancel_token.sleep(delay)
            except RequestCancelledError:
                break
    return outcomes
