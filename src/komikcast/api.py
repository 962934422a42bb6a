"""Typed facade over the Komikcast API.

One coroutine per API operation. Each validates its own arguments before
touching the network (raising :class:`~komikcast.exceptions.ValidationError`)
and delegates to :class:`~komikcast.client.AsyncClient` with deduplication
on. The facade never caches; see :mod:`komikcast.fetcher` for that.

Every method accepts the per-call options of
:meth:`AsyncClient.request <komikcast.client.AsyncClient.request>`
(``retries``, ``retry_delay``, ``enable_rate_limit``, ``cancel_token``...)
as keyword arguments.
"""

from __future__ import annotations

from typing import Any

from komikcast.client import AsyncClient
from komikcast.validation import validate_endpoint, validate_genre, validate_keyword, validate_page

RECOMMENDED = "/recommended"
POPULAR = "/popular"
LATEST = "/terbaru"
DETAIL = "/detail"
READ = "/read"
SEARCH = "/search"
GENRE = "/genre"


class KomikcastAPI:
    """Komikcast API operations.

    Args:
        client: An opened :class:`~komikcast.client.AsyncClient`.

    Example::

        api = KomikcastAPI(client)
        latest = await api.get_latest(page=2)
        chapter = await api.read_chapter("solo-leveling-chapter-1")
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @property
    def client(self) -> AsyncClient:
        return self._client

    async def get_recommended(self, **options: Any) -> Any:
        """Recommended comics (``GET /recommended``)."""
        return await self._get(RECOMMENDED, **options)

    async def get_popular(self, **options: Any) -> Any:
        """Popular comics (``GET /popular``)."""
        return await self._get(POPULAR, **options)

    async def get_latest(self, page: Any = 1, **options: Any) -> Any:
        """Newest updates, paginated (``GET /terbaru?page=N``)."""
        page = validate_page(page)
        return await self._get(LATEST, params={"page": page}, **options)

    async def get_detail(self, endpoint: Any, **options: Any) -> Any:
        """Comic detail (``GET /detail/<endpoint>``), e.g. ``"solo-leveling"``."""
        endpoint = validate_endpoint(endpoint)
        return await self._get(f"{DETAIL}/{endpoint}", **options)

    async def search(self, keyword: Any, **options: Any) -> Any:
        """Search by keyword (``GET /search?keyword=...``); at least two characters."""
        keyword = validate_keyword(keyword)
        return await self._get(SEARCH, params={"keyword": keyword}, **options)

    async def read_chapter(self, endpoint: Any, **options: Any) -> Any:
        """Chapter title and image panels (``GET /read/<endpoint>``)."""
        endpoint = validate_endpoint(endpoint)
        return await self._get(f"{READ}/{endpoint}", **options)

    async def get_genres(self, **options: Any) -> Any:
        """All genres (``GET /genre``)."""
        return await self._get(GENRE, **options)

    async def get_genre_comics(self, genre: Any, page: Any = 1, **options: Any) -> Any:
        """Comics in a genre, paginated (``GET /genre/<genre>?page=N``)."""
        genre = validate_genre(genre)
        page = validate_page(page)
        return await self._get(f"{GENRE}/{genre}", params={"page": page}, **options)

    async def _get(self, path: str, params: dict[str, Any] | None = None, **options: Any) -> Any:
        options.setdefault("enable_deduplication", True)
        return await self._client.get(path, params=params, **options)
