"""Asynchronous HTTP client with deduplication, rate limiting, retry and error mapping.

:class:`AsyncClient` wraps :class:`httpx.AsyncClient` and layers on:

- **In-flight deduplication** -- concurrent calls with the same
  :meth:`~komikcast.models.RequestDescriptor.identity` share one network
  call and one result.
- **Rate limiting** -- an injected :class:`~komikcast.ratelimit.RateLimiter`
  gates each new call; a denial fails fast with
  :class:`~komikcast.exceptions.RateLimitError` and is not retried.
- **Retry with backoff** -- network, timeout, 5xx and 429 failures are
  retried with exponential delay (``retry_delay * 2 ** attempt``).
- **Cancellation** -- a :class:`~komikcast.cancellation.CancellationToken`
  stops the retry loop and rejects the shared result for every waiter.
  A caller joining someone else's request only abandons its own wait.
- **Envelope unwrapping** -- see :mod:`komikcast.client.response`.

Every failure leaving :meth:`AsyncClient.request` is a
:class:`~komikcast.exceptions.KomikcastError`.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Optional, TypeVar

import httpx

from komikcast.cancellation import CANCELLED_MESSAGE, CancellationToken
from komikcast.errors import RawError, is_retryable, normalize
from komikcast.exceptions import KomikcastError, RequestCancelledError, UnknownError
from komikcast.models import RequestConfig, RequestDescriptor
from komikcast.output import get_output
from komikcast.ratelimit import RateLimiter
from komikcast.client.response import extract_response_data, unwrap_payload

T = TypeVar("T")

CLOSED_MESSAGE = "Klien ditutup sebelum permintaan selesai."


def _mark_retrieved(task: asyncio.Task[Any]) -> None:
    # Every waiter may already have stopped waiting on its own token.
    if not task.cancelled():
        task.exception()


class AsyncClient:
    """Asynchronous client for the Komikcast API.

    Must be opened before use, either as an async context manager or with
    :meth:`open` / :meth:`close`.

    Args:
        config: Transport settings (base URL, timeout, retries, backoff).
        rate_limiter: Limiter consulted before each new network call. When
            ``None``, no client-side limiting is applied.
        rate_limit_enabled: Default for the per-call ``enable_rate_limit``
            option.
        transport: Optional ``httpx`` transport, e.g.
            :class:`httpx.MockTransport` in tests.

    Example::

        async with AsyncClient(RequestConfig(), rate_limiter=RateLimiter()) as client:
            comics = await client.get("/terbaru", params={"page": 1})
    """

    def __init__(
        self,
        config: Optional[RequestConfig] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit_enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or RequestConfig()
        self._rate_limiter = rate_limiter
        self._rate_limit_enabled = rate_limit_enabled
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: dict[str, tuple[asyncio.Task[Any], Optional[CancellationToken]]] = {}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncClient:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the underlying :class:`httpx.AsyncClient` (idempotent)."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            follow_redirects=True,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def close(self) -> None:
        """Cancel in-flight requests and close the transport.

        Callers still waiting get :class:`~komikcast.exceptions.RequestCancelledError`.
        """
        for task, _ in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def config(self) -> RequestConfig:
        return self._config

    @property
    def in_flight(self) -> int:
        """Number of distinct requests currently on the wire."""
        return len(self._pending)

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        descriptor: RequestDescriptor,
        *,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        enable_deduplication: bool = True,
        enable_rate_limit: Optional[bool] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Execute *descriptor* and return the unwrapped payload.

        Args:
            descriptor: What to request.
            retries: Retries after the first attempt; defaults to
                ``config.max_retries``.
            retry_delay: Base backoff delay in seconds; defaults to
                ``config.retry_delay``.
            enable_deduplication: Share the result with concurrent
                identical calls.
            enable_rate_limit: Consult the rate limiter; defaults to the
                client-wide setting.
            cancel_token: Token that aborts the request when fired.

        Returns:
            The response payload with any success envelope removed.

        Raises:
            KomikcastError: Normalized failure; :class:`RateLimitError`
                when the limiter denies the call, and
                :class:`RequestCancelledError` when *cancel_token* fires.
        """
        key = descriptor.identity() if enable_deduplication else None

        # Lookup and insert below happen without an intervening await.
        if key is not None:
            pending = self._joinable(key)
            if pending is not None:
                get_output().debug(f"Joining in-flight request {descriptor.method} {descriptor.path}")
                return await self._await_shared(pending, cancel_token)

        if enable_rate_limit is None:
            enable_rate_limit = self._rate_limit_enabled
        if enable_rate_limit:
            self._admit(descriptor)

        if retries is None:
            retries = self._config.max_retries
        if retry_delay is None:
            retry_delay = self._config.retry_delay

        if key is None:
            return await self._execute_with_retry(descriptor, retries, retry_delay, cancel_token)

        task = asyncio.ensure_future(
            self._run_shared(key, descriptor, retries, retry_delay, cancel_token)
        )
        task.add_done_callback(_mark_retrieved)
        self._pending[key] = (task, cancel_token)
        return await self._await_shared(task, cancel_token)

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        endpoint: Optional[str] = None,
        **options: Any,
    ) -> Any:
        """Send a GET request. ``options`` are forwarded to :meth:`request`."""
        descriptor = RequestDescriptor(method="GET", path=path, params=params, endpoint=endpoint)
        return await self.request(descriptor, **options)

    async def post(
        self,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        *,
        endpoint: Optional[str] = None,
        **options: Any,
    ) -> Any:
        """Send a POST request with a JSON *body*."""
        descriptor = RequestDescriptor(
            method="POST", path=path, params=params, body=body, endpoint=endpoint
        )
        return await self.request(descriptor, **options)

    async def put(
        self,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        *,
        endpoint: Optional[str] = None,
        **options: Any,
    ) -> Any:
        """Send a PUT request with a JSON *body*."""
        descriptor = RequestDescriptor(
            method="PUT", path=path, params=params, body=body, endpoint=endpoint
        )
        return await self.request(descriptor, **options)

    async def delete(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        endpoint: Optional[str] = None,
        **options: Any,
    ) -> Any:
        """Send a DELETE request."""
        descriptor = RequestDescriptor(method="DELETE", path=path, params=params, endpoint=endpoint)
        return await self.request(descriptor, **options)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _await_shared(
        self, task: asyncio.Task[Any], cancel_token: Optional[CancellationToken]
    ) -> Any:
        """Wait for a shared task. Only this caller stops waiting when its own token fires."""
        try:
            if cancel_token is None:
                return await asyncio.shield(task)
            return await self._race(asyncio.shield(task), cancel_token)
        except asyncio.CancelledError:
            if task.cancelled():
                raise RequestCancelledError(CLOSED_MESSAGE) from None
            raise

    def _joinable(self, key: str) -> Optional[asyncio.Task[Any]]:
        """In-flight task for *key*, unless its token has already fired."""
        entry = self._pending.get(key)
        if entry is None:
            return None
        task, token = entry
        if token is not None and token.cancelled:
            return None
        return task

    def _admit(self, descriptor: RequestDescriptor) -> None:
        """Consult the rate limiter; record the call or raise a rate-limit error."""
        if self._rate_limiter is None:
            return
        target = descriptor.target
        status = self._rate_limiter.can_make_request(target)
        if not status.allowed:
            delay = self._rate_limiter.get_delay(target)
            get_output().debug(
                f"Rate limit reached for {target} ({status.limit}/{status.window:g}s), "
                f"next slot in {delay:.1f}s"
            )
            raise normalize(
                RawError(
                    message=(
                        "Terlalu banyak permintaan. "
                        f"Silakan tunggu {math.ceil(delay)} detik."
                    ),
                    status=429,
                    retry_after=delay,
                )
            )
        self._rate_limiter.record_request(target)

    async def _run_shared(
        self,
        key: str,
        descriptor: RequestDescriptor,
        retries: int,
        retry_delay: float,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        """Run the request as the shared in-flight task for *key*."""
        try:
            return await self._execute_with_retry(descriptor, retries, retry_delay, cancel_token)
        finally:
            entry = self._pending.get(key)
            if entry is not None and entry[0] is asyncio.current_task():
                del self._pending[key]

    async def _execute_with_retry(
        self,
        descriptor: RequestDescriptor,
        retries: int,
        retry_delay: float,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        """Attempt the call up to ``retries + 1`` times with exponential backoff."""
        output = get_output()

        for attempt in range(retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return await self._attempt(descriptor, cancel_token)
            except RequestCancelledError:
                raise
            except KomikcastError as exc:
                if attempt >= retries or not is_retryable(exc):
                    output.debug(
                        f"{descriptor.method} {descriptor.path} failed "
                        f"({exc.kind.value}) after {attempt + 1} attempt(s)"
                    )
                    raise
                delay = retry_delay * 2 ** attempt
                output.debug(
                    f"{exc.kind.value} on {descriptor.method} {descriptor.path}, "
                    f"retrying in {delay:g}s (attempt {attempt + 1}/{retries})"
                )
            await self._sleep(delay, cancel_token)

        raise UnknownError("Request failed after all retries")  # pragma: no cover

    async def _attempt(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        """Send one HTTP request and return the unwrapped payload."""
        assert self._client is not None, "Client not opened -- use as async context manager"

        kwargs: dict[str, Any] = {
            "method": descriptor.method,
            "url": descriptor.path,
            "params": descriptor.params,
        }
        if descriptor.body is not None:
            kwargs["json"] = descriptor.body

        get_output().debug(f"{descriptor.method} {descriptor.path}")
        try:
            call = self._client.request(**kwargs)
            if cancel_token is None:
                response = await call
            else:
                response = await self._race(call, cancel_token)
        except KomikcastError:
            raise
        except Exception as exc:
            raise normalize(exc) from exc

        if response.status_code >= 400:
            raise normalize(response)
        return unwrap_payload(extract_response_data(response))

    async def _race(self, call: Awaitable[T], cancel_token: CancellationToken) -> T:
        """Await *call* unless *cancel_token* fires first (then abort it best-effort)."""
        call_task = asyncio.ensure_future(call)
        cancel_task = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_task.cancel()
            if not call_task.done():
                call_task.cancel()
        if call_task in done:
            return call_task.result()
        raise RequestCancelledError(cancel_token.reason or CANCELLED_MESSAGE)

    async def _sleep(self, delay: float, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is None:
            await asyncio.sleep(delay)
        else:
            await cancel_token.sleep(delay)
