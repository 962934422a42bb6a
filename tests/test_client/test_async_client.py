"""Tests for AsyncClient: deduplication, rate limiting, retry, unwrapping, cancellation."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from komikcast.cancellation import CancellationToken
from komikcast.client import AsyncClient
from komikcast.client.response import EMPTY_RESPONSE_MESSAGE
from komikcast.exceptions import (
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestCancelledError,
    ServerError,
    UnknownError,
    ValidationError,
)
from komikcast.models import RateLimitConfig, RateLimitRule, RequestConfig
from komikcast.ratelimit import RateLimiter


class Handler:
    """Scripted MockTransport handler.

    Pops one response per request from *script* (repeating the last one)
    and optionally waits *delay* seconds first so concurrent calls overlap.
    """

    def __init__(self, *script: Any, delay: float = 0.0) -> None:
        self.script = list(script) or [{"status": "success", "data": []}]
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return httpx.Response(item.status_code, headers=item.headers, content=item.content)
        return httpx.Response(200, json=item)

    @property
    def calls(self) -> int:
        return len(self.requests)


def _client(handler: Handler, config: RequestConfig, **kwargs: Any) -> AsyncClient:
    return AsyncClient(config, transport=httpx.MockTransport(handler), **kwargs)


def _record_sleeps(client: AsyncClient) -> list[float]:
    delays: list[float] = []

    async def _sleep(delay: float, cancel_token: Any) -> None:
        delays.append(delay)

    client._sleep = _sleep  # type: ignore[method-assign]
    return delays


# ------------------------------------------------------------------ #
# Requests and unwrapping
# ------------------------------------------------------------------ #


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_unwraps_envelope(self, request_config: RequestConfig) -> None:
        handler = Handler({"status": "success", "data": [{"title": "A"}]})
        async with _client(handler, request_config) as client:
            assert await client.get("/popular") == [{"title": "A"}]
        assert handler.requests[0].url.path == "/popular"
        assert handler.requests[0].headers["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_query_params(self, request_config: RequestConfig) -> None:
        handler = Handler()
        async with _client(handler, request_config) as client:
            await client.get("/terbaru", params={"page": 2})
        assert handler.requests[0].url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, request_config: RequestConfig) -> None:
        handler = Handler({"status": "success", "data": {"ok": True}})
        async with _client(handler, request_config) as client:
            assert await client.post("/bookmarks", body={"id": "x"}) == {"ok": True}
        assert handler.requests[0].method == "POST"
        assert json.loads(handler.requests[0].content) == {"id": "x"}

    @pytest.mark.asyncio
    async def test_raw_payload_returned_as_is(self, request_config: RequestConfig) -> None:
        handler = Handler([{"title": "A"}])
        async with _client(handler, request_config) as client:
            assert await client.get("/genre") == [{"title": "A"}]

    @pytest.mark.asyncio
    async def test_success_envelope_without_data(self, request_config: RequestConfig) -> None:
        handler = Handler({"status": "success", "title": "Chapter 1", "panel": ["a.jpg"]})
        async with _client(handler, request_config) as client:
            result = await client.get("/read/x-chapter-1")
        assert result == {"title": "Chapter 1", "panel": ["a.jpg"]}

    @pytest.mark.asyncio
    async def test_failure_envelope_raises(self, request_config: RequestConfig) -> None:
        handler = Handler({"status": "error", "message": "Comic not found"})
        async with _client(handler, request_config) as client:
            with pytest.raises(NotFoundError) as exc_info:
                await client.get("/detail/nope")
        assert exc_info.value.message == "Komik tidak ditemukan."
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_empty_body_raises(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(200))
        async with _client(handler, request_config) as client:
            with pytest.raises(UnknownError) as exc_info:
                await client.get("/popular", retries=0)
        assert exc_info.value.message == EMPTY_RESPONSE_MESSAGE


# ------------------------------------------------------------------ #
# Retry with backoff
# ------------------------------------------------------------------ #


class TestRetry:
    @pytest.mark.asyncio
    async def test_server_errors_then_success(self, request_config: RequestConfig) -> None:
        handler = Handler(
            httpx.Response(500),
            httpx.Response(502),
            {"status": "success", "data": "ok"},
        )
        async with _client(handler, request_config) as client:
            delays = _record_sleeps(client)
            result = await client.get("/popular", retries=3, retry_delay=0.5)
        assert result == "ok"
        assert handler.calls == 3
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(503))
        async with _client(handler, request_config) as client:
            delays = _record_sleeps(client)
            with pytest.raises(ServerError):
                await client.get("/popular", retries=2, retry_delay=1)
        assert handler.calls == 3
        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_validation_never_retried(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(400, json={"message": "page is required"}))
        async with _client(handler, request_config) as client:
            with pytest.raises(ValidationError):
                await client.get("/terbaru", retries=3)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_not_found_never_retried(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(404))
        async with _client(handler, request_config) as client:
            with pytest.raises(NotFoundError):
                await client.get("/detail/x", retries=3)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.ConnectError("refused"), {"status": "success", "data": 1})
        async with _client(handler, request_config) as client:
            _record_sleeps(client)
            assert await client.get("/popular") == 1
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_network_error_surfaces_normalized(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.ConnectError("refused"))
        async with _client(handler, request_config) as client:
            with pytest.raises(NetworkError):
                await client.get("/popular", retries=0)

    @pytest.mark.asyncio
    async def test_builtin_socket_error_normalized_and_retried(
        self, request_config: RequestConfig
    ) -> None:
        handler = Handler(ConnectionRefusedError("connection refused"))
        async with _client(handler, request_config) as client:
            delays = _record_sleeps(client)
            with pytest.raises(NetworkError) as exc_info:
                await client.get("/popular", retries=2)
        assert handler.calls == 3
        assert len(delays) == 2
        assert isinstance(exc_info.value.cause, ConnectionRefusedError)

    @pytest.mark.asyncio
    async def test_builtin_os_error_then_success(self, request_config: RequestConfig) -> None:
        handler = Handler(OSError("network is unreachable"), {"status": "success", "data": 7})
        async with _client(handler, request_config) as client:
            _record_sleeps(client)
            assert await client.get("/popular") == 7
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_default_retries_from_config(self) -> None:
        config = RequestConfig(base_url="https://komikcast.test", max_retries=1, retry_delay=0)
        handler = Handler(httpx.Response(500))
        async with _client(handler, config) as client:
            with pytest.raises(ServerError):
                await client.get("/popular")
        assert handler.calls == 2


# ------------------------------------------------------------------ #
# Deduplication
# ------------------------------------------------------------------ #


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_concurrent_identical_calls_share_one_request(
        self, request_config: RequestConfig
    ) -> None:
        handler = Handler({"status": "success", "data": [1, 2]}, delay=0.02)
        async with _client(handler, request_config) as client:
            results = await asyncio.gather(*(client.get("/popular") for _ in range(5)))
            assert client.in_flight == 0
        assert handler.calls == 1
        assert results == [[1, 2]] * 5

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_waiter(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(404), delay=0.02)
        async with _client(handler, request_config) as client:
            results = await asyncio.gather(
                *(client.get("/detail/x") for _ in range(3)), return_exceptions=True
            )
        assert handler.calls == 1
        assert all(isinstance(r, NotFoundError) for r in results)

    @pytest.mark.asyncio
    async def test_different_keys_are_independent(self, request_config: RequestConfig) -> None:
        handler = Handler(delay=0.01)
        async with _client(handler, request_config) as client:
            await asyncio.gather(
                client.get("/detail/a"),
                client.get("/detail/b"),
                client.get("/terbaru", params={"page": 1}),
                client.get("/terbaru", params={"page": 2}),
            )
        assert handler.calls == 4

    @pytest.mark.asyncio
    async def test_disabled(self, request_config: RequestConfig) -> None:
        handler = Handler(delay=0.01)
        async with _client(handler, request_config) as client:
            await asyncio.gather(
                *(client.get("/popular", enable_deduplication=False) for _ in range(3))
            )
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_sequential_calls_are_not_shared(self, request_config: RequestConfig) -> None:
        handler = Handler()
        async with _client(handler, request_config) as client:
            await client.get("/popular")
            await client.get("/popular")
        assert handler.calls == 2


# ------------------------------------------------------------------ #
# Rate limiting
# ------------------------------------------------------------------ #


class TestRateLimiting:
    @pytest.fixture()
    def limiter(self, clock) -> RateLimiter:
        config = RateLimitConfig(rules={"/popular": RateLimitRule(max_requests=1, window=60)})
        return RateLimiter(config, time_fn=clock)

    @pytest.mark.asyncio
    async def test_denial_fails_fast(
        self, request_config: RequestConfig, limiter: RateLimiter, clock
    ) -> None:
        handler = Handler()
        async with _client(handler, request_config, rate_limiter=limiter) as client:
            await client.get("/popular")
            clock.advance(15)
            with pytest.raises(RateLimitError) as exc_info:
                await client.get("/popular")
        assert handler.calls == 1
        assert exc_info.value.retry_after == pytest.approx(45)
        assert "45" in exc_info.value.message
        assert len(limiter._history["/popular"]) == 1

    @pytest.mark.asyncio
    async def test_other_patterns_unaffected(
        self, request_config: RequestConfig, limiter: RateLimiter
    ) -> None:
        handler = Handler()
        async with _client(handler, request_config, rate_limiter=limiter) as client:
            await client.get("/popular")
            await client.get("/detail/x")
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_per_call_opt_out(self, request_config: RequestConfig, limiter: RateLimiter) -> None:
        handler = Handler()
        async with _client(handler, request_config, rate_limiter=limiter) as client:
            await client.get("/popular")
            await client.get("/popular", enable_rate_limit=False)
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_client_wide_opt_out(self, request_config: RequestConfig, limiter: RateLimiter) -> None:
        handler = Handler()
        async with _client(
            handler, request_config, rate_limiter=limiter, rate_limit_enabled=False
        ) as client:
            await client.get("/popular")
            await client.get("/popular")
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_joined_call_not_counted(
        self, request_config: RequestConfig, limiter: RateLimiter
    ) -> None:
        handler = Handler(delay=0.02)
        async with _client(handler, request_config, rate_limiter=limiter) as client:
            await asyncio.gather(client.get("/popular"), client.get("/popular"))
        assert handler.calls == 1
        assert len(limiter._history["/popular"]) == 1

    @pytest.mark.asyncio
    async def test_endpoint_override(self, request_config: RequestConfig, limiter: RateLimiter) -> None:
        handler = Handler()
        async with _client(handler, request_config, rate_limiter=limiter) as client:
            await client.get("/a", endpoint="/popular")
            with pytest.raises(RateLimitError):
                await client.get("/b", endpoint="/popular")


# ------------------------------------------------------------------ #
# Cancellation
# ------------------------------------------------------------------ #


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_rejects_all_waiters(self, request_config: RequestConfig) -> None:
        handler = Handler(delay=5)
        token = CancellationToken()
        async with _client(handler, request_config) as client:
            first = asyncio.ensure_future(client.get("/popular", cancel_token=token))
            second = asyncio.ensure_future(client.get("/popular"))
            await asyncio.sleep(0.01)
            token.cancel()
            results = await asyncio.gather(first, second, return_exceptions=True)
            assert client.in_flight == 0
        assert all(isinstance(r, RequestCancelledError) for r in results)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_key_reusable_after_cancel(self, request_config: RequestConfig) -> None:
        handler = Handler(delay=5)
        token = CancellationToken()
        async with _client(handler, request_config) as client:
            pending = asyncio.ensure_future(client.get("/popular", cancel_token=token))
            await asyncio.sleep(0.01)
            token.cancel()
            handler.delay = 0
            fresh = await client.get("/popular")
            with pytest.raises(RequestCancelledError):
                await pending
        assert fresh == []
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, request_config: RequestConfig) -> None:
        handler = Handler(httpx.Response(500))
        token = CancellationToken()
        async with _client(handler, request_config) as client:
            call = asyncio.ensure_future(
                client.get("/popular", retries=3, retry_delay=10, cancel_token=token)
            )
            await asyncio.sleep(0.01)
            token.cancel("navigated away")
            with pytest.raises(RequestCancelledError) as exc_info:
                await asyncio.wait_for(call, timeout=1)
        assert exc_info.value.message == "navigated away"
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_token(self, request_config: RequestConfig) -> None:
        handler = Handler()
        token = CancellationToken()
        token.cancel()
        async with _client(handler, request_config) as client:
            with pytest.raises(RequestCancelledError):
                await client.get("/popular", cancel_token=token)
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_joining_caller_cancels_only_its_own_wait(
        self, request_config: RequestConfig
    ) -> None:
        handler = Handler({"status": "success", "data": 1}, delay=0.3)
        mine = CancellationToken()
        async with _client(handler, request_config) as client:
            first = asyncio.ensure_future(client.get("/popular"))
            await asyncio.sleep(0.01)
            joined = asyncio.ensure_future(client.get("/popular", cancel_token=mine))
            await asyncio.sleep(0.01)
            mine.cancel()
            with pytest.raises(RequestCancelledError):
                await asyncio.wait_for(joined, timeout=0.1)
            assert not first.done()
            assert await first == 1
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_close_rejects_waiters(self, request_config: RequestConfig) -> None:
        handler = Handler(delay=5)
        client = _client(handler, request_config)
        await client.open()
        owner = asyncio.ensure_future(client.get("/popular"))
        joined = asyncio.ensure_future(client.get("/popular"))
        await asyncio.sleep(0.01)
        await client.close()
        results = await asyncio.wait_for(
            asyncio.gather(owner, joined, return_exceptions=True), timeout=1
        )
        assert all(isinstance(r, RequestCancelledError) for r in results)
        assert client.in_flight == 0
