"""Client-side sliding-window rate limiter.

Each endpoint pattern from :class:`~komikcast.models.RateLimitConfig` owns
a window: the list of timestamps of recently admitted requests. A check
first drops timestamps that fell out of the window, then compares what is
left against the pattern's ``max_requests``.

Checking never records anything. The caller records a request with
:meth:`RateLimiter.record_request` only once it actually proceeds, so a
denied check leaves the window untouched.

The limiter is a plain object constructed once at startup and injected
into :class:`~komikcast.client.AsyncClient`; tests pass a fake
``time_fn``.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from komikcast.models import RateLimitConfig, RateLimitRule, RateLimitStatus

DEFAULT_PATTERN = "default"


class RateLimiter:
    """Sliding-window limiter keyed by endpoint pattern.

    Args:
        config: Pattern rules and the default rule. Defaults to the
            built-in Komikcast limits.
        time_fn: Clock returning seconds; :func:`time.monotonic` by default.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        *,
        time_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._time_fn = time_fn or time.monotonic
        self._history: dict[str, list[float]] = {}

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def match(self, endpoint: str) -> tuple[str, RateLimitRule]:
        """Return the first ``(pattern, rule)`` whose pattern occurs in *endpoint*."""
        for pattern, rule in self._config.rules.items():
            if pattern in endpoint:
                return pattern, rule
        return DEFAULT_PATTERN, self._config.default

    def can_make_request(self, endpoint: str) -> RateLimitStatus:
        """Check whether a request to *endpoint* would be admitted now.

        Prunes the pattern's window as a side effect.
        """
        pattern, rule = self.match(endpoint)
        now = self._time_fn()
        window_start = now - rule.window
        recent = [ts for ts in self._history.get(pattern, []) if ts > window_start]
        self._history[pattern] = recent

        remaining = rule.max_requests - len(recent)
        allowed = remaining > 0
        return RateLimitStatus(
            allowed=allowed,
            remaining=max(0, remaining),
            reset_at=None if allowed else recent[0] + rule.window,
            limit=rule.max_requests,
            window=rule.window,
        )

    def record_request(self, endpoint: str) -> None:
        """Record that a request to *endpoint* is being sent now."""
        pattern, _ = self.match(endpoint)
        self._history.setdefault(pattern, []).append(self._time_fn())

    def get_delay(self, endpoint: str) -> float:
        """Seconds until a request to *endpoint* would be admitted (0 if it would be now)."""
        status = self.can_make_request(endpoint)
        if status.allowed or status.reset_at is None:
            return 0.0
        return max(0.0, status.reset_at - self._time_fn())

    def clear_history(self, endpoint: Optional[str] = None) -> None:
        """Forget the window of *endpoint*'s pattern, or every window when omitted."""
        if endpoint is None:
            self._history.clear()
        else:
            pattern, _ = self.match(endpoint)
            self._history.pop(pattern, None)

    def stats(self, endpoint: Optional[str] = None) -> dict[str, Any]:
        """Snapshot of limiter state.

        With *endpoint*, returns that pattern's status; otherwise a mapping
        of every pattern that has seen traffic to its status.
        """
        if endpoint is not None:
            pattern, _ = self.match(endpoint)
            return {
                "endpoint": endpoint,
                "pattern": pattern,
                **self.can_make_request(endpoint).model_dump(),
            }

        result: dict[str, Any] = {}
        for pattern in list(self._history):
            target = pattern if pattern != DEFAULT_PATTERN else ""
            result[pattern] = self.can_make_request(target).model_dump()
        return result
