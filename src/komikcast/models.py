"""Canonical Pydantic models shared across all komikcast modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config
directory and loaded by :mod:`komikcast.config`:
    :class:`RequestConfig`, :class:`CacheConfig`, :class:`RateLimitRule`,
    :class:`RateLimitConfig`, :class:`CacheTTL`, and :class:`Settings`.

**Runtime models** -- produced and consumed by the client, the cache and
the rate limiter:
    :class:`RequestDescriptor`, :class:`CacheEntry`, and
    :class:`RateLimitStatus`.

All durations are expressed in seconds.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BASE_URL = "https://api-komikcast.vercel.app"


# --- Configuration ---


class RequestConfig(BaseModel):
    """Transport settings applied to every API call."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="API base URL")
    timeout: float = Field(default=10.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_delay: float = Field(
        default=1.0, ge=0, description="Base backoff delay in seconds (doubled per attempt)"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")


class CacheConfig(BaseModel):
    """Two-tier cache settings."""

    enabled: bool = Field(default=True, description="Enable response caching")
    ttl_seconds: float = Field(default=1800, gt=0, description="Default entry TTL in seconds")
    max_memory_entries: int = Field(
        default=50, ge=1, description="Capacity of the in-memory tier"
    )
    cleanup_interval: float = Field(
        default=300, gt=0, description="Seconds between periodic cleanup passes"
    )
    persistent: bool = Field(
        default=True, description="Write entries through to the on-disk tier"
    )
    quota_bytes: Optional[int] = Field(
        default=None, description="Soft size limit of the on-disk tier in bytes"
    )


class RateLimitRule(BaseModel):
    """Allow ``max_requests`` calls per sliding ``window`` seconds."""

    max_requests: int = Field(ge=1)
    window: float = Field(gt=0, description="Window length in seconds")


def _default_rate_rules() -> dict[str, RateLimitRule]:
    return {
        "/terbaru": RateLimitRule(max_requests=5, window=60),
        "/popular": RateLimitRule(max_requests=3, window=60),
        "/recommended": RateLimitRule(max_requests=3, window=60),
        "/search": RateLimitRule(max_requests=10, window=60),
        "/detail": RateLimitRule(max_requests=20, window=60),
        "/read": RateLimitRule(max_requests=15, window=60),
    }


class RateLimitConfig(BaseModel):
    """Client-side rate limits keyed by endpoint-pattern substring.

    Patterns are tried in insertion order and the first one contained in
    the request's endpoint wins; ``default`` applies otherwise.
    """

    enabled: bool = True
    default: RateLimitRule = Field(
        default_factory=lambda: RateLimitRule(max_requests=10, window=60)
    )
    rules: dict[str, RateLimitRule] = Field(default_factory=_default_rate_rules)


class CacheTTL(BaseModel):
    """Per-operation cache lifetimes in seconds."""

    recommended: float = 30 * 60
    popular: float = 30 * 60
    latest: float = 15 * 60
    detail: float = 30 * 60
    chapter: float = 60 * 60
    search: float = 10 * 60
    genre: float = 30 * 60


class Settings(BaseModel):
    """User-wide configuration persisted at ``~/.config/komikcast/config.json``.

    Loaded and saved by :func:`~komikcast.config.load_settings` and
    :func:`~komikcast.config.save_settings`. See
    :func:`~komikcast.config.resolve_settings` for the precedence chain.
    """

    request: RequestConfig = Field(default_factory=RequestConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    ttl: CacheTTL = Field(default_factory=CacheTTL)


# --- Runtime models ---


class RequestDescriptor(BaseModel):
    """Everything needed to issue (and recognise) one HTTP request.

    ``endpoint`` is the string matched against rate-limit patterns; it
    defaults to ``path``.
    """

    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    path: str
    params: Optional[dict[str, Any]] = None
    body: Any = None
    endpoint: Optional[str] = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @property
    def target(self) -> str:
        """The endpoint string used for rate limiting."""
        return self.endpoint or self.path

    def identity(self) -> str:
        """Deterministic key of (method, path, params, body) for deduplication."""
        return json.dumps(
            [self.method, self.path, self.params or {}, self.body],
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )


class CacheEntry(BaseModel):
    """A cached value with its creation and expiry timestamps (epoch seconds)."""

    key: str
    value: Any = None
    created_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class RateLimitStatus(BaseModel):
    """Result of a rate-limit check.

    ``reset_at`` is the clock time at which the oldest counted request
    leaves the window; it is only set when the request is denied.
    """

    allowed: bool
    remaining: int
    reset_at: Optional[float] = None
    limit: int
    window: float
