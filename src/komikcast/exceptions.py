"""Exception hierarchy for komikcast.

Every failure that leaves the client is a :class:`KomikcastError`. Each
subclass fixes an :class:`ErrorKind` (the stable, machine-readable
category) and an ``exit_code`` from :mod:`komikcast.exit_codes`, while the
instance carries the human-readable message meant for display.

Subclass hierarchy::

    KomikcastError          (UNKNOWN, exit 1)
    +-- NetworkError        (NETWORK, exit 6)
    +-- TimeoutError_       (TIMEOUT, exit 6)
    +-- ValidationError     (VALIDATION, exit 2)
    +-- NotFoundError       (NOT_FOUND, exit 4)
    +-- RateLimitError      (RATE_LIMIT, exit 3)
    +-- ServerError         (SERVER_ERROR, exit 5)
    +-- UnknownError        (UNKNOWN, exit 1)
    +-- RequestCancelledError (UNKNOWN, exit 130)
    +-- ConfigError         (UNKNOWN, exit 1)

Instances are built by :func:`komikcast.errors.normalize`; code outside
the error normalizer rarely constructs them directly.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from komikcast.exit_codes import (
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_RATE_LIMITED,
    EXIT_SERVER_ERROR,
)


class ErrorKind(str, enum.Enum):
    """Fixed set of failure categories every error is classified into."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class KomikcastError(Exception):
    """Base exception for all komikcast errors.

    Args:
        message: Pre-formatted, user-facing description.
        status: HTTP status code of the response, when one was received.
        retry_after: Seconds the caller should wait before trying again
            (set for rate-limit denials).
        cause: The original exception or payload, kept opaque.
        exit_code: Optional override for the class-level exit code.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
        cause: Any = None,
        exit_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.retry_after = retry_after
        self.cause = cause
        if exit_code is not None:
            self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable view of the error (the cause is omitted)."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status": self.status,
            "retry_after": self.retry_after,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"message={self.message!r}, status={self.status!r})"
        )


class NetworkError(KomikcastError):
    """Raised when no response was received (DNS failure, refused connection)."""

    kind = ErrorKind.NETWORK
    exit_code = EXIT_CONNECTION_ERROR


class TimeoutError_(KomikcastError):
    """Raised when the request timed out.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    kind = ErrorKind.TIMEOUT
    exit_code = EXIT_CONNECTION_ERROR


class ValidationError(KomikcastError):
    """Raised for invalid parameters, either caught locally or reported by the API (HTTP 400)."""

    kind = ErrorKind.VALIDATION
    exit_code = EXIT_INVALID_USAGE


class NotFoundError(KomikcastError):
    """Raised when the comic, chapter or genre does not exist (HTTP 404)."""

    kind = ErrorKind.NOT_FOUND
    exit_code = EXIT_NOT_FOUND


class RateLimitError(KomikcastError):
    """Raised when the client-side limiter denies a request or the API answers 429."""

    kind = ErrorKind.RATE_LIMIT
    exit_code = EXIT_RATE_LIMITED


class ServerError(KomikcastError):
    """Raised when the API returns an HTTP 5xx server error."""

    kind = ErrorKind.SERVER_ERROR
    exit_code = EXIT_SERVER_ERROR


class UnknownError(KomikcastError):
    """Raised for failures that match no other category."""

    kind = ErrorKind.UNKNOWN
    exit_code = EXIT_GENERIC_FAILURE


class RequestCancelledError(KomikcastError):
    """Raised to every waiter of a request whose cancellation token fired."""

    kind = ErrorKind.UNKNOWN
    exit_code = EXIT_CANCELLED


class ConfigError(KomikcastError):
    """Raised for configuration problems (invalid JSON, bad values)."""

    kind = ErrorKind.UNKNOWN
    exit_code = EXIT_GENERIC_FAILURE


ERROR_CLASSES: dict[ErrorKind, type[KomikcastError]] = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.TIMEOUT: TimeoutError_,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.UNKNOWN: UnknownError,
}
"""Concrete exception class raised for each :class:`ErrorKind`."""
