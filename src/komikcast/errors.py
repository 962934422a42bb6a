"""Error normalization: turn any failure into a :class:`~komikcast.exceptions.KomikcastError`.

The pipeline has three pure steps:

1. :func:`to_raw` converts whatever was raised (``httpx`` exceptions, an
   error response, a dict, a plain exception) into a structured
   :class:`RawError` -- status code plus cause kind plus message.
2. :func:`classify` maps a :class:`RawError` to an
   :class:`~komikcast.exceptions.ErrorKind`. Structured fields decide
   first; phrase matching on the message is a last resort for inputs
   that carry no status and no transport cause.
3. :func:`extract_message` picks the user-facing text: the explicit
   message (rewritten for known API phrases), else a status template,
   else a kind template, else a generic fallback.

:func:`normalize` chains the three and is idempotent: a
``KomikcastError`` passes through unchanged.

User-facing messages are in Indonesian, matching the API and its audience.
"""

from __future__ import annotations

import asyncio
import enum
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from komikcast.exceptions import ERROR_CLASSES, ErrorKind, KomikcastError

RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER_ERROR, ErrorKind.RATE_LIMIT}
)

GENERIC_MESSAGE = "Terjadi kesalahan yang tidak diketahui. Silakan coba lagi."

STATUS_MESSAGES: dict[int, str] = {
    400: "Permintaan tidak valid. Silakan periksa parameter yang dikirim.",
    401: "Tidak memiliki izin untuk mengakses data ini.",
    403: "Akses ditolak.",
    404: "Data tidak ditemukan.",
    429: "Terlalu banyak permintaan. Silakan tunggu sebentar.",
    500: "Kesalahan server. Silakan coba lagi nanti.",
    503: "Layanan sedang tidak tersedia. Silakan coba lagi nanti.",
}

KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "Tidak dapat terhubung ke server. Periksa koneksi internet Anda.",
    ErrorKind.TIMEOUT: "Waktu permintaan habis. Silakan coba lagi.",
}

# Known API messages and their friendly replacements, checked in order.
_MESSAGE_REWRITES: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"page is required", re.I),
        "Parameter page diperlukan. Silakan berikan nomor halaman yang valid.",
    ),
    (re.compile(r"comic not found|komik tidak ditemukan", re.I), "Komik tidak ditemukan."),
    (re.compile(r"chapter not found|chapter tidak ditemukan", re.I), "Chapter tidak ditemukan."),
    (re.compile(r"keyword.*required", re.I), "Keyword pencarian diperlukan."),
]

_TIMEOUT_RE = re.compile(r"time(d)?[\s_-]?out", re.I)
_VALIDATION_RE = re.compile(r"required|diperlukan|must be|harus|\binvalid\b", re.I)
_NOT_FOUND_RE = re.compile(r"not found|tidak ditemukan", re.I)


class CauseKind(str, enum.Enum):
    """What went wrong below the HTTP layer, if anything."""

    NONE = "none"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class RawError:
    """Structured description of a failure before classification.

    Attributes:
        message: Explicit message carried by the failure (API body message,
            envelope message, validation text). ``None`` when only a status
            or a transport cause is known.
        status: HTTP status code, when a response was received.
        cause: Transport-level cause when no response was received.
        retry_after: Server or limiter hint in seconds.
        data: Decoded response body, if any.
        original: The object the failure was built from.
    """

    message: Optional[str] = None
    status: Optional[int] = None
    cause: CauseKind = CauseKind.NONE
    retry_after: Optional[float] = None
    data: Any = None
    original: Any = None


def to_raw(error: Any) -> RawError:
    """Convert *error* into a :class:`RawError`.

    Accepts ``RawError`` (returned as-is), ``httpx`` exceptions, an
    ``httpx.Response`` with an error status, builtin timeout and socket
    errors, a dict with ``message``/``status``/``data`` keys, a plain
    string, or any exception.
    """
    if isinstance(error, RawError):
        return error
    if isinstance(error, KomikcastError):
        return RawError(
            message=error.message,
            status=error.status,
            retry_after=error.retry_after,
            original=error.cause,
        )
    if isinstance(error, httpx.TimeoutException):
        return RawError(cause=CauseKind.TIMEOUT, original=error)
    if isinstance(error, httpx.HTTPStatusError):
        return _from_response(error.response, original=error)
    if isinstance(error, httpx.TransportError):
        cause = CauseKind.TIMEOUT if _TIMEOUT_RE.search(str(error)) else CauseKind.TRANSPORT
        return RawError(cause=cause, original=error)
    if isinstance(error, httpx.Response):
        return _from_response(error, original=error)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return RawError(cause=CauseKind.TIMEOUT, original=error)
    if isinstance(error, OSError):
        cause = CauseKind.TIMEOUT if _TIMEOUT_RE.search(str(error)) else CauseKind.TRANSPORT
        return RawError(cause=cause, original=error)
    if isinstance(error, dict):
        status = error.get("status", error.get("status_code"))
        return RawError(
            message=error.get("message") or error.get("error") or None,
            status=status if isinstance(status, int) else None,
            retry_after=error.get("retry_after"),
            data=error.get("data"),
            original=error,
        )
    if isinstance(error, str):
        return RawError(message=error or None, original=error)
    if isinstance(error, BaseException):
        return RawError(message=str(error) or None, original=error)
    return RawError(original=error)


def classify(raw: RawError) -> ErrorKind:
    """Map a :class:`RawError` to its :class:`ErrorKind`.

    Priority order: transport cause, HTTP status, then (unstructured
    inputs only) validation and not-found phrasing in the message.
    """
    if raw.cause is CauseKind.TIMEOUT:
        return ErrorKind.TIMEOUT
    if raw.cause is CauseKind.TRANSPORT:
        return ErrorKind.NETWORK

    if raw.status is not None:
        if raw.status == 404:
            return ErrorKind.NOT_FOUND
        if raw.status == 429:
            return ErrorKind.RATE_LIMIT
        if raw.status >= 500:
            return ErrorKind.SERVER_ERROR
        if raw.status == 400:
            return ErrorKind.VALIDATION

    # Last resort: phrase matching for failures with no structure.
    message = raw.message or ""
    if raw.status is None and _VALIDATION_RE.search(message):
        return ErrorKind.VALIDATION
    if _NOT_FOUND_RE.search(message):
        return ErrorKind.NOT_FOUND
    return ErrorKind.UNKNOWN


def extract_message(raw: RawError, kind: Optional[ErrorKind] = None) -> str:
    """Return the user-facing message for *raw*."""
    if raw.message:
        for pattern, friendly in _MESSAGE_REWRITES:
            if pattern.search(raw.message):
                return friendly
        return raw.message

    if raw.status is not None:
        return STATUS_MESSAGES.get(
            raw.status, f"Kesalahan server ({raw.status}). Silakan coba lagi."
        )

    kind = kind or classify(raw)
    return KIND_MESSAGES.get(kind, GENERIC_MESSAGE)


def normalize(error: Any) -> KomikcastError:
    """Return *error* as a :class:`KomikcastError`, classifying it if needed.

    ``normalize(normalize(e)) is normalize(e)`` holds for every input.
    """
    if isinstance(error, KomikcastError):
        return error
    raw = to_raw(error)
    kind = classify(raw)
    return ERROR_CLASSES[kind](
        extract_message(raw, kind),
        status=raw.status,
        retry_after=raw.retry_after,
        cause=raw.original if raw.original is not None else error,
    )


def is_retryable(error: KomikcastError) -> bool:
    """Whether the backoff loop may try again after *error*."""
    return error.kind in RETRYABLE_KINDS


# ------------------------------------------------------------------ #
# Private helpers
# ------------------------------------------------------------------ #


def _from_response(response: httpx.Response, original: Any) -> RawError:
    data = _decode_body(response)
    return RawError(
        message=_message_from_body(data),
        status=response.status_code,
        retry_after=_parse_retry_after(response.headers.get("retry-after")),
        data=data,
        original=original,
    )


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _message_from_body(data: Any) -> Optional[str]:
    """Pull an error message out of a decoded error body (JSON only)."""
    if isinstance(data, str):
        return data or None
    if not isinstance(data, dict):
        return None
    message = data.get("message") or data.get("error")
    if not message and isinstance(data.get("data"), dict):
        message = data["data"].get("message")
    return str(message) if message else None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
