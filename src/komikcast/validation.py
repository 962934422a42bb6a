"""Parameter validation for the API facade.

Each validator returns the cleaned value or raises
:class:`~komikcast.exceptions.ValidationError`, so bad input is rejected
before any network call is made.
"""

from __future__ import annotations

from typing import Any

from komikcast.exceptions import ValidationError

MIN_KEYWORD_LENGTH = 2
MIN_PAGE = 1
MAX_PAGE = 1000


def validate_endpoint(endpoint: Any) -> str:
    """Comic or chapter identifier: a non-blank string, trimmed."""
    if not isinstance(endpoint, str) or not endpoint:
        raise ValidationError("Endpoint harus berupa teks yang tidak kosong.")
    trimmed = endpoint.strip()
    if not trimmed:
        raise ValidationError("Endpoint tidak boleh kosong.")
    return trimmed


def validate_keyword(keyword: Any) -> str:
    if not isinstance(keyword, str) or not keyword:
        raise ValidationError("Keyword pencarian diperlukan.")
    trimmed = keyword.strip()
    if not trimmed:
        raise ValidationError("Keyword pencarian tidak boleh kosong.")
    if len(trimmed) < MIN_KEYWORD_LENGTH:
        raise ValidationError(f"Keyword minimal {MIN_KEYWORD_LENGTH} karakter.")
    return trimmed


def validate_genre(genre: Any) -> str:
    """Genre slug: non-blank, trimmed and lower-cased."""
    if not isinstance(genre, str) or not genre.strip():
        raise ValidationError("Genre harus berupa teks yang tidak kosong.")
    return genre.strip().lower()


def validate_page(page: Any) -> int:
    """Page number: an int (or numeric string) between ``MIN_PAGE`` and ``MAX_PAGE``."""
    if isinstance(page, bool):
        raise ValidationError("Nomor halaman harus berupa bilangan bulat positif.")
    if isinstance(page, str):
        try:
            page = int(page.strip())
        except ValueError:
            raise ValidationError("Nomor halaman harus berupa bilangan bulat positif.") from None
    if not isinstance(page, int) or page < MIN_PAGE:
        raise ValidationError("Nomor halaman harus berupa bilangan bulat positif.")
    if page > MAX_PAGE:
        raise ValidationError(f"Nomor halaman maksimal {MAX_PAGE}.")
    return page
