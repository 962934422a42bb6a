"""Numeric process exit codes for the ``komikcast`` CLI.

Each constant maps to one error category and is referenced by the
corresponding :class:`~komikcast.exceptions.KomikcastError` subclass.
Shell scripts can inspect the exit code to tell a missing comic from a
flaky connection without parsing stderr.

Example::

    $ komikcast detail does-not-exist
    $ echo $?
    4   # EXIT_NOT_FOUND
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""A parameter failed validation (empty identifier, short keyword, bad page)."""

EXIT_RATE_LIMITED = 3
"""The client-side limiter or the API refused the request (HTTP 429)."""

EXIT_NOT_FOUND = 4
"""The requested comic, chapter or genre does not exist (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The remote API returned an HTTP 5xx error after all retries."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (DNS failure, connection refused, timeout)."""

EXIT_CANCELLED = 130
"""The request was cancelled before it completed."""
