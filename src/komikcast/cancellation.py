"""Cooperative cancellation token passed through every suspension point.

A :class:`CancellationToken` is created by the caller and handed to
:meth:`~komikcast.client.AsyncClient.request`. The client checks it at the
top of each retry attempt, races it against the transport call and against
the backoff sleep. Firing it rejects the shared in-flight request for all
waiters with :class:`~komikcast.exceptions.RequestCancelledError`.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from komikcast.exceptions import RequestCancelledError

CANCELLED_MESSAGE = "Permintaan dibatalkan."


class CancellationToken:
    """One-shot cancellation flag with an awaitable signal.

    Example::

        token = CancellationToken()
        task = asyncio.create_task(api.search("solo", cancel_token=token))
        token.cancel()
    """

    def __init__(self) -> None:
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Fire the token. Calling it again has no effect."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError(self._reason or CANCELLED_MESSAGE)

    async def wait(self) -> None:
        """Block until the token fires."""
        if self._cancelled:
            return
        # Created lazily so the token can be built outside a running loop.
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, raising early if the token fires."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
