"""
Cancellation tokens for collaborator calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ordwallet.errors import RequestCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cancellation signal threaded through every suspension point of a request.

    cancel() may be called from any coroutine on the same loop; any guard()
    in flight is interrupted and raises RequestCancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Request cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelled(self.reason or "Request cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable unless the token fires first."""
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            self.raise_if_cancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        self.raise_if_cancelled()
        raise RequestCancelled(self.reason or "Request cancelled")
