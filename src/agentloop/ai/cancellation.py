"""Cooperative cancellation handle shared by an operation and its steps."""

from __future__ import annotations

import asyncio
from typing import Callable, List

__all__ = ["CancellationToken"]


class CancellationToken:
    """Flag polled by the run loop and awaited by long-running batches.

    Cancelling never interrupts anything by itself; callers observe
    :attr:`is_cancelled` or await :meth:`wait` at their own suspension points.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: List[Callable[[str | None], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Trigger the token; returns ``False`` when it was already triggered."""

        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        for callback in list(self._callbacks):
            callback(reason)
        return True

    def add_callback(self, callback: Callable[[str | None], None]) -> None:
        if self._event.is_set():
            callback(self._reason)
            return
        self._callbacks.append(callback)

    async def wait(self) -> str | None:
        await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled else "active"
        return f"CancellationToken({state}, reason={self._reason!r})"
