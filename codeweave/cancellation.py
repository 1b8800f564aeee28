"""Cancellation tokens owned by session states."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Read-only view handed to in-flight work."""

    def __init__(self, event: asyncio.Event):
        self._event = event

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled")

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for ``seconds`` unless cancelled first.

        Raises:
            OperationCancelledError: If cancelled before or during the sleep
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` and raise if cancellation arrived meanwhile.

        The awaited work is not interrupted; its result is discarded once
        the owning state has been replaced.
        """
        if self._event.is_set() and asyncio.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled()
        result = await awaitable
        self.raise_if_cancelled()
        return result


class CancellationTokenSource:
    """
    Owner side of a cancellation token.

    cancel() is idempotent; ``cancel_count`` records how many times it was
    requested so callers can assert single cancellation.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.token = CancellationToken(self._event)
        self.cancel_count = 0

    def cancel(self) -> None:
        self.cancel_count += 1
        if self._event.is_set():
            logger.debug("Cancellation requested again for an already cancelled token")
            return
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
