"""Push-to-pull bridge between callers and the backend's input stream.

Callers ``push()`` user inputs without waiting; the backend side
``pull()``s the next one when it is ready to read. ``close()`` ends
the channel: a pending or future ``pull()`` returns None, which the
producer turns into end of input.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosedError(RuntimeError):
    """push() on a closed channel."""


class InputChannel(Generic[T]):
    """Unbounded FIFO with a non-blocking push and a suspending pull."""

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._waiter: asyncio.Future | None = None
        self._closed = False
        self.close_reason: str | None = None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> list[T]:
        """Snapshot of the items not yet pulled."""
        return list(self._items)

    def push(self, item: T) -> None:
        if self._closed:
            raise ChannelClosedError(f"channel closed: {self.close_reason}")
        self._items.append(item)
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    async def pull(self) -> T | None:
        """Wait for the next item; None once the channel is closed."""
        while not self._items:
            if self._closed:
                return None
            loop = asyncio.get_running_loop()
            self._waiter = loop.create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        if self._closed:
            return None
        return self._items.popleft()

    def drain(self) -> list[T]:
        """Remove and return every queued item."""
        items = list(self._items)
        self._items.clear()
        return items

    def close(self, reason: str = "closed") -> None:
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        dropped = len(self._items)
        self._items.clear()
        if dropped:
            logger.debug("InputChannel closed (%s) dropping %d item(s)", reason, dropped)
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)
