"""Queue-backed listeners for session fan-out.

A listener is any callable taking one outbound payload dict. It must
not block: the session calls every listener synchronously, in order,
for each broadcast. ``QueueListener`` puts payloads on an asyncio queue
that a transport writer task drains. A listener whose queue overflows
closes itself rather than skip payloads, so its transport can drop the
connection and the client resubscribes to a fresh snapshot.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class QueueListener:
    """Listener that buffers payloads for one connection."""

    def __init__(self, name: str = "", maxsize: int = 5000) -> None:
        self.name = name
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        # Set when the consumer fell so far behind that payloads were lost.
        self.overflowed = False

    def __call__(self, payload: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.error(
                "Listener %s queue full at %s, closing (consumer must resubscribe)",
                self.name, payload.get("type"),
            )
            self.overflowed = True
            self.close()

    def __repr__(self) -> str:
        return f"QueueListener({self.name!r})"

    def qsize(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> dict[str, Any] | None:
        return self._queue.get_nowait()

    async def get(self) -> dict[str, Any] | None:
        return await self._queue.get()

    async def consume(self) -> AsyncIterator[dict[str, Any]]:
        """Yield payloads until close()."""
        while True:
            payload = await self._queue.get()
            if payload is None:
                break
            yield payload

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Consumer is far behind; make room for the sentinel.
            self._queue.get_nowait()
            self._queue.put_nowait(None)


def deliver(listeners: list[Listener], payload: dict[str, Any]) -> None:
    """Call every listener; one failing listener never stops the others."""
    for listener in listeners:
        try:
            listener(payload)
        except Exception:
            logger.exception(
                "Listener %r failed on %s (continuing)", listener, payload.get("type"),
            )
