"""Bounded snapshot queue between a dispatcher and one tracker."""

from __future__ import annotations

import asyncio
from typing import Any

from kpersist.errors import InboxClosedError

DEFAULT_CAPACITY = 10

_CLOSED = object()


class Inbox:
    """Ordered, bounded, closable queue of snapshots.

    ``put`` suspends while ``capacity`` snapshots are waiting; that is the
    backpressure that bounds how far a slow tracker can lag behind the watch.
    Iterating an inbox yields snapshots in ``put`` order and stops once the
    inbox has been closed and everything sent before ``close`` was consumed.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Inbox capacity must be at least 1")
        self._capacity = capacity
        # One extra slot so that close() never waits behind a full queue.
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity + 1)
        self._pending = 0
        self._not_full = asyncio.Event()
        self._not_full.set()
        self._closed = False
        self._drained = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Number of snapshots sent but not yet consumed."""
        return self._pending

    async def put(self, snapshot: dict[str, Any]) -> None:
        """Append *snapshot*, waiting while the inbox is full."""
        while True:
            if self._closed:
                raise InboxClosedError("Inbox is closed")
            if self._pending < self._capacity:
                break
            self._not_full.clear()
            await self._not_full.wait()
        self._pending += 1
        self._queue.put_nowait(snapshot)

    def close(self) -> None:
        """Mark the end of the stream. Idempotent, never blocks."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        # Wake a producer blocked in put() so it observes the closure.
        self._not_full.set()

    def __aiter__(self) -> Inbox:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._drained:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        self._pending -= 1
        self._not_full.set()
        return item
