"""
Bounded in-memory delivery channel between acquisition and publishing.

A single-producer, single-consumer FIFO of serialized envelopes built on
:class:`asyncio.Queue`.  It is the only shared mutable state in the pipeline:

- enqueue(payload): append; suspends while the channel is full (no drop).
- dequeue(): take the oldest payload; suspends while empty.  Returns
  ``None`` once the channel has been closed and every payload queued before
  the close has been handed out.
- close(): mark the end of the stream.  Later enqueues raise
  :class:`ChannelClosedError`.
- count(): number of payloads waiting.

Nothing is persisted; payloads still queued when the process dies are lost.

CHANGELOG:
- 2026-10-08: Replace SQLite spool with a bounded asyncio queue (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import asyncio

DEFAULT_CAPACITY: int = 100
"""Payloads the channel holds before the producer blocks."""

_END_OF_STREAM = object()


class ChannelClosedError(RuntimeError):
    """Raised when enqueuing into a closed channel."""


class DeliveryChannel:
    """Bounded async FIFO of JSON payloads with close-and-drain semantics.

    Args:
        capacity: Maximum number of queued payloads.  Must be >= 1.

    Usage::

        channel = DeliveryChannel(capacity=100)
        await channel.enqueue('{"register": "x", ...}')
        payload = await channel.dequeue()
        await channel.close()
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be >= 1")
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._marker_queued = False
        self._drained = False

    @property
    def capacity(self) -> int:
        """Maximum number of queued payloads."""
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        """True once :meth:`close` has been called."""
        return self._closed

    def count(self) -> int:
        """Return the number of payloads waiting to be dequeued."""
        size = self._queue.qsize()
        if self._marker_queued and not self._drained:
            # The end-of-stream marker sits behind the last payload.
            size -= 1
        return size

    async def enqueue(self, payload: str) -> None:
        """Append *payload*, waiting while the channel is full.

        Raises:
            ChannelClosedError: If the channel has been closed.
        """
        if self._closed:
            raise ChannelClosedError("delivery channel is closed")
        await self._queue.put(payload)

    async def dequeue(self) -> str | None:
        """Remove and return the oldest payload, waiting while empty.

        Returns:
            The payload, or ``None`` when the channel is closed and drained.
        """
        if self._drained:
            return None
        item = await self._queue.get()
        if item is _END_OF_STREAM:
            self._drained = True
            return None
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        """Close the channel.

        Payloads already queued stay available to :meth:`dequeue`.  Waits
        for room if the channel is full, so the consumer must still be
        running.  Closing twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_END_OF_STREAM)
        self._marker_queued = True
