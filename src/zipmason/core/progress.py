"""Progress reporting for archive operations.

Two ways to observe progress:

- a plain callback ``(percent, message)`` handed to a worker operation
- a ProgressChannel that fans events out to any number of async
  subscriptions; each subscription is an async iterator that ends when the
  channel closes or the subscriber calls close()

Usage:
    sub = handle.progress()
    async for event in sub:
        print(event.percent, event.message)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import cast

ProgressCallback = Callable[[int | None, str], None]


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    percent: int | None
    message: str


_CLOSED = object()


class ProgressSubscription:
    """Async iterator over progress events of one channel."""

    def __init__(self, channel: ProgressChannel) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, item: object) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def close(self) -> None:
        """Stop receiving events. Pending iteration ends after queued events drain."""
        if self._closed:
            return
        self._queue.put_nowait(_CLOSED)
        self._closed = True
        self._channel._unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return cast(ProgressEvent, item)


class ProgressChannel:
    """Fan-out of progress events to subscriptions.

    Late subscribers first receive the most recent event, if any.
    """

    def __init__(self) -> None:
        self._subs: list[ProgressSubscription] = []
        self._last: ProgressEvent | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last(self) -> ProgressEvent | None:
        return self._last

    def subscribe(self) -> ProgressSubscription:
        sub = ProgressSubscription(self)
        if self._last is not None:
            sub._push(self._last)
        if self._closed:
            sub.close()
        else:
            self._subs.append(sub)
        return sub

    def publish(self, percent: int | None, message: str) -> None:
        if self._closed:
            return
        event = ProgressEvent(percent=percent, message=message)
        self._last = event
        for sub in list(self._subs):
            sub._push(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subs):
            sub.close()
        self._subs.clear()

    def _unsubscribe(self, sub: ProgressSubscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            return
