from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


async def _race(aw: Awaitable[Any], *events: asyncio.Event) -> asyncio.Future:
    """
    Runs `aw` until it finishes or any of `events` is set.
    Returns the task for `aw`; it is cancelled if an event won.
    """
    task = asyncio.ensure_future(aw)
    waiters = [asyncio.ensure_future(ev.wait()) for ev in events]
    try:
        await asyncio.wait([task, *waiters], return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            w.cancel()
        if not task.done():
            task.cancel()
        await asyncio.gather(task, *waiters, return_exceptions=True)
    return task


class Channel(Generic[T]):
    """
    Unbuffered hand-off between tasks.

    send() returns only after a receiver has taken the item, so a sender can
    never run ahead of its consumers. Both ends give up once `cancel` is set,
    and prefer it over an item that became ready at the same moment.
    close() marks the end of the stream; receivers drain and then stop.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def send(self, item: T, cancel: asyncio.Event) -> bool:
        if cancel.is_set():
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            put = await _race(self._queue.put(item), cancel)
            if put.cancelled() or cancel.is_set():
                return False

        # Wait for a receiver to take it.
        await _race(self._queue.join(), cancel)
        return not cancel.is_set()

    async def recv(self, cancel: asyncio.Event) -> Tuple[Optional[T], bool]:
        """Returns (item, True), or (None, False) once closed and drained or cancelled."""
        while not cancel.is_set():
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                if self._closed.is_set():
                    return None, False
            else:
                self._queue.task_done()
                return item, True

            get = await _race(self._queue.get(), self._closed, cancel)
            if get.cancelled():
                continue
            self._queue.task_done()
            if cancel.is_set():
                return None, False
            return get.result(), True

        return None, False
