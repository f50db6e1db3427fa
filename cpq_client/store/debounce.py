"""Debounce timer coalescing rapid selection edits into one flush."""

import asyncio
from collections.abc import Awaitable, Callable


class Debouncer:
    """Last-write-wins timer on the running event loop.

    Each ``trigger`` resets the pending timer. Once the timer fires the
    callback runs as its own task; later triggers never cancel a callback
    that is already running.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay_seconds = delay_seconds
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        """Whether a timer is waiting to fire."""
        return self._handle is not None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def trigger(self) -> None:
        """(Re)start the timer. Must be called from within a running loop."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def cancel(self) -> None:
        """Drop the pending timer, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self._callback())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def flush(self) -> None:
        """Fire a pending timer now and wait for every in-flight callback."""
        if self._handle is not None:
            self.cancel()
            self._fire()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight))
