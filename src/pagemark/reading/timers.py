"""Debounce and throttle helpers for high-frequency UI events.

Debouncer coalesces a burst into its last value once the stream has been
quiet for ``delay`` seconds. Throttler runs at most once per ``interval``,
on the leading edge, plus one trailing call carrying the latest value.
Both need a running asyncio loop when ``schedule`` is called.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

_NOTHING: Any = object()


class Debouncer(Generic[T]):
    def __init__(self, delay: float, callback: Callable[[T], Awaitable[Any]]) -> None:
        self.delay = delay
        self._callback = callback
        self._value: Any = _NOTHING
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._value is not _NOTHING

    def schedule(self, value: T) -> None:
        """Replace the pending value and restart the quiet window."""
        self._value = value
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._value = _NOTHING

    async def flush(self) -> None:
        """Run the pending call now, if any, and wait for in-flight calls."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        value = self._take()
        if value is not _NOTHING:
            await self._run(value)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _take(self) -> Any:
        value, self._value = self._value, _NOTHING
        return value

    def _fire(self) -> None:
        self._handle = None
        value = self._take()
        if value is _NOTHING:
            return
        task = asyncio.ensure_future(self._run(value))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, value: T) -> None:
        try:
            await self._callback(value)
        except Exception:
            log.exception("Debounced callback failed")


class Throttler(Generic[T]):
    def __init__(
        self,
        interval: float,
        callback: Callable[[T], Any],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._callback = callback
        self._clock = clock
        self._last_run: Optional[float] = None
        self._value: Any = _NOTHING
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._value is not _NOTHING

    def schedule(self, value: T) -> None:
        now = self._clock()
        if self._last_run is None or now - self._last_run >= self.interval:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None
            self._value = _NOTHING
            self._run(value, now)
            return

        self._value = value
        if self._handle is None:
            wait = self.interval - (now - self._last_run)
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(wait, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._value = _NOTHING

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._value is not _NOTHING:
            value, self._value = self._value, _NOTHING
            self._run(value, self._clock())

    def _fire(self) -> None:
        self._handle = None
        if self._value is not _NOTHING:
            value, self._value = self._value, _NOTHING
            self._run(value, self._clock())

    def _run(self, value: T, now: float) -> None:
        self._last_run = now
        try:
            self._callback(value)
        except Exception:
            log.exception("Throttled callback failed")
