"""
Single-slot trailing-edge debounce on the asyncio event loop.

schedule() (re)arms one timer; when it fires the async callback runs as a
task. At most one timer is pending at any time.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional


class DebouncedTask:
    """Runs `callback` once, `delay` seconds after the last schedule() call."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self._delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> bool:
        """Drop the pending timer. Returns whether one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.get_running_loop().create_task(self._callback())

    async def wait_in_flight(self) -> None:
        """Wait for a callback that already started. Its errors are its own."""
        if self.in_flight:
            await asyncio.wait({self._task})

    async def flush(self) -> bool:
        """Run a pending callback now instead of at the deadline."""
        if not self.cancel():
            return False
        await self._callback()
        return True
