from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class RateLimiter:
    """Per-provider throttle.

    Bounds in-flight operations to ``max_concurrent`` and spaces operation
    starts at least ``1 / max_per_second`` seconds apart. Waiters are released
    first-ready-wins; there is no FIFO guarantee.
    """

    def __init__(self, max_per_second: float, max_concurrent: int = 5):
        if max_per_second <= 0:
            raise ValueError("max_per_second must be positive")
        self.max_per_second = float(max_per_second)
        self.max_concurrent = max(int(max_concurrent), 1)
        self.min_interval = 1.0 / self.max_per_second
        self._slots = asyncio.Semaphore(self.max_concurrent)
        self._start_lock = asyncio.Lock()
        self._last_start: float | None = None
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    async def _wait_for_start_slot(self) -> None:
        async with self._start_lock:
            if self._last_start is not None:
                wait = self._last_start + self.min_interval - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    async def throttle(self, operation: Callable[[], Awaitable[T]]) -> T:
        async with self._slots:
            await self._wait_for_start_slot()
            self._active += 1
            try:
                return await operation()
            finally:
                self._active -= 1
