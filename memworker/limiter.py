from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from .config import DEFAULT_CONCURRENCY

T = TypeVar("T")


class AdmissionLimiter:
    """Counting semaphore with a FIFO wait queue.

    A released slot is handed directly to the oldest waiter, so ``running``
    never exceeds ``limit`` and a newcomer cannot overtake a queued caller.
    """

    def __init__(self, limit: int | None = None) -> None:
        if limit is None:
            limit = DEFAULT_CONCURRENCY
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"concurrency limit must be a positive int, got {limit!r}")
        self.limit = limit
        self.running = 0
        self.peak = 0
        self.acquisitions = 0
        self.releases = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self.running < self.limit and not self._waiters:
            self._grant()
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over before the cancellation landed.
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        if self.running <= 0:
            raise RuntimeError("release() called without a matching acquire()")
        self.releases += 1
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # running is unchanged: the slot moves to the waiter.
            self.acquisitions += 1
            waiter.set_result(None)
            return
        self.running -= 1

    def _grant(self) -> None:
        self.running += 1
        self.acquisitions += 1
        self.peak = max(self.peak, self.running)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        async with self.slot():
            return await operation()
