from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

COMPACTION_FACTOR = 3


class InFlightTaskSet:
    """Handles to item tasks that have been submitted but may not have settled.

    The set is compacted whenever it reaches ``COMPACTION_FACTOR * limit``
    entries, so bookkeeping stays proportional to the concurrency limit no
    matter how many items the session streams.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.ceiling = COMPACTION_FACTOR * limit
        self.compactions = 0
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    async def add(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        if len(self._tasks) >= self.ceiling:
            await self._compact()

    async def _compact(self) -> None:
        done, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        self._tasks = set(pending)
        self.compactions += 1
        logger.debug(
            "in-flight set compacted",
            extra={"settled": len(done), "pending": len(pending), "ceiling": self.ceiling},
        )
        _raise_failures(done)

    async def drain(self) -> None:
        while self._tasks:
            done, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            self._tasks = set(pending)
            _raise_failures(done)

    async def cancel(self) -> None:
        tasks, self._tasks = self._tasks, set()
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks)
        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                logger.debug(
                    "in-flight task failed during cancellation",
                    extra={"error": str(task.exception())},
                )


def _raise_failures(tasks: Iterable[asyncio.Task[None]]) -> None:
    first: BaseException | None = None
    for task in tasks:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None and first is None:
            first = exc
    if first is not None:
        raise first
