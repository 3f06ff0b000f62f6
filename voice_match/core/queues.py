from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Deque, Generic, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class BoundedQueue(Generic[T]):
    """FIFO queue with a hard size limit and an explicit overflow policy.

    Tracks unfinished items so consumers can ``join`` until everything that
    was taken has also been marked done.
    """

    def __init__(self, maxsize: int, overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._items: Deque[T] = deque()
        self._maxsize = maxsize
        self._overflow_policy = OverflowPolicy(overflow_policy)
        self._not_empty = asyncio.Condition()
        self._unfinished = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._items)

    async def put(self, item: T) -> bool:
        """Enqueue ``item``. Returns False when the overflow policy dropped something."""
        async with self._not_empty:
            if len(self._items) < self._maxsize:
                self._append(item)
                return True

            if self._overflow_policy is OverflowPolicy.DROP_OLDEST:
                self._items.popleft()
                self._unfinished -= 1
                logger.warning("Dropped oldest queued item due to overflow (max=%s)", self._maxsize)
                self._append(item)
                return False

            logger.warning("Dropped newest item due to overflow (max=%s)", self._maxsize)
            return False

    async def get(self) -> T:
        async with self._not_empty:
            while not self._items:
                await self._not_empty.wait()
            return self._items.popleft()

    def task_done(self) -> None:
        self._unfinished = max(0, self._unfinished - 1)
        if self._unfinished == 0:
            self._idle.set()

    async def join(self) -> None:
        await self._idle.wait()

    async def clear(self) -> int:
        """Drop all queued items; returns how many were removed."""
        async with self._not_empty:
            removed = len(self._items)
            self._items.clear()
            self._unfinished -= removed
            if self._unfinished <= 0:
                self._unfinished = 0
                self._idle.set()
            return removed

    def _append(self, item: T) -> None:
        self._items.append(item)
        self._unfinished += 1
        self._idle.clear()
        self._not_empty.notify()
