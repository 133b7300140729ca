"""Debounced batch intake for background processors.

Items are queued by priority (activity timestamp) and released as one batch
once the queue settles, grows to ``max_size`` or ``max_wait`` elapses. A
flush releases whatever is queued right away, a cancel releases nothing.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IntakeScheduler(Generic[T]):
    """Priority queue with flush/cancel signals and a debounced batch getter."""

    def __init__(self, cancel_event: Optional[asyncio.Event] = None):
        self._heap: list = []
        self._counter = itertools.count()
        self._changed = asyncio.Event()
        self.flush_event = asyncio.Event()
        self.cancel_event = cancel_event if cancel_event is not None else asyncio.Event()

    @property
    def size(self) -> int:
        return len(self._heap)

    def put(self, item: T, priority: float) -> None:
        # Counter keeps equal priorities in insertion order
        heapq.heappush(self._heap, (priority, next(self._counter), item))
        self._changed.set()

    def put_many(self, items: Iterable[T], key: Callable[[T], float]) -> None:
        for item in items:
            self.put(item, key(item))

    def flush(self) -> None:
        self.flush_event.set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def get_all_nowait(self) -> List[T]:
        items = []
        while self._heap:
            items.append(heapq.heappop(self._heap)[2])
        return items

    async def _wait_size(self, size: int) -> None:
        while len(self._heap) < size:
            self._changed.clear()
            await self._changed.wait()

    async def get_incoming_debounced(
        self,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
        max_size: Optional[int] = None
    ) -> Optional[List[T]]:
        """
        Wait for the next batch of queued items.

        Every wake up (timer, size change, flush) re-examines the queue. While
        its size keeps changing the release is pushed back by up to
        ``min_wait`` seconds, but never past the ``max_wait`` deadline or once
        ``max_size`` items are waiting.

        Args:
            min_wait: Quiet period in seconds before a release
            max_wait: Hard deadline in seconds from the previous release
            max_size: Release as soon as this many items are queued

        Returns:
            Items in priority order, or None when cancelled or when a flush
            finds nothing queued
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait if max_wait else None
        last_size = None
        while True:
            waiters: List[Any] = [self.cancel_event.wait(), self.flush_event.wait()]
            if max_size:
                waiters.append(self._wait_size(max_size))
            if min_wait and max_wait:
                waiters.append(asyncio.sleep(max(0, min(min_wait, deadline - loop.time()))))
            elif min_wait:
                waiters.append(asyncio.sleep(min_wait))
            elif max_wait:
                waiters.append(asyncio.sleep(max_wait))
            tasks = [asyncio.ensure_future(w) for w in waiters]
            try:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in tasks:
                    task.cancel()
            if self.cancel_event.is_set():
                return None
            size = len(self._heap)
            if self.flush_event.is_set():
                if not size:
                    return None
            elif (
                size != last_size
                and (not max_size or size < max_size)
                and (deadline is None or loop.time() < deadline)
            ):
                last_size = size
                continue
            deadline = loop.time() + max_wait if max_wait else None
            if not size:
                continue
            self.flush_event.clear()
            logger.debug(f"Releasing intake batch of {size} items")
            return self.get_all_nowait()
