# antique_ingest/rate_queue.py
"""Bounded-concurrency, bounded-rate task queue.

A task may start only when two independent gates agree: a counting gate for
tasks in flight and a sliding window that limits starts per interval. Tasks
start in submission order; they may finish in any order.
"""
import asyncio
from collections import deque
from typing import Awaitable, Callable, Optional, TypeVar

from .utils import get_logger

T = TypeVar("T")


class _WindowGate:
    """Allows at most `cap` starts in any `interval` seconds."""

    def __init__(self, cap: Optional[int], interval: Optional[float]):
        self.cap = cap
        self.interval = interval
        self._starts = deque()

    @property
    def enabled(self):
        return bool(self.cap) and bool(self.interval)

    async def acquire(self):
        if not self.enabled:
            return
        loop = asyncio.get_running_loop()
        while True:
            now = loop.time()
            while self._starts and now - self._starts[0] >= self.interval:
                self._starts.popleft()
            if len(self._starts) < self.cap:
                self._starts.append(now)
                return
            await asyncio.sleep(self._starts[0] + self.interval - now)


class RateLimitedQueue:
    def __init__(
        self,
        concurrency: int,
        interval_cap: Optional[int] = None,
        interval: Optional[float] = None,
        name: str = "queue",
        logger=None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if interval_cap is not None and interval_cap < 1:
            raise ValueError("interval_cap must be at least 1")
        self.name = name
        self.concurrency = concurrency
        self.logger = logger or get_logger(f"RateLimitedQueue.{name}")
        self._slots = asyncio.Semaphore(concurrency)
        self._window = _WindowGate(interval_cap, interval)
        # held while a task waits for both gates, so starts stay FIFO
        self._admission = asyncio.Lock()
        self._pending = 0
        self._running = 0

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def running(self) -> int:
        return self._running

    async def submit(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run `task()` once both gates admit it and return its result.

        Never rejects for capacity reasons; the caller waits instead. A task's
        exception propagates to the caller unchanged.
        """
        self._pending += 1
        try:
            async with self._admission:
                await self._slots.acquire()
                try:
                    await self._window.acquire()
                except BaseException:
                    self._slots.release()
                    raise
        finally:
            self._pending -= 1

        self._running += 1
        try:
            return await task()
        finally:
            self._running -= 1
            self._slots.release()
