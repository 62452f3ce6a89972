"""Admission control for browser-backed scrapes.

``ScrapeLimiter`` caps how many scrapes drive the browser at once and admits
the rest strictly first-in first-out. ``InFlightRegistry`` collapses
concurrent requests for the same key onto one execution.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from guidestats.config import settings
from guidestats.core.metrics import inflight_joins_total
from guidestats.middleware.request_id import execution_id_var, get_request_id

logger = logging.getLogger(__name__)


class ScrapeLimiter:
    """FIFO concurrency gate.

    Freed slots are handed directly to the oldest waiter, so a newcomer can
    never overtake a request that is already queued.
    """

    def __init__(self, limit: int | None = None):
        self._limit = max(1, limit or settings.MAX_CONCURRENT_SCRAPES)
        self._active = 0
        self._peak = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def peak_count(self) -> int:
        """Highest number of simultaneously admitted scrapes seen so far."""
        return self._peak

    @property
    def waiting_count(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _take(self) -> None:
        self._active += 1
        self._peak = max(self._peak, self._active)

    async def acquire(self) -> None:
        if self._active < self._limit and not self.waiting_count:
            self._take()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(
            "Scrape queued (active=%d, waiting=%d)", self._active, self.waiting_count
        )
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just as we were cancelled
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        self._active = max(0, self._active - 1)
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                self._take()
                waiter.set_result(None)
                return

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *args):
        self.release()


class InFlightRegistry:
    """Runs at most one execution per key; later callers share its outcome.

    The request that starts an execution owns it. The execution task runs
    with that request id as its execution id, and joiners log the owner they
    attached to.
    """

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._owners: dict[str, str] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def owner(self, key: str) -> str | None:
        """Request id that started the in-flight execution for ``key``."""
        return self._owners.get(key)

    async def run(self, key: str, factory: Callable[[], Awaitable]):
        task = self._tasks.get(key)
        if task is None:
            owner = get_request_id()
            task = asyncio.get_running_loop().create_task(self._owned(owner, factory))
            self._tasks[key] = task
            self._owners[key] = owner
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            inflight_joins_total.inc()
            logger.info(
                "Joined in-flight execution for %s owned by %s", key, self._owners.get(key)
            )

        # A caller that goes away must not cancel the work others wait on
        return await asyncio.shield(task)

    @staticmethod
    async def _owned(owner: str, factory: Callable[[], Awaitable]):
        # Runs in the task's own context copy, so the caller never sees it
        execution_id_var.set(owner)
        return await factory()

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
            self._owners.pop(key, None)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("In-flight execution for %s failed: %s", key, task.exception())
