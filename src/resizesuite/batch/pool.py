"""Bounded processing pool.

Architecture:
    BatchOrchestrator (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ImagePipeline

N is ``max_concurrent`` (1-4). With the default of 1 files are processed
strictly one after another, so at most one decoded buffer is alive at a time.
Waiting for a slot never times out; a batch simply drains at the pool's pace.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from resizesuite.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Gauge:
    """Thread-safe counter read by progress reporting."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, delta: int) -> None:
        with self._lock:
            self._value += delta

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ProcessingPool:
    """Runs whole-file pipelines on a fixed number of worker threads."""

    def __init__(self, settings: Settings) -> None:
        self._size = settings.max_concurrent
        self._slots = asyncio.Semaphore(self._size)
        self._executor = ThreadPoolExecutor(max_workers=self._size, thread_name_prefix="resizesuite-worker")
        self._waiting = _Gauge()
        self._running = _Gauge()

    @property
    def size(self) -> int:
        return self._size

    @property
    def active_count(self) -> int:
        """Pipelines currently running on a worker."""
        return self._running.value

    @property
    def queue_depth(self) -> int:
        """Submissions waiting for a free worker."""
        return self._waiting.value

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._waiting.add(1)
        try:
            await self._slots.acquire()
        finally:
            self._waiting.add(-1)
        self._running.add(1)
        try:
            yield
        finally:
            self._running.add(-1)
            self._slots.release()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous ``func(*args)`` on a worker once one is free."""
        async with self._slot():
            return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    def shutdown(self) -> None:
        """Wait for running work, then stop the worker threads."""
        logger.debug("Shutting down processing pool (%d workers)", self._size)
        self._executor.shutdown(wait=True)
