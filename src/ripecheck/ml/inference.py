"""Inference concurrency layer.

Architecture:
    classify() coroutine -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> model.predict

The awaited executor call is the only suspension point of a classification.
Calls beyond the semaphore limit wait up to ``queue_timeout`` seconds, then
fail with TimeoutError. Nothing is cancelled once it reaches the executor.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounds concurrent model calls and runs them off the event loop."""

    def __init__(self, max_concurrent: int, queue_timeout: float = SEMAPHORE_TIMEOUT_SECONDS) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="ripeness-inference",
        )
        self._queue_timeout = queue_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the inference thread pool.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        self._adjust(queued=1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("Inference queue full for %.1fs, rejecting call", self._queue_timeout)
            raise
        finally:
            self._adjust(queued=-1)

        self._adjust(active=1)
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            self._adjust(active=-1)

    def _adjust(self, *, queued: int = 0, active: int = 0) -> None:
        with self._counter_lock:
            self._queue_depth += queued
            self._active_count += active

    @property
    def active_count(self) -> int:
        """Number of currently running inference calls."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
