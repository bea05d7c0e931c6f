"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

Requests beyond the semaphore limit queue for ``queue_timeout`` seconds and
then fail with InferenceBusyError. A call that runs longer than
``inference_timeout`` fails with InferenceTimeoutError; the worker thread is
left to finish on its own.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from ortclassify.ml.errors import InferenceBusyError, InferenceTimeoutError

if TYPE_CHECKING:
    from collections.abc import Callable

    from ortclassify.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._queue_timeout = settings.queue_timeout
        self._inference_timeout = settings.inference_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor (with timeout), then releases.

        Raises:
            InferenceBusyError: If the semaphore cannot be acquired within the queue timeout.
            InferenceTimeoutError: If the function does not return within the inference timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            raise InferenceBusyError(f"No inference slot free after {self._queue_timeout}s") from None
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(self._executor, func, *args)
            try:
                return await asyncio.wait_for(future, timeout=self._inference_timeout)
            except TimeoutError:
                logger.warning("Inference call exceeded %ss", self._inference_timeout)
                raise InferenceTimeoutError(f"Inference did not finish within {self._inference_timeout}s") from None
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
