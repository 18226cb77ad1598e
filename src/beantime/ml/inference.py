"""Inference concurrency layer for the HTTP boundary.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> CookingTimePipeline

Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beantime.config import Settings
    from beantime.ml.pipeline import CookingTimePipeline, TerminalOutcome
    from beantime.ml.preprocessing import ImageInput

logger = logging.getLogger(__name__)

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class PredictionPool:
    """Bounds how many pipeline runs execute at once and keeps them off the event loop."""

    def __init__(self, settings: Settings, pipeline: CookingTimePipeline) -> None:
        self._pipeline = pipeline
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="bean-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def predict(self, image: ImageInput) -> TerminalOutcome:
        """Run the pipeline for ``image`` in the thread pool.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=SEMAPHORE_TIMEOUT_SECONDS,
            )
        except TimeoutError:
            logger.warning("Prediction queue full, rejecting request")
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._pipeline.predict, image)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running predictions."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
