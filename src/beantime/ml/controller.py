"""Prediction controller: observable state and background execution.

The controller owns the two pieces of caller-visible state (the image being
analyzed and the latest outcome) and notifies subscribers whenever either
changes. ``predict`` returns immediately: the interim ``InProgress`` state is
published before it returns, the terminal outcome later from a worker thread.

Overlapping predictions are not coordinated. Each runs to completion with its
own model handles and whichever finishes last owns the final state.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from beantime.ml.pipeline import InProgress

if TYPE_CHECKING:
    from collections.abc import Callable

    from beantime.ml.pipeline import CookingTimePipeline, Outcome, TerminalOutcome
    from beantime.ml.preprocessing import ImageInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionState:
    """Snapshot of what a caller should display."""

    image: ImageInput | None = None
    outcome: Outcome | None = None

    @property
    def idle(self) -> bool:
        return self.image is None and self.outcome is None


class PredictionController:
    """Runs predictions off the caller's thread and publishes state changes."""

    def __init__(self, pipeline: CookingTimePipeline, max_workers: int = 1) -> None:
        self._pipeline = pipeline
        self._max_workers = max_workers
        # Created on the first predict().
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._state = PredictionState()
        self._listeners: list[Callable[[PredictionState], None]] = []

    @property
    def state(self) -> PredictionState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Callable[[PredictionState], None]) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def begin(self, image: ImageInput) -> InProgress:
        """Retain ``image`` and publish the interim outcome."""
        interim = InProgress()
        self._publish(PredictionState(image=image, outcome=interim))
        return interim

    def complete(self, image: ImageInput, outcome: TerminalOutcome) -> None:
        """Publish the terminal outcome of the prediction started for ``image``."""
        self._publish(PredictionState(image=image, outcome=outcome))

    def predict(self, image: ImageInput) -> Future[TerminalOutcome]:
        """Start a prediction in the background.

        Returns:
            A future resolved with the terminal outcome once it has been
            published to subscribers.
        """
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="bean-pipeline",
                )
            executor = self._executor
        self.begin(image)
        return executor.submit(self._run, image)

    def reset(self) -> None:
        """Drop the retained image and outcome."""
        self._publish(PredictionState())

    def shutdown(self) -> None:
        """Wait for running predictions and stop the worker threads."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _run(self, image: ImageInput) -> TerminalOutcome:
        outcome = self._pipeline.predict(image)
        self.complete(image, outcome)
        return outcome

    def _publish(self, state: PredictionState) -> None:
        with self._lock:
            self._state = state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)
