"""Two-stage prediction pipeline: classify, then estimate cooking time.

Outcome flow for one call::

    Idle -> Running -> Rejected    (classifier says "not a bean")
                    -> Estimated   (variety + minutes + regressor latency)
                    -> Failed      (any error; detail is only logged)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from beantime.exceptions import BeanTimeError
from beantime.ml.preprocessing import load_image

if TYPE_CHECKING:
    from beantime.ml.classifier import BeanClassifier
    from beantime.ml.preprocessing import ImageInput
    from beantime.ml.regressor import CookingTimeRegressor

logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Analysis in progress..."
REJECTED_MESSAGE = (
    "The provided image is not recognized as a bean.\nThis application only predicts the cooking time of beans."
)
FAILED_MESSAGE = "Prediction failed."


class OutcomeStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    REJECTED = "rejected"
    ESTIMATED = "estimated"
    FAILED = "failed"


@dataclass(frozen=True)
class InProgress:
    """Interim outcome published as soon as a prediction starts."""

    status = OutcomeStatus.IN_PROGRESS

    @property
    def message(self) -> str:
        return IN_PROGRESS_MESSAGE


@dataclass(frozen=True)
class Rejected:
    """The classifier did not recognize a bean. Not an error."""

    status = OutcomeStatus.REJECTED

    @property
    def message(self) -> str:
        return REJECTED_MESSAGE


@dataclass(frozen=True)
class Estimated:
    """A recognized variety with its estimated cooking time."""

    label: str
    minutes: float
    latency_ms: int

    status = OutcomeStatus.ESTIMATED

    @property
    def message(self) -> str:
        return (
            f"Detected variety: {self.label}\n"
            f"Estimated cooking time: {int(self.minutes)} minutes\n"
            f"(Latency: {self.latency_ms} ms)"
        )


@dataclass(frozen=True)
class Failed:
    """Any error during the pipeline. ``reason`` is always the generic message."""

    reason: str = FAILED_MESSAGE

    status = OutcomeStatus.FAILED

    @property
    def message(self) -> str:
        return self.reason


TerminalOutcome = Rejected | Estimated | Failed
Outcome = InProgress | TerminalOutcome


class CookingTimePipeline:
    """Chains the classifier into the regressor with a rejection branch."""

    def __init__(
        self,
        classifier: BeanClassifier,
        regressor: CookingTimeRegressor,
        max_image_pixels: int | None = None,
    ) -> None:
        self._classifier = classifier
        self._regressor = regressor
        self._max_image_pixels = max_image_pixels

    def predict(self, image: ImageInput) -> TerminalOutcome:
        """Run the full pipeline synchronously. Never raises for pipeline errors."""
        try:
            return self._run(image)
        except BeanTimeError:
            logger.exception("Prediction failed")
            return Failed()
        except Exception:
            logger.exception("Unexpected error during prediction")
            return Failed()

    def _run(self, image: ImageInput) -> TerminalOutcome:
        decoded = load_image(image, self._max_image_pixels)

        classification = self._classifier.classify(decoded)
        if classification.rejected:
            logger.info("Image rejected by classifier (score=%d)", classification.score)
            return Rejected()

        start = time.perf_counter()
        minutes = self._regressor.estimate(decoded)
        latency_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            "Predicted %s: %.1f minutes (regression %d ms)",
            classification.label,
            minutes,
            latency_ms,
        )
        return Estimated(label=classification.label, minutes=minutes, latency_ms=latency_ms)
