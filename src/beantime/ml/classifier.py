"""Bean variety classifier (quantized uint8 model)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from beantime.exceptions import InferenceError
from beantime.ml.preprocessing import INPUT_HEIGHT, INPUT_WIDTH, TensorEncoding, prepare

if TYPE_CHECKING:
    from collections.abc import Sequence

    from PIL import Image

    from beantime.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)

# Output index order of the trained classifier. The last entry means "not a bean".
BEAN_LABELS: tuple[str, ...] = (
    "Dor701",
    "Escapan021",
    "GPL190C",
    "GPL190S",
    "Macc55",
    "NIT4G16187",
    "Senegalais",
    "TY339612",
    "autre",
)

REJECTION_LABEL: str = BEAN_LABELS[-1]


@dataclass(frozen=True)
class ClassificationResult:
    """Top-1 prediction with its raw quantized score."""

    label: str
    index: int
    score: int

    @property
    def rejected(self) -> bool:
        return self.label == REJECTION_LABEL


def select_label(scores: Sequence[int], labels: Sequence[str] = BEAN_LABELS) -> ClassificationResult:
    """Pick the highest score; ties go to the lowest index."""
    if len(scores) != len(labels):
        raise InferenceError(f"Expected {len(labels)} scores, got {len(scores)}")
    best = 0
    for i, score in enumerate(scores):
        if score > scores[best]:
            best = i
    return ClassificationResult(label=labels[best], index=best, score=int(scores[best]))


class BeanClassifier:
    """Predicts the bean variety (or the rejection label) for an image."""

    def __init__(self, runtime: ModelRuntime, model_name: str = "bean_classifier") -> None:
        self._runtime = runtime
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def classify(self, image: Image.Image) -> ClassificationResult:
        """Classify an image.

        The model returns one unsigned byte per label. Scores are used as-is,
        without softmax, so they are only comparable within one call.
        """
        tensor = prepare(image, INPUT_WIDTH, INPUT_HEIGHT, TensorEncoding.QUANTIZED)
        output = self._runtime.run(self._model_name, tensor[np.newaxis, ...], (1, len(BEAN_LABELS)))
        if not np.issubdtype(output.dtype, np.integer):
            raise InferenceError(f"Expected integer classifier scores, got {output.dtype}")
        # Reinterpret as unsigned in case the engine hands back int8 storage.
        scores = output.reshape(-1).astype(np.int64) & 0xFF
        result = select_label(scores.tolist())
        logger.debug("Classifier scores %s -> %s", scores.tolist(), result.label)
        return result
