"""Cooking time regressor (float32 model, variety agnostic)."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

from beantime.exceptions import InferenceError
from beantime.ml.preprocessing import INPUT_HEIGHT, INPUT_WIDTH, TensorEncoding, prepare

if TYPE_CHECKING:
    from PIL import Image

    from beantime.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)

# Label range used when the regressor was trained, in minutes.
MIN_COOKING_TIME: float = 51.0
MAX_COOKING_TIME: float = 410.0


def normalize(minutes: float) -> float:
    """Map minutes to the model's [0, 1] target range."""
    return (minutes - MIN_COOKING_TIME) / (MAX_COOKING_TIME - MIN_COOKING_TIME)


def denormalize(value: float) -> float:
    """Map a [0, 1] model output back to minutes."""
    return value * (MAX_COOKING_TIME - MIN_COOKING_TIME) + MIN_COOKING_TIME


class CookingTimeRegressor:
    """Estimates cooking time in minutes from an image."""

    def __init__(self, runtime: ModelRuntime, model_name: str = "bean_regressor") -> None:
        self._runtime = runtime
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def predict_normalized(self, image: Image.Image) -> float:
        tensor = prepare(image, INPUT_WIDTH, INPUT_HEIGHT, TensorEncoding.FLOAT)
        output = self._runtime.run(self._model_name, tensor[np.newaxis, ...], (1, 1))
        # Half precision artifacts may hand back float16; widen before use.
        value = float(output.astype(np.float32)[0, 0])
        if not math.isfinite(value):
            raise InferenceError(f"Regressor returned a non-finite value: {value}")
        return value

    def estimate(self, image: Image.Image) -> float:
        """Return the estimated cooking time in minutes."""
        normalized = self.predict_normalized(image)
        minutes = denormalize(normalized)
        logger.debug("Regressor output %.4f -> %.1f minutes", normalized, minutes)
        return minutes
