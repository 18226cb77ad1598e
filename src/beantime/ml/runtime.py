"""Model runtime adapter: open a model, run one inference, release it."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

from beantime.exceptions import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from beantime.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class ModelRuntime:
    """Runs tensors through packaged models, one handle per call."""

    def __init__(self, model_manager: ModelManager) -> None:
        self._models = model_manager

    def run(
        self,
        model_name: str,
        input_tensor: NDArray[np.generic],
        output_shape: tuple[int, ...],
    ) -> NDArray[np.generic]:
        """Execute ``model_name`` once against ``input_tensor``.

        Args:
            model_name: Registry name of the artifact to open.
            input_tensor: Fully prepared input, including the batch dimension.
            output_shape: Shape the caller expects back. The engine output is
                reshaped to it after checking the element count.

        Returns:
            The first model output, reshaped to ``output_shape``.

        Raises:
            ModelLoadError: If the artifact cannot be located or opened.
            InferenceError: If execution fails or the output size is wrong.
        """
        handle = self._models.acquire(model_name)
        try:
            output = np.asarray(handle.run(input_tensor))
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Inference failed for '{model_name}': {exc}") from exc
        finally:
            self._models.release(model_name, handle)

        expected = math.prod(output_shape)
        if output.size != expected:
            raise InferenceError(
                f"Model '{model_name}' returned {output.size} values with shape {output.shape}, expected {expected}"
            )
        logger.debug("Ran %s: output shape %s dtype %s", model_name, output.shape, output.dtype)
        return output.reshape(output_shape)
