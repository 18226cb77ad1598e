"""Inference engine capability and the ONNX Runtime binding.

Stages never talk to onnxruntime directly: they go through a
:class:`ModelHandle` obtained from an :class:`InferenceEngine`, so another
engine can be substituted without touching pipeline logic.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from beantime.exceptions import InferenceError, ModelLoadError

if TYPE_CHECKING:
    from pathlib import Path

    import numpy as np
    from numpy.typing import NDArray

    from beantime.config import Settings

logger = logging.getLogger(__name__)


class ModelHandle(Protocol):
    """An opened model bound to one artifact."""

    def run(self, tensor: NDArray[np.generic]) -> NDArray[np.generic]:
        """Execute one inference call and return the first output."""
        ...

    def close(self) -> None:
        """Release the resources held by the handle."""
        ...


class InferenceEngine(Protocol):
    """Protocol for engines that can open model artifacts."""

    def load(self, path: Path) -> ModelHandle:
        """Open the artifact at ``path`` and return a ready-to-run handle."""
        ...


class OnnxModelHandle:
    """A single ONNX Runtime session."""

    def __init__(self, session: InferenceSession, name: str) -> None:
        self._session: InferenceSession | None = session
        self._name = name
        self._input_name = session.get_inputs()[0].name

    @property
    def closed(self) -> bool:
        return self._session is None

    def run(self, tensor: NDArray[np.generic]) -> NDArray[np.generic]:
        if self._session is None:
            raise InferenceError(f"Model '{self._name}' has already been closed")
        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:
            raise InferenceError(f"Inference failed for '{self._name}': {exc}") from exc
        if not outputs:
            raise InferenceError(f"Model '{self._name}' produced no outputs")
        return outputs[0]

    def close(self) -> None:
        # ONNX Runtime frees the session once the last reference is gone.
        self._session = None


class OnnxEngine:
    """Opens ONNX artifacts with providers and threading taken from settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    def load(self, path: Path) -> OnnxModelHandle:
        try:
            session = InferenceSession(
                str(path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Could not open model {path}: {exc}") from exc
        logger.debug("Opened ONNX session for %s", path)
        return OnnxModelHandle(session, path.stem)

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
