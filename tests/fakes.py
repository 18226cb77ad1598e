"""Scripted inference engine used in place of ONNX Runtime."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from beantime.exceptions import ModelLoadError

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray


class ScriptedHandle:
    """Model handle returning a canned output (or raising a canned error)."""

    def __init__(self, name: str, output: NDArray[np.generic] | Exception) -> None:
        self.name = name
        self.output = output
        self.inputs: list[NDArray[np.generic]] = []
        self.closed = False

    def run(self, tensor: NDArray[np.generic]) -> NDArray[np.generic]:
        self.inputs.append(tensor)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output

    def close(self) -> None:
        self.closed = True


class ScriptedEngine:
    """Inference engine whose outputs are set per model file stem."""

    def __init__(self, outputs: dict[str, NDArray[np.generic] | Exception]) -> None:
        self.outputs = outputs
        self.handles: list[ScriptedHandle] = []

    def load(self, path: Path) -> ScriptedHandle:
        if not path.is_file():
            raise ModelLoadError(f"No such file: {path}")
        handle = ScriptedHandle(path.stem, self.outputs[path.stem])
        self.handles.append(handle)
        return handle

    def handles_for(self, name: str) -> list[ScriptedHandle]:
        return [h for h in self.handles if h.name == name]


def classifier_scores(*scores: int) -> NDArray[np.uint8]:
    return np.array([scores], dtype=np.uint8)


def regressor_value(value: float, dtype: type[np.generic] = np.float32) -> NDArray[np.generic]:
    return np.array([[value]], dtype=dtype)
