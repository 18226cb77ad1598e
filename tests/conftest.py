"""Shared fixtures: a scripted engine, placeholder artifacts, and a wired pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fakes import ScriptedEngine, classifier_scores, regressor_value
from PIL import Image

from beantime.config import Settings
from beantime.ml.classifier import BeanClassifier
from beantime.ml.model_manager import ModelManager
from beantime.ml.pipeline import CookingTimePipeline
from beantime.ml.regressor import CookingTimeRegressor
from beantime.ml.runtime import ModelRuntime

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def models_dir(tmp_path: Path) -> Path:
    """Directory holding placeholder artifacts for both models."""
    (tmp_path / "bean_classifier.onnx").write_bytes(b"classifier")
    (tmp_path / "bean_regressor.onnx").write_bytes(b"regressor")
    return tmp_path


@pytest.fixture()
def settings(models_dir: Path) -> Settings:
    return Settings(models_dir=str(models_dir))


@pytest.fixture()
def engine() -> ScriptedEngine:
    """Engine that classifies every image as GPL190C with a normalized time of 0.5."""
    return ScriptedEngine(
        {
            "bean_classifier": classifier_scores(3, 10, 240, 7, 0, 0, 0, 0, 12),
            "bean_regressor": regressor_value(0.5),
        }
    )


@pytest.fixture()
def runtime(settings: Settings, engine: ScriptedEngine) -> ModelRuntime:
    return ModelRuntime(ModelManager(settings, engine))


@pytest.fixture()
def pipeline(runtime: ModelRuntime) -> CookingTimePipeline:
    return CookingTimePipeline(BeanClassifier(runtime), CookingTimeRegressor(runtime))


@pytest.fixture()
def bean_image() -> Image.Image:
    return Image.new("RGB", (320, 240), (180, 120, 60))
