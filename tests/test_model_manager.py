"""Tests for the model registry, model manager, ONNX engine, and runtime adapter."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from fakes import ScriptedEngine, classifier_scores, regressor_value

from beantime.config import Settings
from beantime.exceptions import InferenceError, ModelLoadError
from beantime.ml.engine import OnnxEngine, OnnxModelHandle
from beantime.ml.model_manager import MODEL_REGISTRY, ModelManager, get_spec
from beantime.ml.runtime import ModelRuntime

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/beantime_test_models",
        "model_cache": False,
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _engine() -> ScriptedEngine:
    return ScriptedEngine(
        {
            "bean_classifier": classifier_scores(0, 0, 9, 0, 0, 0, 0, 0, 0),
            "bean_regressor": regressor_value(0.5),
        }
    )


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = MODEL_REGISTRY["bean_classifier"]
        assert spec.filename == "bean_classifier.onnx"
        assert spec.task == "classification"
        assert spec.output_shape == (1, 9)

    def test_regressor_metrics(self) -> None:
        spec = MODEL_REGISTRY["bean_regressor"]
        assert spec.task == "regression"
        assert spec.metrics == {"rmse_minutes": 26.0, "mae_minutes": 16.40}

    def test_registry_has_two_models(self) -> None:
        assert set(MODEL_REGISTRY) == {"bean_classifier", "bean_regressor"}

    def test_unknown_model_raises_model_load_error(self) -> None:
        with pytest.raises(ModelLoadError, match="Unknown model"):
            get_spec("nonexistent_model")


# ---------------------------------------------------------------------------
# ModelManager tests
# ---------------------------------------------------------------------------


class TestModelManager:
    def test_ensure_available_local(self, models_dir: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir)), _engine())
        assert mgr.ensure_available("bean_classifier") == models_dir / "bean_classifier.onnx"

    def test_missing_artifact_without_repo(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)), _engine())
        with pytest.raises(ModelLoadError, match="not found"):
            mgr.ensure_available("bean_regressor")

    @patch("beantime.ml.model_manager.hf_hub_download")
    def test_missing_artifact_downloaded(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "bean_regressor.onnx")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), hf_repo_id="beans/models"), _engine())

        path = mgr.ensure_available("bean_regressor")

        mock_download.assert_called_once_with(
            repo_id="beans/models",
            filename="bean_regressor.onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "bean_regressor.onnx"

    @patch("beantime.ml.model_manager.hf_hub_download")
    def test_local_artifact_skips_download(self, mock_download: MagicMock, models_dir: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir), hf_repo_id="beans/models"), _engine())
        mgr.ensure_available("bean_classifier")
        mock_download.assert_not_called()

    @patch("beantime.ml.model_manager.hf_hub_download")
    def test_download_failure_raises_model_load_error(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.side_effect = OSError("network unreachable")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), hf_repo_id="beans/models"), _engine())
        with pytest.raises(ModelLoadError, match="Could not download"):
            mgr.ensure_available("bean_classifier")

    def test_availability(self, models_dir: Path, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir)), _engine())
        assert mgr.availability("bean_classifier") == "available"

        empty = tmp_path / "empty"
        assert ModelManager(_make_settings(models_dir=str(empty)), _engine()).availability("bean_classifier") == (
            "missing"
        )
        with_repo = ModelManager(_make_settings(models_dir=str(empty), hf_repo_id="beans/models"), _engine())
        assert with_repo.availability("bean_classifier") == "downloadable"

    def test_acquire_opens_fresh_handle_each_time(self, models_dir: Path) -> None:
        engine = _engine()
        mgr = ModelManager(_make_settings(models_dir=str(models_dir)), engine)

        first = mgr.acquire("bean_classifier")
        mgr.release("bean_classifier", first)
        second = mgr.acquire("bean_classifier")

        assert first is not second
        assert first.closed is True
        assert mgr.get_loaded_models() == []

    def test_cache_reuses_handle(self, models_dir: Path) -> None:
        engine = _engine()
        mgr = ModelManager(_make_settings(models_dir=str(models_dir), model_cache=True), engine)

        first = mgr.acquire("bean_classifier")
        mgr.release("bean_classifier", first)
        second = mgr.acquire("bean_classifier")

        assert first is second
        assert first.closed is False
        assert len(engine.handles) == 1
        assert mgr.get_loaded_models() == ["bean_classifier"]

    def test_unload_idle_models_removes_expired(self, models_dir: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir), model_cache=True, model_ttl=1), _engine())
        handle = mgr.acquire("bean_regressor")

        # Fake the last_used time to be in the past.
        mgr._handles["bean_regressor"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []
        assert handle.closed is True

    def test_unload_idle_skipped_when_ttl_zero(self, models_dir: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir), model_cache=True, model_ttl=0), _engine())
        mgr.acquire("bean_regressor")
        mgr._handles["bean_regressor"].last_used = time.monotonic() - 10_000

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == ["bean_regressor"]

    def test_shutdown_closes_cached_handles(self, models_dir: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(models_dir), model_cache=True), _engine())
        handle = mgr.acquire("bean_classifier")

        mgr.shutdown()

        assert mgr.get_loaded_models() == []
        assert handle.closed is True


# ---------------------------------------------------------------------------
# ModelRuntime tests
# ---------------------------------------------------------------------------


class TestModelRuntime:
    def test_run_opens_and_releases(self, models_dir: Path) -> None:
        engine = _engine()
        runtime = ModelRuntime(ModelManager(_make_settings(models_dir=str(models_dir)), engine))

        output = runtime.run("bean_regressor", np.zeros((1, 224, 224, 3), dtype=np.float32), (1, 1))

        assert output.shape == (1, 1)
        (handle,) = engine.handles
        assert handle.closed is True

    def test_missing_artifact(self, tmp_path: Path) -> None:
        runtime = ModelRuntime(ModelManager(_make_settings(models_dir=str(tmp_path)), _engine()))
        with pytest.raises(ModelLoadError):
            runtime.run("bean_classifier", np.zeros((1, 224, 224, 3), dtype=np.uint8), (1, 9))

    def test_engine_fault_wrapped_and_handle_released(self, models_dir: Path) -> None:
        engine = _engine()
        engine.outputs["bean_classifier"] = RuntimeError("kernel exploded")
        runtime = ModelRuntime(ModelManager(_make_settings(models_dir=str(models_dir)), engine))

        with pytest.raises(InferenceError, match="kernel exploded"):
            runtime.run("bean_classifier", np.zeros((1, 224, 224, 3), dtype=np.uint8), (1, 9))
        assert engine.handles[0].closed is True

    def test_output_size_mismatch(self, models_dir: Path) -> None:
        runtime = ModelRuntime(ModelManager(_make_settings(models_dir=str(models_dir)), _engine()))
        with pytest.raises(InferenceError, match="expected 4"):
            runtime.run("bean_regressor", np.zeros((1, 2), dtype=np.float32), (2, 2))


# ---------------------------------------------------------------------------
# OnnxEngine tests
# ---------------------------------------------------------------------------


class TestOnnxEngine:
    def test_provider_building_cpu(self) -> None:
        engine = OnnxEngine(_make_settings(device="cpu"))
        assert engine._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        engine = OnnxEngine(_make_settings(device="cuda"))
        assert len(engine._providers) == 2
        provider_name, provider_opts = engine._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert engine._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        engine = OnnxEngine(_make_settings(device="openvino"))
        provider_name, _provider_opts = engine._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert engine._providers[1] == "CPUExecutionProvider"

    @patch("beantime.ml.engine.InferenceSession")
    def test_load_and_run(self, mock_session_cls: MagicMock) -> None:
        session = MagicMock()
        session.get_inputs.return_value = [MagicMock(name="input")]
        session.get_inputs.return_value[0].name = "serving_default_input:0"
        session.run.return_value = [np.array([[0.5]], dtype=np.float32)]
        mock_session_cls.return_value = session

        handle = OnnxEngine(_make_settings()).load(Path("/models/bean_regressor.onnx"))
        tensor = np.zeros((1, 224, 224, 3), dtype=np.float32)
        output = handle.run(tensor)

        assert output.tolist() == [[0.5]]
        session.run.assert_called_once_with(None, {"serving_default_input:0": tensor})
        assert mock_session_cls.call_args.args == ("/models/bean_regressor.onnx",)

    @patch("beantime.ml.engine.InferenceSession")
    def test_load_failure_raises_model_load_error(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.side_effect = RuntimeError("invalid protobuf")
        with pytest.raises(ModelLoadError, match="invalid protobuf"):
            OnnxEngine(_make_settings()).load(Path("/models/broken.onnx"))

    def test_run_failure_raises_inference_error(self) -> None:
        session = MagicMock()
        session.run.side_effect = RuntimeError("shape mismatch")
        handle = OnnxModelHandle(session, "bean_classifier")
        with pytest.raises(InferenceError, match="shape mismatch"):
            handle.run(np.zeros((1, 3), dtype=np.uint8))

    def test_run_after_close(self) -> None:
        handle = OnnxModelHandle(MagicMock(), "bean_classifier")
        handle.close()
        assert handle.closed is True
        with pytest.raises(InferenceError, match="closed"):
            handle.run(np.zeros((1, 3), dtype=np.uint8))
