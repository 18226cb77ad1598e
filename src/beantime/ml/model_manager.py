"""Model manager: locate, download, open, and optionally cache model handles.

Each prediction opens its own handle and releases it right after the call.
With ``BEANTIME_MODEL_CACHE=true`` handles are kept per artifact name
instead, guarded by a single lock and evicted after ``model_ttl`` seconds
of inactivity.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError

from beantime.exceptions import ModelLoadError

if TYPE_CHECKING:
    from beantime.config import Settings
    from beantime.ml.engine import InferenceEngine, ModelHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    CLASSIFICATION = "classification"
    REGRESSION = "regression"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single packaged model."""

    name: str
    filename: str
    task: ModelTask
    input_dtype: str
    output_shape: tuple[int, ...]
    metrics: dict[str, float] = field(default_factory=dict)


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "bean_classifier": ModelSpec(
        name="bean_classifier",
        filename="bean_classifier.onnx",
        task=ModelTask.CLASSIFICATION,
        input_dtype="uint8",
        output_shape=(1, 9),
    ),
    "bean_regressor": ModelSpec(
        name="bean_regressor",
        filename="bean_regressor.onnx",
        task=ModelTask.REGRESSION,
        input_dtype="float32",
        output_shape=(1, 1),
        metrics={"rmse_minutes": 26.0, "mae_minutes": 16.40},
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry, raising ModelLoadError for unknown names."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise ModelLoadError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedHandle:
    handle: ModelHandle
    last_used: float


class ModelManager:
    """Resolves model artifacts on disk and hands out engine handles."""

    def __init__(self, settings: Settings, engine: InferenceEngine) -> None:
        self._settings = settings
        self._engine = engine
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._handles: dict[str, _CachedHandle] = {}

    @property
    def cache_enabled(self) -> bool:
        return self._settings.model_cache

    # -- Public API ---------------------------------------------------------

    def local_path(self, model_name: str) -> Path:
        """Return where the artifact for ``model_name`` is expected on disk."""
        return self._models_dir / get_spec(model_name).filename

    def availability(self, model_name: str) -> str:
        """Return 'available', 'downloadable', or 'missing' for a model."""
        if self.local_path(model_name).is_file():
            return "available"
        if self._settings.hf_repo_id:
            return "downloadable"
        return "missing"

    def ensure_available(self, model_name: str) -> Path:
        """Return the local artifact path, downloading it if configured to.

        Raises:
            ModelLoadError: If the model is unknown, absent, or the download fails.
        """
        spec = get_spec(model_name)
        path = self._models_dir / spec.filename
        if path.is_file():
            return path

        repo_id = self._settings.hf_repo_id
        if not repo_id:
            raise ModelLoadError(f"Model artifact not found: {path}")

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=spec.filename,
                    local_dir=str(self._models_dir),
                )
            )
        except (HfHubHTTPError, OSError) as exc:
            raise ModelLoadError(f"Could not download {spec.filename} from {repo_id}: {exc}") from exc
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def acquire(self, model_name: str) -> ModelHandle:
        """Open a handle for ``model_name`` (or reuse the cached one)."""
        if not self.cache_enabled:
            return self._engine.load(self.ensure_available(model_name))

        with self._lock:
            cached = self._handles.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.handle

        handle = self._engine.load(self.ensure_available(model_name))

        with self._lock:
            # Double-check: another thread may have opened it while we loaded.
            existing = self._handles.get(model_name)
            if existing is not None:
                existing.last_used = time.monotonic()
                handle.close()
                return existing.handle
            self._handles[model_name] = _CachedHandle(handle=handle, last_used=time.monotonic())
            logger.info("Cached handle for %s", model_name)
            return handle

    def release(self, model_name: str, handle: ModelHandle) -> None:
        """Give a handle back after one inference call."""
        if self.cache_enabled:
            with self._lock:
                cached = self._handles.get(model_name)
                if cached is not None and cached.handle is handle:
                    return
        handle.close()

    def get_loaded_models(self) -> list[str]:
        """Return names of models with cached handles."""
        with self._lock:
            return list(self._handles.keys())

    def unload_idle_models(self) -> None:
        """Close cached handles that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._handles.items() if (now - cached.last_used) > ttl]
            for name in expired:
                self._handles.pop(name).handle.close()
                logger.info("Evicted idle handle for %s", name)

    def shutdown(self) -> None:
        """Close all cached handles."""
        with self._lock:
            for cached in self._handles.values():
                cached.handle.close()
            self._handles.clear()
            logger.info("All model handles closed")
