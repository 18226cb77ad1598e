"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from beantime.config import Settings
    from beantime.ml.engine import InferenceEngine

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beantime.api.routes import router
from beantime.config import get_settings
from beantime.ml.classifier import BeanClassifier
from beantime.ml.controller import PredictionController
from beantime.ml.engine import OnnxEngine
from beantime.ml.inference import PredictionPool
from beantime.ml.model_manager import ModelManager
from beantime.ml.pipeline import CookingTimePipeline
from beantime.ml.regressor import CookingTimeRegressor
from beantime.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


def init_app_state(app: FastAPI, settings: Settings, engine: InferenceEngine | None = None) -> None:
    """Build the pipeline and attach it, with its schedulers, to ``app.state``."""
    model_manager = ModelManager(settings, engine or OnnxEngine(settings))
    runtime = ModelRuntime(model_manager)
    pipeline = CookingTimePipeline(
        BeanClassifier(runtime, settings.classifier_model),
        CookingTimeRegressor(runtime, settings.regressor_model),
        max_image_pixels=settings.max_image_pixels,
    )

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.pipeline = pipeline
    app.state.prediction_pool = PredictionPool(settings, pipeline)
    app.state.controller = PredictionController(pipeline, max_workers=settings.max_concurrent)


def shutdown_app_state(app: FastAPI) -> None:
    """Stop worker threads and close any cached model handles."""
    app.state.prediction_pool.shutdown()
    app.state.controller.shutdown()
    app.state.model_manager.shutdown()


async def _evict_idle_models(model_manager: ModelManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting BeanTime (device=%s, max_concurrent=%s, models_dir=%s, model_cache=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.model_cache,
    )

    init_app_state(app, settings)
    eviction_task = None
    if settings.model_cache and settings.model_ttl > 0:
        eviction_task = asyncio.create_task(_evict_idle_models(app.state.model_manager))

    logger.info("BeanTime ready")
    yield

    logger.info("Shutting down BeanTime")
    if eviction_task is not None:
        eviction_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction_task
    shutdown_app_state(app)
    logger.info("BeanTime shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="BeanTime",
        description="Bean variety recognition and cooking time estimation from photos",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("beantime.main:app", host=settings.host, port=settings.port)
