"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from beantime.api.middleware import verify_api_key
from beantime.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LabelsResponse,
    ModelInfo,
    ModelsResponse,
    PredictionResponse,
    StateResponse,
)
from beantime.ml.classifier import BEAN_LABELS, REJECTION_LABEL
from beantime.ml.model_manager import MODEL_REGISTRY
from beantime.ml.pipeline import Failed

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from beantime.config import Settings
    from beantime.ml.controller import PredictionController
    from beantime.ml.inference import PredictionPool
    from beantime.ml.model_manager import ModelManager
    from beantime.ml.pipeline import Outcome, TerminalOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# Strong references to prediction tasks that may outlive their request.
_pending_predictions: set[asyncio.Task[TerminalOutcome]] = set()


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pool(request: Request) -> PredictionPool:
    pool: PredictionPool = request.app.state.prediction_pool
    return pool


def _get_controller(request: Request) -> PredictionController:
    controller: PredictionController = request.app.state.controller
    return controller


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


async def _read_upload(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    return data


def _publish_terminal(controller: PredictionController, data: bytes, task: asyncio.Task[TerminalOutcome]) -> None:
    outcome: TerminalOutcome
    if task.cancelled():
        logger.warning("Prediction task cancelled before completion")
        outcome = Failed()
    elif (exc := task.exception()) is not None:
        if not isinstance(exc, TimeoutError):
            logger.error("Prediction task failed", exc_info=exc)
        outcome = Failed()
    else:
        outcome = task.result()
    controller.complete(data, outcome)


async def _run_prediction(pool: PredictionPool, controller: PredictionController, data: bytes) -> TerminalOutcome:
    """Run a prediction whose terminal outcome is published even if the caller goes away.

    The pool call is shielded so a client disconnect cancels only the wait; the
    pipeline run finishes and its outcome (or ``Failed``) still reaches the controller.

    Raises:
        TimeoutError: If the pool has no free slot.
    """
    task = asyncio.ensure_future(pool.predict(data))
    _pending_predictions.add(task)
    task.add_done_callback(partial(_publish_terminal, controller, data))
    task.add_done_callback(_pending_predictions.discard)
    return await asyncio.shield(task)


def _ndjson(outcome: Outcome) -> str:
    return PredictionResponse.from_outcome(outcome).model_dump_json() + "\n"


@router.post(
    "/predict",
    response_model=PredictionResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Predict the cooking time of a bean photo",
)
async def predict(request: Request, file: UploadFile) -> PredictionResponse:
    """Classify the uploaded photo and, if it shows a bean, estimate its cooking time."""
    data = await _read_upload(file, _get_settings(request))
    controller = _get_controller(request)

    controller.begin(data)
    try:
        outcome = await _run_prediction(_get_pool(request), controller, data)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many concurrent predictions, retry later",
        ) from None
    return PredictionResponse.from_outcome(outcome)


@router.post(
    "/predict/stream",
    responses={status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse}},
    summary="Predict with an interim progress line",
)
async def predict_stream(request: Request, file: UploadFile) -> StreamingResponse:
    """Stream newline-delimited JSON: an in-progress line, then the final outcome."""
    data = await _read_upload(file, _get_settings(request))
    controller = _get_controller(request)
    pool = _get_pool(request)

    async def events() -> AsyncIterator[str]:
        yield _ndjson(controller.begin(data))
        outcome: TerminalOutcome
        try:
            outcome = await _run_prediction(pool, controller, data)
        except TimeoutError:
            outcome = Failed()
        yield _ndjson(outcome)

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.get(
    "/state",
    response_model=StateResponse,
    summary="Current prediction state",
)
async def get_state(request: Request) -> StateResponse:
    """Return whether an image is retained and the latest outcome."""
    state = _get_controller(request).state
    outcome = PredictionResponse.from_outcome(state.outcome) if state.outcome is not None else None
    return StateResponse(has_image=state.image is not None, outcome=outcome)


@router.post(
    "/reset",
    response_model=StateResponse,
    summary="Clear the retained image and outcome",
)
async def reset(request: Request) -> StateResponse:
    """Return the controller to its initial state."""
    _get_controller(request).reset()
    logger.info("Prediction state reset")
    return StateResponse(has_image=False)


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List bean varieties",
)
async def list_labels() -> LabelsResponse:
    """Return the classifier labels in output order."""
    return LabelsResponse(labels=list(BEAN_LABELS), rejection_label=REJECTION_LABEL)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List packaged models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the packaged models, whether their artifacts are present, and which are in use."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    active_models = {settings.classifier_model, settings.regressor_model}

    models = [
        ModelInfo(
            name=spec.name,
            filename=spec.filename,
            task=spec.task,
            status=manager.availability(spec.name),
            active=spec.name in active_models,
            metrics=spec.metrics,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
