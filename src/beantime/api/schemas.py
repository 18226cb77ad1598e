"""Pydantic request/response schemas for the BeanTime API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from beantime.ml.pipeline import Estimated, OutcomeStatus

if TYPE_CHECKING:
    from beantime.ml.pipeline import Outcome


class PredictionResponse(BaseModel):
    """One pipeline outcome: interim, rejected, estimated, or failed."""

    status: OutcomeStatus
    message: str
    label: str | None = Field(default=None, description="Detected bean variety (estimated outcomes only)")
    minutes: float | None = Field(default=None, description="Estimated cooking time in minutes")
    latency_ms: int | None = Field(default=None, description="Wall-clock time of the regression step")

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> PredictionResponse:
        if isinstance(outcome, Estimated):
            return cls(
                status=outcome.status,
                message=outcome.message,
                label=outcome.label,
                minutes=outcome.minutes,
                latency_ms=outcome.latency_ms,
            )
        return cls(status=outcome.status, message=outcome.message)


class StateResponse(BaseModel):
    """What the prediction controller currently holds."""

    has_image: bool
    outcome: PredictionResponse | None = None


class LabelsResponse(BaseModel):
    """Ordered classifier label set."""

    labels: list[str]
    rejection_label: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about a packaged model."""

    name: str
    filename: str
    task: str = Field(description="Model task: 'classification' or 'regression'")
    status: str = Field(description="Artifact status: 'available', 'downloadable', or 'missing'")
    active: bool = Field(description="Whether the pipeline is configured to use this model")
    metrics: dict[str, float] = Field(default_factory=dict)


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
