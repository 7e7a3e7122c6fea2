"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from classifyx.ui.state import Status
from classifyx.ui.themes import Theme


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for the stateless image classification endpoint."""

    model: str
    tags: list[ImageTag]


class PredictionOut(BaseModel):
    """A prediction row as shown in the results table."""

    label: str
    probability: float = Field(ge=0.0, le=1.0)
    percentage: float = Field(description="round(probability * 100, 2)")


class ImageInfo(BaseModel):
    """The currently selected image."""

    id: str
    filename: str
    content_type: str
    size: int
    preview_url: str


class SessionResponse(BaseModel):
    """Snapshot of the page's view state."""

    theme: Theme
    status: Status
    message: str
    model: str | None
    can_classify: bool
    image: ImageInfo | None
    predictions: list[PredictionOut]


class ThemeUpdate(BaseModel):
    """Request body for switching themes."""

    theme: Theme


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    classifier: Status
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    repo_id: str
    task: str = Field(description="Model task: 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
