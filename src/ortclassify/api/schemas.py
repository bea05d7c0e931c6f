"""Pydantic request/response schemas for the ortclassify API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ClassifyImageResponse(BaseModel):
    """Top prediction for one uploaded image."""

    label: str
    class_index: int = Field(ge=0)
    score: float = Field(description="Raw network output for the predicted class (not a probability)")
    generation: int = Field(ge=1, description="Request generation that produced this result")
    preview: str | None = Field(default=None, description="Base64 PNG of the resized model input")


class ClassificationStatusResponse(BaseModel):
    """The current result slot."""

    status: str = Field(description="'idle', 'busy', 'result', or 'error'")
    generation: int
    label: str | None = None
    class_index: int | None = None
    score: float | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(protected_namespaces=())

    status: str = "ok"
    model_loaded: bool
    num_classes: int
    concurrent_requests: int
    queue_depth: int


class ModelInfoResponse(BaseModel):
    """Information about the configured model."""

    model_config = ConfigDict(protected_namespaces=())

    model_path: str
    input_name: str
    output_name: str
    input_shape: list[int | str | None] = Field(description="Declared input shape, or the expected one if not loaded yet")
    num_classes: int
    loaded: bool


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
