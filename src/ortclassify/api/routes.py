"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from ortclassify.api.middleware import verify_api_key
from ortclassify.api.schemas import (
    ClassificationStatusResponse,
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
)
from ortclassify.ml.errors import (
    ClassificationError,
    EngineLoadError,
    EngineRunError,
    ImageDecodeError,
    InferenceBusyError,
    InferenceTimeoutError,
    TensorShapeMismatch,
)

if TYPE_CHECKING:
    from ortclassify.config import Settings
    from ortclassify.ml.inference import InferencePool
    from ortclassify.ml.model_manager import OnnxModelManager
    from ortclassify.ml.pipeline import ClassificationPipeline
    from ortclassify.ml.request_state import RequestTracker

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_STATUS: dict[type[ClassificationError], int] = {
    ImageDecodeError: status.HTTP_400_BAD_REQUEST,
    TensorShapeMismatch: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineLoadError: status.HTTP_503_SERVICE_UNAVAILABLE,
    InferenceBusyError: status.HTTP_503_SERVICE_UNAVAILABLE,
    EngineRunError: status.HTTP_502_BAD_GATEWAY,
    InferenceTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def _get_pipeline(request: Request) -> ClassificationPipeline:
    pipeline: ClassificationPipeline = request.app.state.pipeline
    return pipeline


def _get_tracker(request: Request) -> RequestTracker:
    tracker: RequestTracker = request.app.state.tracker
    return tracker


def _error_response(exc: ClassificationError) -> JSONResponse:
    status_code = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
        status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
    },
    summary="Classify an image",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    preview: bool = False,
) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return the top class with its raw score."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)

    image_bytes = await file.read(settings.max_file_size + 1)
    if len(image_bytes) > settings.max_file_size:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={"detail": f"File exceeds {settings.max_file_size} bytes"},
        )

    try:
        outcome = await pipeline.classify(image_bytes, preview=preview)
    except ClassificationError as exc:
        return _error_response(exc)

    return ClassifyImageResponse(
        label=outcome.result.label,
        class_index=outcome.result.index,
        score=outcome.result.score,
        generation=outcome.generation,
        preview=outcome.preview,
    )


@router.get(
    "/status",
    response_model=ClassificationStatusResponse,
    summary="Current classification state",
)
async def classification_status(request: Request) -> ClassificationStatusResponse:
    """Return the state of the most recent classification request."""
    state = _get_tracker(request).state
    result = state.result
    return ClassificationStatusResponse(
        status=state.status.value,
        generation=state.generation,
        label=result.label if result else None,
        class_index=result.index if result else None,
        score=result.score if result else None,
        error=state.error,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        model_loaded=_get_model_manager(request).is_loaded,
        num_classes=len(request.app.state.labels),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    summary="Describe the configured model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Return model path, tensor names and input shape."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    declared = manager.input_shape(settings.input_name)
    return ModelInfoResponse(
        model_path=str(manager.model_path),
        input_name=settings.input_name,
        output_name=settings.output_name,
        input_shape=declared if declared is not None else list(_get_pipeline(request).dims),
        num_classes=len(request.app.state.labels),
        loaded=manager.is_loaded,
    )
