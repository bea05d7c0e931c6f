"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ortclassify.config import Settings
    from ortclassify.ml.request_state import ClassificationState

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ortclassify.api.routes import router
from ortclassify.config import get_settings
from ortclassify.ml.errors import EngineLoadError
from ortclassify.ml.image_classifier import ClassLabelTable, OnnxImageClassifier
from ortclassify.ml.inference import InferencePool
from ortclassify.ml.model_manager import OnnxModelManager
from ortclassify.ml.pipeline import ClassificationPipeline
from ortclassify.ml.request_state import ClassificationStatus, RequestTracker

logger = logging.getLogger(__name__)


def _log_transition(state: ClassificationState) -> None:
    if state.error is not None:
        logger.info("Request %d -> %s (%s)", state.generation, state.status, state.error)
    elif state.status == ClassificationStatus.RESULT and state.result is not None:
        logger.info("Request %d -> %s (%s)", state.generation, state.status, state.result.label)
    else:
        logger.info("Request %d -> %s", state.generation, state.status)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Build labels, model manager, inference pool, tracker and pipeline on ``app.state``."""
    labels = ClassLabelTable.load(settings.labels_path)
    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings)
    tracker = RequestTracker()
    tracker.subscribe(_log_transition)

    classifier = OnnxImageClassifier(
        model_manager,
        labels,
        input_name=settings.input_name,
        output_name=settings.output_name,
    )

    app.state.settings = settings
    app.state.labels = labels
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.tracker = tracker
    app.state.pipeline = ClassificationPipeline(settings, classifier, inference_pool, tracker)


def shutdown_app_state(app: FastAPI) -> None:
    """Stop the inference pool and drop the model session."""
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ortclassify (model=%s, labels=%s, size=%s, max_concurrent=%s)",
        settings.model_repo_id or settings.model_path,
        settings.labels_path,
        settings.image_size,
        settings.max_concurrent,
    )

    init_app_state(app, settings)

    if settings.preload_model:
        try:
            app.state.model_manager.get_session()
        except EngineLoadError as exc:
            logger.error("Model preload failed, will retry on first request: %s", exc)

    logger.info("ortclassify ready")
    yield

    logger.info("Shutting down ortclassify")
    shutdown_app_state(app)
    logger.info("ortclassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ortclassify",
        description="Image classification with a pre-exported ONNX model",
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
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("ortclassify.main:app", host=settings.host, port=settings.port)
