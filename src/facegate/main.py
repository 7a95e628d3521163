"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from facegate.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facegate.api.routes import router
from facegate.config import get_settings
from facegate.core.errors import ExtractorUnavailable
from facegate.gallery import GalleryStore
from facegate.ml.context import VisionContext
from facegate.ml.inference import InferencePool
from facegate.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the services the routes read from ``app.state``."""
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings.max_concurrent)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.vision = VisionContext(settings, model_manager=app.state.model_manager)

    gallery = GalleryStore(settings.match_config(), settings.duplicate_config())
    if settings.gallery_path is not None:
        try:
            gallery.load(settings.gallery_path)
        except FileNotFoundError:
            logger.info("No gallery snapshot at %s yet; starting empty", settings.gallery_path)
    app.state.gallery = gallery


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceGate (device=%s, max_concurrent=%s, recognition=%s, threshold=%.3f)",
        settings.device,
        settings.max_concurrent,
        settings.face_recognition_model,
        settings.match_threshold,
    )

    init_state(app, settings)

    if settings.load_models_on_startup:
        try:
            app.state.vision.init()
        except ExtractorUnavailable:
            # Matching and quality checks do not need the model.
            logger.warning("Starting without embedding extractor")

    logger.info("FaceGate ready (%d identities)", len(app.state.gallery))
    yield

    logger.info("Shutting down FaceGate")
    app.state.vision.teardown()
    app.state.inference_pool.shutdown()
    logger.info("FaceGate shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceGate",
        description="Face quality gate and identity matching for checkpoint attendance",
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
    """Console entry point: serve the API with uvicorn."""
    settings = get_settings()
    uvicorn.run("facegate.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
