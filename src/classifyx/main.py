"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.config import Settings
    from classifyx.ml.model_manager import ModelManager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.pages import router as pages_router
from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.ml.inference import InferencePool
from classifyx.ml.loader import load_classifier
from classifyx.ml.model_manager import OnnxModelManager
from classifyx.ml.preprocessing import PilImagePreprocessor
from classifyx.ui.images import ImageStore
from classifyx.ui.state import ViewSession
from classifyx.ui.themes import Theme

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings, ML collaborators and the view session to ``app.state``."""
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.preprocessor = PilImagePreprocessor(settings.max_image_pixels)
    app.state.image_store = ImageStore()
    app.state.session = ViewSession(app.state.image_store, Theme(settings.default_theme))


async def evict_idle_models(manager: ModelManager, interval: float) -> None:
    """Periodically drop sessions idle for longer than the model TTL."""
    while True:
        await asyncio.sleep(interval)
        manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, model=%s, top_k=%s)",
        settings.device,
        settings.max_concurrent,
        settings.classification_model,
        settings.top_k,
    )

    init_state(app, settings)
    session: ViewSession = app.state.session
    load = partial(
        load_classifier,
        settings,
        app.state.model_manager,
        app.state.preprocessor,
        app.state.inference_pool,
    )
    # The page is served while the model downloads; status reads "initializing".
    background = [asyncio.create_task(session.initialize(load), name="classifier-load")]
    if settings.model_ttl > 0:
        background.append(
            asyncio.create_task(
                evict_idle_models(app.state.model_manager, settings.eviction_interval),
                name="model-eviction",
            )
        )

    logger.info("ClassifyX serving")
    yield

    logger.info("Shutting down ClassifyX")
    for task in background:
        task.cancel()
    for task in background:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    session.close()
    app.state.image_store.clear()
    app.state.inference_pool.shutdown(wait=False)
    app.state.model_manager.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Single-page image classification demo backed by hub-hosted ONNX models",
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

    application.include_router(pages_router)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "classifyx.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
