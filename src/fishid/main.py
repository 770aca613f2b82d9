"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fishid.ml.model_manager import ModelManager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fishid.api.exception_handlers import setup_exception_handlers
from fishid.api.routes import router
from fishid.config import Settings, get_settings
from fishid.identifier import FishIdentifier
from fishid.interpretation import FishResultInterpreter
from fishid.ml.image_classifier import OnnxImageClassifier
from fishid.ml.inference import InferencePool
from fishid.ml.model_manager import OnnxModelManager
from fishid.ml.preprocessing import PillowImagePreprocessor

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Wire settings, model manager, inference pool and identifier onto app.state."""
    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings)
    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.identifier = FishIdentifier(
        preprocessor=PillowImagePreprocessor(settings),
        classifier=OnnxImageClassifier(model_manager, settings.classification_model),
        interpreter=FishResultInterpreter(default_top_k=settings.top_k),
        pool=inference_pool,
    )


async def evict_idle_models(model_manager: ModelManager, interval: float) -> None:
    """Periodically drop model sessions that have been idle past their TTL."""
    while True:
        await asyncio.sleep(interval)
        model_manager.unload_idle_models()


def start_model_eviction(model_manager: ModelManager, settings: Settings) -> asyncio.Task[None] | None:
    """Schedule idle-session eviction at half the TTL; None when eviction is disabled."""
    if settings.model_ttl == 0:
        return None
    return asyncio.create_task(evict_idle_models(model_manager, settings.model_ttl / 2))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FishID (device=%s, max_concurrent=%s, model=%s, top_k=%s)",
        settings.device,
        settings.max_concurrent,
        settings.classification_model,
        settings.top_k,
    )

    init_app_state(app, settings)

    eviction_task = start_model_eviction(app.state.model_manager, settings)

    logger.info("FishID ready")
    yield

    logger.info("Shutting down FishID")
    if eviction_task is not None:
        eviction_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction_task
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("FishID shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FishID",
        description="Fish species identification from photographs using an image classifier",
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

    setup_exception_handlers(application)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("fishid.main:app", host=settings.host, port=settings.port)
