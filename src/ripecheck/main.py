"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ripecheck.api.routes import router
from ripecheck.config import get_settings
from ripecheck.pipeline import build_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build the pipeline on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting RipeCheck (device=%s, max_concurrent=%s, model=%s, history=%s)",
        settings.device,
        settings.max_concurrent,
        settings.ripeness_model,
        settings.history_capacity,
    )

    pipeline = build_pipeline(settings)
    app.state.pipeline = pipeline

    if pipeline.model.synthetic:
        logger.warning("RipeCheck ready with SYNTHETIC scores; results are not real classifications")
    else:
        logger.info("RipeCheck ready")
    yield

    logger.info("Shutting down RipeCheck")
    pipeline.shutdown()
    logger.info("RipeCheck shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="RipeCheck",
        description="Fruit ripeness classification and inventory guidance for retail staff",
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
    """Serve the API with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("ripecheck.main:app", host=settings.host, port=settings.port)
