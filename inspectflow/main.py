"""Application entry-point – creates the FastAPI app and builds the pipeline."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from inspectflow.api.routes import router
from inspectflow.config import get_settings
from inspectflow.processing.config import pipeline_settings
from inspectflow.processing.pipeline import build_pipeline

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate configuration and assemble the pipeline once."""
    logger.info("=== Building processing pipeline ===")
    app.state.pipeline = build_pipeline(settings, pipeline_settings)
    logger.info("=== Startup complete ===")
    yield


app = FastAPI(
    title="Inspection Document Processor",
    description=(
        "Turns shipping and inspection documents into structured fields, "
        "a summary, validation findings and searchable vector embeddings."
    ),
    version=settings.service_version,
    lifespan=lifespan,
)

app.include_router(router, prefix="/api")
