"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the API routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.logging_config import configure_logging
from .api.routers import contact_imports

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    from .db.store import init_tables

    try:
        init_tables()
    except Exception as e:
        logger.error("Failed to initialize contact store tables: %s", e)
        raise

    logger.info("Contact importer ready (model=%s, batch size=%d)", settings.llm_model, settings.import_batch_size)
    yield


app = FastAPI(
    title="Contact Importer API",
    version="1.0.0",
    description="AI-assisted contact spreadsheet import with field mapping and deduplication",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(contact_imports.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Contact Importer API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for deployment monitoring."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "contact-importer-api"
    }
