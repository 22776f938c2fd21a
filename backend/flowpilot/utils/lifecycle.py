# /flowpilot/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from flowpilot.utils.logging import setup_logging
from flowpilot.services.session_service import session_service
from flowpilot.config.settings import settings

# Application lifespan: logging is configured on startup and the in-memory
# session store is dropped on shutdown.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info(
        "Application starting up (environment=%s, validation_mode=%s)...",
        settings.environment,
        settings.ai_validation_mode,
    )

    yield  # Application is now running

    logger.info("Application shutting down...")
    dropped = session_service.clear()
    logger.info("Dropped %d in-memory sessions.", dropped)
