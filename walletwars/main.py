"""WalletWars FastAPI application.

Operator surface for the tournament engine: health, lifecycle status
and manual lifecycle actions. Scheduled work runs in Celery.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from walletwars import __version__
from walletwars.api.routes import health, tournaments
from walletwars.config import get_settings
from walletwars.config.logging_config import configure_logging
from walletwars.services.errors import StorageError

settings = get_settings()

# Configure structured logging
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_walletwars", version=__version__)
    yield
    logger.info("shutting_down_walletwars")


# Create FastAPI application
app = FastAPI(
    title="WalletWars",
    description="Tournament lifecycle automation for WalletWars",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(tournaments.router)


# Error handlers
@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """Record store unavailable."""
    logger.error("storage_error", path=request.url.path, operation=exc.operation, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})
