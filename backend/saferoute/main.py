"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from saferoute.config import settings
from saferoute.api.dependencies import build_services, shutdown_services
from saferoute.api.v1.router import api_router
from saferoute.core.exceptions import register_exception_handlers
from saferoute.db.session import engine
from saferoute.middleware import RequestLoggingMiddleware, setup_logging
from saferoute.models.base import Base
from saferoute.services.rating_repository import create_sql_repository


# Setup logging early
setup_logging()
logger = logging.getLogger(__name__)


def validate_startup_configuration() -> None:
    """
    Report unsafe configuration at startup.
    Exits with error in production if requirements are not met.
    """
    errors = settings.validate_production_settings()

    if errors:
        logger.error("=" * 60)
        logger.error("CONFIGURATION ERRORS")
        logger.error("=" * 60)
        for error in errors:
            logger.error(f"  - {error}")
        logger.error("=" * 60)

        if settings.is_production():
            logger.critical("Refusing to start in production with unsafe configuration!")
            sys.exit(1)
        else:
            logger.warning("Running with development defaults. DO NOT use this configuration in production!")

    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"GraphHopper: {'enabled' if settings.graphhopper_api_key else 'disabled (no API key)'}")
    logger.info(f"OSRM: {settings.osrm_url}")
    logger.info(f"Debug Mode: {settings.debug}")


async def init_rating_storage():
    """Create the ratings table and return a repository, or None to run in memory."""
    if not settings.ratings_persistence_enabled:
        logger.info("Rating persistence disabled; ratings are kept in memory")
        return None
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established")
        return create_sql_repository()
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed, ratings will be kept in memory: {e}")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name}...")

    validate_startup_configuration()
    repository = await init_rating_storage()
    build_services(repository=repository)

    logger.info(f"{settings.app_name} started successfully")

    yield

    logger.info("Shutting down...")
    await shutdown_services()
    await engine.dispose()
    logger.info("Connections closed")


app = FastAPI(
    title=settings.app_name,
    description="""
Safety-aware road routing for India with crowd-sourced road ratings.

Routes are ranked by a blend of community safety ratings (70%) and travel
time (30%). When no routing provider answers, a highway graph search and
finally a direct line are used; such results are marked `"status": "degraded"`.

## Error Responses

All errors follow a consistent format:
```json
{
  "error": {
    "code": "ERROR_CODE",
    "message": "Human-readable message",
    "request_id": "abc123"
  }
}
```
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)

# ============================================================================
# Register Exception Handlers (before middleware)
# ============================================================================
register_exception_handlers(app)

# ============================================================================
# Middleware Stack (first added = last executed)
# ============================================================================
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["X-Request-ID"],
    max_age=600,
)

# ============================================================================
# API Routes
# ============================================================================
app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    response = {
        "name": settings.app_name,
        "version": "1.0.0",
        "health": "/health",
    }

    if not settings.is_production():
        response["docs"] = "/docs"

    return response
