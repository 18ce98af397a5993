"""Health check endpoints."""

import httpx
from fastapi import APIRouter, Response
from sqlalchemy import text

from saferoute.config import settings
from saferoute.db.session import engine

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(response: Response):
    """Readiness check for the rating database and routing providers.

    Returns HTTP 503 only if the database is required and unreachable;
    provider outages degrade routing but do not make the service unready.
    """
    checks = {
        "database": None,
        "osrm": False,
        "graphhopper": bool(settings.graphhopper_api_key),
    }
    errors = {}

    if settings.ratings_persistence_enabled:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            checks["database"] = False
            errors["database"] = type(e).__name__

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            osrm_response = await client.get(
                f"{settings.osrm_url.rstrip('/')}/route/v1/driving/77.1025,28.7041;77.4538,28.6692",
                params={"overview": "false"},
            )
            checks["osrm"] = osrm_response.status_code == 200
    except httpx.HTTPError as e:
        errors["osrm"] = type(e).__name__

    ready = checks["database"] is not False

    if not ready:
        response.status_code = 503

    result = {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
    }

    if errors:
        result["errors"] = errors

    return result
