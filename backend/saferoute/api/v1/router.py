"""API v1 router aggregation."""

from fastapi import APIRouter

from saferoute.api.v1.routes import health, ratings, routing

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(routing.router, prefix="/routes", tags=["Routing"])
api_router.include_router(ratings.router, prefix="/ratings", tags=["Ratings"])
