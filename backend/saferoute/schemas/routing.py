"""Routing request and response schemas."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from saferoute.schemas.common import Coordinate


class RouteProvider(str, Enum):
    """Where a candidate route came from."""

    GRAPHHOPPER = "graphhopper"
    OSRM = "osrm"
    ASTAR = "astar"
    STRAIGHT_LINE = "straight-line"


class RouteType(str, Enum):
    """How the returned route was produced."""

    STANDARD = "standard"
    SAFE_ROUTE = "safe-route"
    GRAPHHOPPER = "graphhopper"
    OSRM = "osrm"
    ASTAR = "astar"
    STRAIGHT_LINE = "straight-line"
    FALLBACK = "fallback"
    EMERGENCY = "emergency"


class RouteRequest(BaseModel):
    """Request body for route calculation."""

    start: Coordinate = Field(..., description="Starting point")
    destination: Coordinate = Field(..., description="Destination point")
    prioritize_safety: bool = Field(
        default=True,
        description="Prefer community-rated safe roads over raw speed",
    )


class RouteCandidate(BaseModel):
    """One possible route between two points."""

    coordinates: List[Coordinate] = Field(..., min_length=2, description="Points in travel order")
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    provider: RouteProvider
    safety_score: Optional[int] = Field(default=None, ge=0, le=100)
    degraded: bool = Field(default=False, description="True for synthesized straight-line routes")


class RouteOk(BaseModel):
    """A route produced by a provider or the graph search."""

    status: Literal["ok"] = "ok"
    route: List[Coordinate]
    distance_km: float
    estimated_time_min: float
    safety_score: int = Field(..., ge=0, le=100)
    route_type: RouteType
    provider: RouteProvider


class RouteDegraded(BaseModel):
    """A synthesized route returned when no real route could be found."""

    status: Literal["degraded"] = "degraded"
    route: List[Coordinate]
    distance_km: float
    estimated_time_min: float
    safety_score: int = Field(..., ge=0, le=100)
    route_type: RouteType
    provider: RouteProvider
    reason: str


RouteResult = Annotated[Union[RouteOk, RouteDegraded], Field(discriminator="status")]
