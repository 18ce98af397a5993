# Pydantic schemas
from saferoute.schemas.common import Coordinate, BoundingBox
from saferoute.schemas.road_segment import (
    RatingVerdict,
    TrafficStatus,
    SegmentCoordinates,
    RoadSegment,
    RatingSubmission,
    TrafficUpdate,
    SegmentSlice,
    SegmentationRequest,
    RatedSegmentSlice,
)
from saferoute.schemas.routing import (
    RouteProvider,
    RouteType,
    RouteRequest,
    RouteCandidate,
    RouteOk,
    RouteDegraded,
    RouteResult,
)

__all__ = [
    "Coordinate",
    "BoundingBox",
    "RatingVerdict",
    "TrafficStatus",
    "SegmentCoordinates",
    "RoadSegment",
    "RatingSubmission",
    "TrafficUpdate",
    "SegmentSlice",
    "SegmentationRequest",
    "RatedSegmentSlice",
    "RouteProvider",
    "RouteType",
    "RouteRequest",
    "RouteCandidate",
    "RouteOk",
    "RouteDegraded",
    "RouteResult",
]
