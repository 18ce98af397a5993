"""Spherical geometry helpers and coordinate validation."""

import math
from typing import List, Optional, Sequence

from pydantic import ValidationError

from saferoute.schemas.common import BoundingBox, Coordinate

EARTH_RADIUS_KM = 6371.0


class CoordinateError(ValueError):
    """A coordinate is missing, non-numeric, NaN or out of range."""


class GeographicBoundsError(ValueError):
    """A coordinate lies outside the supported deployment region."""

    def __init__(self, point: Coordinate, region: BoundingBox):
        self.point = point
        self.region = region
        super().__init__(
            f"Location ({point.lat:.4f}, {point.lng:.4f}) is outside the supported region"
        )


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial bearing from a to b, clockwise from north in [0, 360)."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlng = math.radians(b.lng - a.lng)
    y = math.sin(dlng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(origin: Coordinate, bearing: float, distance_km: float) -> Coordinate:
    """Point reached by travelling distance_km from origin along bearing."""
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing)
    lat1 = math.radians(origin.lat)
    lng1 = math.radians(origin.lng)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta) + math.cos(lat1) * math.sin(delta) * math.cos(theta)
    )
    lng2 = lng1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    lng_deg = (math.degrees(lng2) + 540.0) % 360.0 - 180.0
    return Coordinate(lat=math.degrees(lat2), lng=lng_deg)


def interpolate(a: Coordinate, b: Coordinate, ratio: float) -> Coordinate:
    """Linear interpolation between two points; ratio 0 is a, 1 is b."""
    return Coordinate(
        lat=a.lat + (b.lat - a.lat) * ratio,
        lng=a.lng + (b.lng - a.lng) * ratio,
    )


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    return interpolate(a, b, 0.5)


def polyline_length_km(points: Sequence[Coordinate]) -> float:
    """Sum of Haversine distances along consecutive points."""
    return sum(haversine_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def validate_coordinate(lat, lng) -> Coordinate:
    """Build a Coordinate, raising CoordinateError on anything unusable."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        raise CoordinateError("Coordinates must be numbers")
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        raise CoordinateError(f"Coordinates must be numbers, got {lat!r}, {lng!r}")
    if math.isnan(lat_f) or math.isnan(lng_f) or math.isinf(lat_f) or math.isinf(lng_f):
        raise CoordinateError("Coordinates must be finite")
    try:
        return Coordinate(lat=lat_f, lng=lng_f)
    except ValidationError:
        raise CoordinateError(f"Coordinate out of range: ({lat_f}, {lng_f})")


def coerce_point(point) -> Optional[Coordinate]:
    """Return a Coordinate for point-like input, or None if it is invalid.

    Accepts Coordinate instances, mappings with lat/lng keys and (lat, lng) pairs.
    """
    if isinstance(point, Coordinate):
        return point
    try:
        if isinstance(point, dict):
            return validate_coordinate(point.get("lat"), point.get("lng"))
        lat, lng = point
        return validate_coordinate(lat, lng)
    except (CoordinateError, TypeError, ValueError):
        return None


def ensure_in_region(point: Coordinate, region: BoundingBox) -> Coordinate:
    """Raise GeographicBoundsError if point is outside region."""
    if not region.contains(point):
        raise GeographicBoundsError(point, region)
    return point


def nearest_point_index(points: List[Coordinate], target: Coordinate) -> int:
    """Index of the point closest to target."""
    best_idx = 0
    best_dist = float("inf")
    for idx, point in enumerate(points):
        dist = haversine_km(point, target)
        if dist < best_dist:
            best_dist = dist
            best_idx = idx
    return best_idx


def default_region() -> BoundingBox:
    """Deployment region from settings."""
    from saferoute.config import settings

    return BoundingBox(
        north=settings.region_max_lat,
        south=settings.region_min_lat,
        east=settings.region_max_lng,
        west=settings.region_min_lng,
    )
