"""Route safety scoring against community road ratings."""

import math
from typing import List, Optional, Sequence

from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import RatingVerdict, RoadSegment
from saferoute.services.geo import haversine_km, midpoint

DEFAULT_SAFETY_SCORE = 75
MATCH_RADIUS_KM = 1.0
MAX_SAMPLES = 20


def segment_midpoint(segment: RoadSegment) -> Coordinate:
    return midpoint(segment.coordinates.start, segment.coordinates.end)


def closest_rated_segment(
    a: Coordinate,
    b: Coordinate,
    segments: Sequence[RoadSegment],
    radius_km: float = MATCH_RADIUS_KM,
) -> Optional[RoadSegment]:
    """Rated segment whose midpoint is nearest the midpoint of a-b, within radius_km."""
    center = midpoint(a, b)
    best = None
    best_dist = radius_km
    for segment in segments:
        if segment.rating == RatingVerdict.UNKNOWN:
            continue
        dist = haversine_km(center, segment_midpoint(segment))
        if dist <= best_dist:
            best = segment
            best_dist = dist
    return best


class SafetyScorer:
    """Scores a route 0-100 by the share of sampled stretches rated Bad.

    Up to twenty evenly spaced sub-segments are sampled. Each is matched
    to the nearest rated segment within a kilometre. A route with no
    matched ratings at all gets the caller's default.
    """

    def __init__(self, match_radius_km: float = MATCH_RADIUS_KM, max_samples: int = MAX_SAMPLES):
        self.match_radius_km = match_radius_km
        self.max_samples = max_samples

    def score(
        self,
        route: Sequence[Coordinate],
        rated_segments: Sequence[RoadSegment],
        default: int = DEFAULT_SAFETY_SCORE,
    ) -> int:
        n = len(route)
        if n < 2 or not rated_segments:
            return default

        stride = max(1, n // self.max_samples)
        sampled = math.ceil((n - 1) / stride)
        bad = 0
        matched = 0

        for i in range(0, n - 1, stride):
            a = route[i]
            b = route[min(i + stride, n - 1)]
            segment = closest_rated_segment(a, b, rated_segments, self.match_radius_km)
            if segment is None:
                continue
            matched += 1
            if segment.rating == RatingVerdict.BAD:
                bad += 1

        if matched == 0:
            return default

        score = round(100 - (bad / sampled) * 100)
        return max(0, min(100, score))

    def bad_segments_near(
        self,
        route: Sequence[Coordinate],
        rated_segments: Sequence[RoadSegment],
        radius_km: Optional[float] = None,
    ) -> List[RoadSegment]:
        """Bad segments whose midpoint lies within radius_km of any route point."""
        radius = self.match_radius_km if radius_km is None else radius_km
        found = []
        for segment in rated_segments:
            if segment.rating != RatingVerdict.BAD:
                continue
            center = segment_midpoint(segment)
            if any(haversine_km(point, center) <= radius for point in route):
                found.append(segment)
        return found


safety_scorer = SafetyScorer()
