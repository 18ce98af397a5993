"""Slice a routed polyline into fixed-length rateable segments."""

import logging
from typing import Iterable, List, Optional

from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import SegmentCoordinates, SegmentSlice
from saferoute.services.geo import coerce_point, haversine_km, interpolate, polyline_length_km
from saferoute.services.road_segments import make_segment_id

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_KM = 2.0
DEFAULT_TOLERANCE_KM = 0.1
CUT_EPSILON = 1e-9


class GeometrySegmenter:
    """Cuts polylines at fixed distances along the path.

    Closed segments measure between target and target + tolerance. A
    trailing remainder longer than the tolerance becomes its own segment;
    a shorter one is folded into the previous segment so the last segment
    always ends at the polyline's final point.
    """

    def __init__(
        self,
        target_length_km: float = DEFAULT_SEGMENT_KM,
        tolerance_km: float = DEFAULT_TOLERANCE_KM,
    ):
        if target_length_km <= 0:
            raise ValueError("target_length_km must be positive")
        if tolerance_km < 0:
            raise ValueError("tolerance_km must not be negative")
        self.target_length_km = target_length_km
        self.tolerance_km = tolerance_km

    def segment(
        self,
        polyline: Iterable,
        target_length_km: Optional[float] = None,
        tolerance_km: Optional[float] = None,
    ) -> List[SegmentSlice]:
        target = self.target_length_km if target_length_km is None else target_length_km
        tolerance = self.tolerance_km if tolerance_km is None else tolerance_km
        if target <= 0:
            raise ValueError("target_length_km must be positive")

        raw = list(polyline)
        points = [p for p in (coerce_point(p) for p in raw) if p is not None]
        if len(points) < len(raw):
            logger.debug(f"Dropped {len(raw) - len(points)} invalid points before segmenting")
        if len(points) < 2:
            return []

        pieces: List[List[Coordinate]] = []
        current = [points[0]]
        accumulated = 0.0
        prev = points[0]

        for nxt in points[1:]:
            edge = haversine_km(prev, nxt)
            while accumulated + edge > target + tolerance:
                remaining = max(0.0, target - accumulated)
                ratio = remaining / edge if edge > 0 else 0.0
                if ratio <= CUT_EPSILON:
                    cut = prev
                elif ratio >= 1 - CUT_EPSILON:
                    cut = nxt
                else:
                    cut = interpolate(prev, nxt, ratio)
                if cut != current[-1]:
                    current.append(cut)
                pieces.append(current)
                current = [cut]
                accumulated = 0.0
                prev = cut
                edge = haversine_km(cut, nxt)
            if nxt != current[-1]:
                current.append(nxt)
            accumulated += edge
            prev = nxt

        if len(current) >= 2:
            if accumulated > tolerance:
                pieces.append(current)
            elif pieces:
                pieces[-1].extend(current[1:])

        return self._build_slices(pieces)

    def _build_slices(self, pieces: List[List[Coordinate]]) -> List[SegmentSlice]:
        slices = []
        seen = set()
        for sequence, piece in enumerate(pieces):
            start, end = piece[0], piece[-1]
            segment_id = make_segment_id(start, end)
            if segment_id in seen:
                segment_id = f"{segment_id}_{sequence}"
            seen.add(segment_id)
            slices.append(SegmentSlice(
                id=segment_id,
                sequence=sequence,
                coordinates=SegmentCoordinates(start=start, end=end),
                points=piece,
                distance_km=round(polyline_length_km(piece), 4),
            ))
        return slices


geometry_segmenter = GeometrySegmenter()
