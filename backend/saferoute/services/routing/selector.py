"""Pick the best route among provider alternatives and the graph search.

Candidates are ranked by a combined score (70% safety, 30% speed). When
safety is prioritized and the winner still passes Bad segments, a single
avoidance pass re-routes through waypoints pushed off to the side of
each bad stretch and keeps the detour only if it scores better.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

from saferoute.config import settings
from saferoute.schemas.common import BoundingBox, Coordinate
from saferoute.schemas.road_segment import RoadSegment
from saferoute.schemas.routing import (
    RouteCandidate,
    RouteDegraded,
    RouteOk,
    RouteProvider,
    RouteType,
)
from saferoute.services.geo import (
    bearing_degrees,
    default_region,
    destination_point,
    ensure_in_region,
    haversine_km,
    nearest_point_index,
)
from saferoute.services.road_segments import RoadSegmentStore
from saferoute.services.routing.chain import RouteProviderChain
from saferoute.services.routing.context import RoutingContext
from saferoute.services.safety import SafetyScorer, safety_scorer, segment_midpoint

logger = logging.getLogger(__name__)

SAFETY_WEIGHT = 0.7
SPEED_WEIGHT = 0.3

# Safety assumed for a candidate when no rating matches it
DEFAULT_SAFETY_BY_PROVIDER = {
    RouteProvider.GRAPHHOPPER: 75,
    RouteProvider.OSRM: 75,
    RouteProvider.ASTAR: 65,
    RouteProvider.STRAIGHT_LINE: 50,
}

AVOIDANCE_OFFSET_KM = 0.5
MAX_AVOIDANCE_WAYPOINTS = 5
SNAPSHOT_MIN_PADDING_DEG = 0.1

EXTERNAL_PROVIDERS = (RouteProvider.GRAPHHOPPER, RouteProvider.OSRM)


def speed_score(duration_minutes: float) -> float:
    return max(0.0, 100.0 - duration_minutes / 10.0)


def combined_score(safety: float, duration_minutes: float) -> float:
    return SAFETY_WEIGHT * safety + SPEED_WEIGHT * speed_score(duration_minutes)


def rank_candidates(candidates: Sequence[RouteCandidate]) -> List[RouteCandidate]:
    """Best first: highest combined score, then lower duration."""
    return sorted(
        candidates,
        key=lambda c: (-combined_score(c.safety_score or 0, c.duration_minutes), c.duration_minutes),
    )


def avoidance_waypoints(
    route: Sequence[Coordinate],
    bad_segments: Sequence[RoadSegment],
    offset_km: float = AVOIDANCE_OFFSET_KM,
) -> List[Coordinate]:
    """Waypoints offset perpendicular to the route beside each bad segment.

    Of the two perpendicular options the one farther from the bad
    segment's midpoint wins. Waypoints come back in route order.
    """
    placed: List[Tuple[int, Coordinate]] = []
    for segment in bad_segments:
        center = segment_midpoint(segment)
        idx = nearest_point_index(list(route), center)

        if 0 < idx < len(route) - 1:
            before, after = route[idx - 1], route[idx + 1]
        elif idx > 0:
            before, after = route[idx - 1], route[idx]
        else:
            before, after = route[0], route[min(1, len(route) - 1)]

        heading = bearing_degrees(before, after) if before != after else 0.0
        left = destination_point(route[idx], (heading - 90.0) % 360.0, offset_km)
        right = destination_point(route[idx], (heading + 90.0) % 360.0, offset_km)
        waypoint = left if haversine_km(left, center) >= haversine_km(right, center) else right
        placed.append((idx, waypoint))

    placed.sort(key=lambda item: item[0])
    seen = set()
    waypoints = []
    for idx, waypoint in placed:
        if idx in seen:
            continue
        seen.add(idx)
        waypoints.append(waypoint)
    return waypoints[:MAX_AVOIDANCE_WAYPOINTS]


RouteResultType = Union[RouteOk, RouteDegraded]


class RouteSelector:
    """Combines the fallback chain, ratings and safety scoring."""

    def __init__(
        self,
        chain: RouteProviderChain,
        store: RoadSegmentStore,
        scorer: Optional[SafetyScorer] = None,
        region: Optional[BoundingBox] = None,
    ):
        self.chain = chain
        self.store = store
        self.scorer = scorer or safety_scorer
        self.region = region or default_region()

    async def ratings_snapshot(self, start: Coordinate, destination: Coordinate) -> List[RoadSegment]:
        """Rated segments in a padded box around both endpoints."""
        span = max(abs(start.lat - destination.lat), abs(start.lng - destination.lng))
        padding = max(SNAPSHOT_MIN_PADDING_DEG, span * 0.25)
        return await self.store.query(BoundingBox.around([start, destination], padding=padding))

    def score_candidate(self, candidate: RouteCandidate, segments: Sequence[RoadSegment]) -> RouteCandidate:
        default = DEFAULT_SAFETY_BY_PROVIDER[candidate.provider]
        safety = self.scorer.score(candidate.coordinates, segments, default=default)
        return candidate.model_copy(update={"safety_score": safety})

    async def select_best_route(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool = True,
        context: Optional[RoutingContext] = None,
    ) -> RouteResultType:
        """Best route between start and destination.

        Raises GeographicBoundsError before contacting any provider if
        either point is outside the deployment region.

        With prefer_safety, a winner that passes Bad segments gets one
        avoidance pass, whether it came from a provider or from A*. The
        pass re-routes through the external providers, so it is skipped
        when none of them answered the first request.
        """
        ensure_in_region(start, self.region)
        ensure_in_region(destination, self.region)
        context = context or RoutingContext.from_settings()

        segments = await self.ratings_snapshot(start, destination)
        logger.info(f"[{context.request_id}] {len(segments)} rated segment(s) near request")

        external = await self.chain.fetch_external(
            start, destination, prefer_safety,
            context=context, alternatives=settings.route_alternatives,
        )
        candidates = list(external)
        astar = self.chain.astar(start, destination, segments)
        if astar is not None:
            candidates.append(astar)
        if not candidates:
            candidates.append(self.chain.straight_line(start, destination))

        scored = rank_candidates([self.score_candidate(c, segments) for c in candidates])
        best = scored[0]
        deviated = False

        if prefer_safety and external and best.provider != RouteProvider.STRAIGHT_LINE:
            improved = await self._avoidance_pass(best, start, destination, segments, context)
            if improved is not None:
                best = improved
                deviated = True

        route_type = self._route_type(best, prefer_safety, bool(external), deviated)
        logger.info(
            f"[{context.request_id}] Selected {best.provider.value} route "
            f"({route_type.value}, safety {best.safety_score}, {best.duration_minutes} min)"
        )
        return self._to_result(best, route_type)

    async def _avoidance_pass(
        self,
        best: RouteCandidate,
        start: Coordinate,
        destination: Coordinate,
        segments: Sequence[RoadSegment],
        context: RoutingContext,
    ) -> Optional[RouteCandidate]:
        bad = self.scorer.bad_segments_near(best.coordinates, segments)
        if not bad or context.remaining() <= 0:
            return None

        waypoints = avoidance_waypoints(best.coordinates, bad)
        logger.info(f"[{context.request_id}] Trying avoidance around {len(bad)} bad segment(s)")
        rerouted = await self.chain.fetch_external(
            start, destination, True,
            waypoints=waypoints, context=context, alternatives=1,
        )
        best_combined = combined_score(best.safety_score or 0, best.duration_minutes)
        improved = None
        for candidate in rerouted:
            scored = self.score_candidate(candidate, segments)
            score = combined_score(scored.safety_score or 0, scored.duration_minutes)
            if score > best_combined:
                improved = scored
                best_combined = score
        if improved is None:
            logger.info(f"[{context.request_id}] Avoidance route did not improve the score")
        return improved

    def _route_type(
        self,
        best: RouteCandidate,
        prefer_safety: bool,
        had_external: bool,
        deviated: bool,
    ) -> RouteType:
        if deviated:
            return RouteType.SAFE_ROUTE
        if best.provider in EXTERNAL_PROVIDERS:
            return RouteType(best.provider.value) if prefer_safety else RouteType.STANDARD
        if best.provider == RouteProvider.ASTAR:
            return RouteType.FALLBACK if had_external else RouteType.ASTAR
        return RouteType.STRAIGHT_LINE

    def _to_result(self, candidate: RouteCandidate, route_type: RouteType, reason: Optional[str] = None) -> RouteResultType:
        fields = dict(
            route=candidate.coordinates,
            distance_km=candidate.distance_km,
            estimated_time_min=candidate.duration_minutes,
            safety_score=candidate.safety_score if candidate.safety_score is not None else DEFAULT_SAFETY_BY_PROVIDER[candidate.provider],
            route_type=route_type,
            provider=candidate.provider,
        )
        if candidate.degraded:
            return RouteDegraded(reason=reason or "No routing provider or graph path was available", **fields)
        return RouteOk(**fields)

    def emergency_route(self, start: Coordinate, destination: Coordinate, reason: str) -> RouteDegraded:
        """Straight-line result used when route selection itself failed."""
        candidate = self.chain.straight_line(start, destination)
        candidate = candidate.model_copy(update={"safety_score": DEFAULT_SAFETY_BY_PROVIDER[candidate.provider]})
        return self._to_result(candidate, RouteType.EMERGENCY, reason=reason)
