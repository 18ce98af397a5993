"""Ordered routing fallback chain.

GraphHopper, then OSRM, then A* over the highway graph, then a
synthesized straight line. The external providers are started together
and their results are taken in priority order; the first usable answer
cancels the rest. The straight line cannot fail, so the chain always
returns at least one candidate.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from saferoute.config import settings
from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import RoadSegment
from saferoute.schemas.routing import RouteCandidate, RouteProvider
from saferoute.services.geo import haversine_km, interpolate
from saferoute.services.routing.context import RoutingCancelled, RoutingContext
from saferoute.services.routing.pathfinding import NoRouteFound, PathfindingEngine, pathfinding_engine
from saferoute.services.routing.providers import (
    BaseRouteProvider,
    GraphHopperProvider,
    OSRMProvider,
    ProviderError,
)

logger = logging.getLogger(__name__)

STRAIGHT_LINE_FRACTIONS = (0.25, 0.5, 0.75)


class NoRouteAvailable(Exception):
    """Every strategy in the chain failed."""


class RouteProviderChain:
    """Tries each routing strategy in order until one produces a route."""

    def __init__(
        self,
        providers: Optional[Sequence[BaseRouteProvider]] = None,
        pathfinder: Optional[PathfindingEngine] = None,
        provider_timeout: Optional[float] = None,
        fallback_speed_kmh: Optional[float] = None,
    ):
        self.providers = list(providers) if providers is not None else [GraphHopperProvider(), OSRMProvider()]
        self.pathfinder = pathfinder or pathfinding_engine
        self.provider_timeout = provider_timeout or settings.provider_timeout_seconds
        self.fallback_speed_kmh = fallback_speed_kmh or settings.fallback_speed_kmh

    async def fetch_external(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool,
        waypoints: Sequence[Coordinate] = (),
        context: Optional[RoutingContext] = None,
        alternatives: int = 1,
    ) -> List[RouteCandidate]:
        """Candidates from the highest-priority provider that answers.

        Returns an empty list when every provider fails or times out.
        """
        context = context or RoutingContext.from_settings()
        active = [p for p in self.providers if p.enabled]
        if not active:
            return []

        tasks = [
            asyncio.ensure_future(context.run(
                provider.fetch_routes(
                    start,
                    destination,
                    prefer_safety=prefer_safety,
                    waypoints=waypoints,
                    alternatives=alternatives,
                ),
                self.provider_timeout,
            ))
            for provider in active
        ]

        try:
            for provider, task in zip(active, tasks):
                name = provider.name.value
                try:
                    candidates = await task
                except asyncio.TimeoutError:
                    logger.warning(f"[{context.request_id}] {name} timed out")
                    continue
                except ProviderError as e:
                    logger.warning(f"[{context.request_id}] {name} failed: {e}")
                    continue
                except RoutingCancelled:
                    raise
                except Exception as e:
                    logger.exception(f"[{context.request_id}] {name} raised unexpectedly: {e}")
                    continue
                if candidates:
                    logger.info(
                        f"[{context.request_id}] Using {name} "
                        f"({len(candidates)} candidate(s), {context.elapsed_ms():.0f}ms)"
                    )
                    return candidates
            return []
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    def astar(
        self,
        start: Coordinate,
        destination: Coordinate,
        segments: Sequence[RoadSegment] = (),
    ) -> Optional[RouteCandidate]:
        """Graph-search candidate, or None if the graph cannot connect the points."""
        try:
            return self.pathfinder.route(start, destination, segments)
        except NoRouteFound as e:
            logger.info(f"A* fallback unavailable: {e}")
            return None

    def straight_line(self, start: Coordinate, destination: Coordinate) -> RouteCandidate:
        """Degraded route along the direct line at the fallback speed."""
        coordinates = [start]
        coordinates.extend(interpolate(start, destination, f) for f in STRAIGHT_LINE_FRACTIONS)
        coordinates.append(destination)
        distance = haversine_km(start, destination)
        return RouteCandidate(
            coordinates=coordinates,
            distance_km=round(distance, 3),
            duration_minutes=round(distance / self.fallback_speed_kmh * 60, 1),
            provider=RouteProvider.STRAIGHT_LINE,
            degraded=True,
        )

    async def get_candidates(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool,
        segments: Sequence[RoadSegment] = (),
        waypoints: Sequence[Coordinate] = (),
        context: Optional[RoutingContext] = None,
        alternatives: Optional[int] = None,
    ) -> List[RouteCandidate]:
        """Candidates from the first strategy in the chain that succeeds."""
        context = context or RoutingContext.from_settings()
        alternatives = alternatives or settings.route_alternatives

        candidates = await self.fetch_external(
            start, destination, prefer_safety,
            waypoints=waypoints, context=context, alternatives=alternatives,
        )
        if candidates:
            return candidates

        if context.cancelled:
            raise RoutingCancelled(f"[{context.request_id}] routing cancelled")

        candidate = self.astar(start, destination, segments)
        if candidate is not None:
            logger.info(f"[{context.request_id}] Using A* fallback route")
            return [candidate]

        logger.warning(f"[{context.request_id}] All routing strategies failed, using straight line")
        return [self.straight_line(start, destination)]

    async def get_route(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool,
        segments: Sequence[RoadSegment] = (),
        waypoints: Sequence[Coordinate] = (),
        context: Optional[RoutingContext] = None,
    ) -> RouteCandidate:
        candidates = await self.get_candidates(
            start, destination, prefer_safety,
            segments=segments, waypoints=waypoints, context=context, alternatives=1,
        )
        if not candidates:
            raise NoRouteAvailable("No routing strategy produced a route")
        return candidates[0]

    async def close(self):
        for provider in self.providers:
            await provider.close()
