"""Safety- and traffic-weighted A* search over the waypoint graph."""

import heapq
import itertools
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from saferoute.config import settings
from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import RatingVerdict, RoadSegment, TrafficStatus
from saferoute.schemas.routing import RouteCandidate, RouteProvider
from saferoute.services.geo import haversine_km, polyline_length_km
from saferoute.services.routing.waypoint_graph import WaypointGraph, WaypointNode, default_graph

logger = logging.getLogger(__name__)

SAFETY_WEIGHTS = {
    RatingVerdict.BAD: 3.0,
    RatingVerdict.GOOD: 0.8,
    RatingVerdict.UNKNOWN: 1.0,
}

TRAFFIC_WEIGHTS = {
    TrafficStatus.CONGESTED: 2.5,
    TrafficStatus.MODERATE: 1.5,
    TrafficStatus.SMOOTH: 1.0,
    TrafficStatus.UNKNOWN: 1.0,
}

# Speed multipliers for the travel-time estimate
TRAFFIC_SPEED_FACTORS = {
    TrafficStatus.CONGESTED: 0.4,
    TrafficStatus.MODERATE: 0.7,
    TrafficStatus.SMOOTH: 1.2,
    TrafficStatus.UNKNOWN: 1.0,
}
BAD_ROAD_SPEED_FACTOR = 0.8

# Heuristic scale; must not exceed the cheapest possible edge multiplier
MIN_EDGE_MULTIPLIER = min(SAFETY_WEIGHTS.values()) * min(TRAFFIC_WEIGHTS.values())

MATCH_THRESHOLD_DEG = 0.0001


class NoRouteFound(Exception):
    """The graph search could not connect start and goal."""


def _close(a: Coordinate, b: Coordinate, threshold: float) -> bool:
    return abs(a.lat - b.lat) < threshold and abs(a.lng - b.lng) < threshold


def find_matching_segment(
    segments: Sequence[RoadSegment],
    a: Coordinate,
    b: Coordinate,
    threshold: float = MATCH_THRESHOLD_DEG,
) -> Optional[RoadSegment]:
    """Rated segment lying on the edge a-b, in either direction.

    One end must match within threshold and the other within ten times it.
    """
    loose = threshold * 10
    for segment in segments:
        start, end = segment.coordinates.start, segment.coordinates.end
        for first, second in ((a, b), (b, a)):
            start_match = _close(start, first, threshold)
            end_match = _close(end, second, threshold)
            if (start_match and _close(end, second, loose)) or (end_match and _close(start, first, loose)):
                return segment
    return None


def edge_multiplier(segment: Optional[RoadSegment]) -> float:
    if segment is None:
        return 1.0
    return SAFETY_WEIGHTS[segment.rating] * TRAFFIC_WEIGHTS[segment.traffic_status]


def edge_speed_kmh(segment: Optional[RoadSegment], base_speed_kmh: float) -> float:
    if segment is None:
        return base_speed_kmh
    speed = base_speed_kmh * TRAFFIC_SPEED_FACTORS[segment.traffic_status]
    if segment.rating == RatingVerdict.BAD:
        speed *= BAD_ROAD_SPEED_FACTOR
    return speed


class PathfindingEngine:
    """A* over a waypoint graph with rating-weighted edge costs."""

    def __init__(
        self,
        graph: WaypointGraph = default_graph,
        max_snap_km: Optional[float] = None,
        base_speed_kmh: Optional[float] = None,
    ):
        self.graph = graph
        self.max_snap_km = max_snap_km if max_snap_km is not None else settings.astar_max_snap_km
        self.base_speed_kmh = base_speed_kmh if base_speed_kmh is not None else settings.fallback_speed_kmh

    def heuristic(self, node: WaypointNode, goal: WaypointNode) -> float:
        """Lower bound on the remaining cost."""
        return haversine_km(node.coordinates, goal.coordinates) * MIN_EDGE_MULTIPLIER

    def edge_cost(self, u: WaypointNode, v: WaypointNode, segments: Sequence[RoadSegment]) -> float:
        segment = find_matching_segment(segments, u.coordinates, v.coordinates)
        return haversine_km(u.coordinates, v.coordinates) * edge_multiplier(segment)

    def find_path(
        self,
        start_id: str,
        goal_id: str,
        segments: Sequence[RoadSegment] = (),
    ) -> List[WaypointNode]:
        """Cheapest node sequence from start_id to goal_id.

        Raises NoRouteFound if either node is unknown or unreachable.
        """
        if start_id not in self.graph or goal_id not in self.graph:
            raise NoRouteFound(f"Unknown node: {start_id if start_id not in self.graph else goal_id}")

        goal = self.graph.nodes[goal_id]
        start = self.graph.nodes[start_id]
        counter = itertools.count()

        g_score: Dict[str, float] = {start_id: 0.0}
        came_from: Dict[str, str] = {}
        closed = set()
        open_heap: List[Tuple[float, int, str]] = [(self.heuristic(start, goal), next(counter), start_id)]

        while open_heap:
            _, _, current_id = heapq.heappop(open_heap)
            if current_id == goal_id:
                return self._reconstruct(came_from, current_id)
            if current_id in closed:
                continue
            closed.add(current_id)

            current = self.graph.nodes[current_id]
            for neighbor in self.graph.neighbors(current_id):
                if neighbor.id in closed:
                    continue
                tentative = g_score[current_id] + self.edge_cost(current, neighbor, segments)
                if tentative < g_score.get(neighbor.id, float("inf")):
                    came_from[neighbor.id] = current_id
                    g_score[neighbor.id] = tentative
                    f_score = tentative + self.heuristic(neighbor, goal)
                    heapq.heappush(open_heap, (f_score, next(counter), neighbor.id))

        raise NoRouteFound(f"No path between {start_id} and {goal_id}")

    def _reconstruct(self, came_from: Dict[str, str], current_id: str) -> List[WaypointNode]:
        path = [current_id]
        while current_id in came_from:
            current_id = came_from[current_id]
            path.append(current_id)
        path.reverse()
        return [self.graph.nodes[n] for n in path]

    def path_cost(self, path: Sequence[WaypointNode], segments: Sequence[RoadSegment] = ()) -> float:
        return sum(self.edge_cost(path[i], path[i + 1], segments) for i in range(len(path) - 1))

    def estimate_duration_minutes(
        self,
        points: Sequence[Coordinate],
        segments: Sequence[RoadSegment] = (),
    ) -> float:
        """Travel time along points using per-edge traffic and rating speeds."""
        minutes = 0.0
        for i in range(len(points) - 1):
            segment = find_matching_segment(segments, points[i], points[i + 1])
            distance = haversine_km(points[i], points[i + 1])
            minutes += distance / edge_speed_kmh(segment, self.base_speed_kmh) * 60
        return minutes

    def route(
        self,
        start: Coordinate,
        destination: Coordinate,
        segments: Sequence[RoadSegment] = (),
    ) -> RouteCandidate:
        """Snap both points to the graph and search between them."""
        start_node, start_gap = self.graph.nearest_node(start)
        goal_node, goal_gap = self.graph.nearest_node(destination)
        if start_gap > self.max_snap_km or goal_gap > self.max_snap_km:
            raise NoRouteFound(
                f"Points are too far from the highway network ({start_gap:.0f} km, {goal_gap:.0f} km)"
            )

        path = self.find_path(start_node.id, goal_node.id, segments)
        logger.debug(f"A* path {start_node.id} -> {goal_node.id}: {[n.id for n in path]}")

        coordinates = [start]
        for node in path:
            if node.coordinates != coordinates[-1]:
                coordinates.append(node.coordinates)
        if destination != coordinates[-1] or len(coordinates) < 2:
            coordinates.append(destination)

        return RouteCandidate(
            coordinates=coordinates,
            distance_km=round(polyline_length_km(coordinates), 3),
            duration_minutes=round(self.estimate_duration_minutes(coordinates, segments), 1),
            provider=RouteProvider.ASTAR,
        )


pathfinding_engine = PathfindingEngine()
