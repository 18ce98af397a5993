"""Hand-curated highway waypoint graph for India.

A last-resort network for the graph search when no external routing
provider answers. Nodes are major cities and junctions along national
highways; edges are undirected.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from saferoute.schemas.common import Coordinate
from saferoute.services.geo import haversine_km


@dataclass(frozen=True)
class WaypointNode:
    id: str
    coordinates: Coordinate


CITIES: Dict[str, Tuple[float, float]] = {
    "delhi": (28.7041, 77.1025),
    "mumbai": (19.0760, 72.8777),
    "bangalore": (12.9716, 77.5946),
    "chennai": (13.0827, 80.2707),
    "kolkata": (22.5726, 88.3639),
    "hyderabad": (17.3850, 78.4867),
    "ahmedabad": (23.0225, 72.5714),
    "pune": (18.5204, 73.8567),
    "jaipur": (26.9124, 75.7873),
    "lucknow": (26.8467, 80.9462),
    "kanpur": (26.4499, 80.3319),
    "nagpur": (21.1458, 79.0882),
    "indore": (22.7196, 75.8577),
    "thane": (19.2183, 72.9781),
    "bhopal": (23.2599, 77.4126),
    "visakhapatnam": (17.6868, 83.2185),
    "patna": (25.5941, 85.1376),
    "vadodara": (22.3072, 73.1812),
    "ghaziabad": (28.6692, 77.4538),
    "ludhiana": (30.9010, 75.8573),
    "agra": (27.1767, 78.0081),
    "kochi": (9.9312, 76.2673),
    "surat": (21.1702, 72.8311),
    "varanasi": (25.3176, 82.9739),
    "udaipur": (24.5854, 73.7125),
}

HIGHWAY_NODES: Dict[str, Tuple[float, float]] = {
    # Delhi - Mumbai
    "dm1": (27.0238, 76.3425),
    "dm2": (25.4358, 75.6473),
    "dm3": (24.5854, 74.9387),
    "dm4": (23.0302, 73.5975),
    "dm5": (21.7051, 73.0059),
    # Mumbai - Bangalore
    "mb1": (18.9613, 72.9722),
    "mb2": (17.6599, 74.0049),
    "mb3": (16.8302, 74.6399),
    "mb4": (15.8497, 74.4977),
    "mb5": (14.8227, 75.7140),
    "mb6": (13.9388, 76.9456),
    # Bangalore - Chennai
    "bc1": (13.0359, 77.9952),
    "bc2": (13.0098, 78.6926),
    "bc3": (12.9777, 79.1394),
    # Delhi - Kolkata
    "dk1": (27.5726, 78.6451),
    "dk2": (26.8035, 80.8477),
    "dk3": (25.9209, 82.9977),
    "dk4": (25.3333, 83.9961),
    "dk5": (24.7914, 85.0002),
    "dk6": (24.2748, 86.0121),
    "dk7": (23.6478, 87.0478),
    # Mumbai - Chennai
    "mc1": (18.3273, 73.1525),
    "mc2": (17.6599, 74.0049),
    "mc3": (16.8302, 74.6399),
    "mc4": (15.8497, 74.4977),
    "mc5": (15.3350, 75.1399),
    "mc6": (14.4673, 76.4026),
    "mc7": (14.0756, 77.1789),
    "mc8": (13.6288, 78.5783),
    "mc9": (13.2343, 79.6370),
}

CORRIDORS: List[List[str]] = [
    ["delhi", "dm1", "jaipur", "dm2", "dm3", "dm4", "ahmedabad", "vadodara", "dm5", "surat", "mumbai"],
    ["dm3", "udaipur"],
    ["mumbai", "mb1", "pune", "mb2", "mb3", "mb4", "mb5", "mb6", "bangalore"],
    ["bangalore", "bc1", "bc2", "bc3", "chennai"],
    ["delhi", "ghaziabad", "dk1", "agra", "kanpur", "dk2", "lucknow", "dk3", "varanasi",
     "dk4", "dk5", "patna", "dk6", "dk7", "kolkata"],
    ["mumbai", "mc1", "pune", "mc2", "mc3", "mc4", "mc5", "mc6", "mc7", "hyderabad",
     "mc8", "mc9", "chennai"],
]

LINKS: List[Tuple[str, str]] = [
    ("delhi", "lucknow"),
    ("lucknow", "patna"),
    ("patna", "kolkata"),
    ("mumbai", "nagpur"),
    ("nagpur", "hyderabad"),
    ("hyderabad", "chennai"),
    ("bangalore", "hyderabad"),
    ("ahmedabad", "indore"),
    ("indore", "bhopal"),
    ("bhopal", "nagpur"),
    ("chennai", "visakhapatnam"),
    ("visakhapatnam", "kolkata"),
    ("kochi", "bangalore"),
    ("mumbai", "thane"),
    ("ludhiana", "delhi"),
]


class WaypointGraph:
    """Read-only undirected adjacency list of waypoint nodes."""

    def __init__(self, nodes: Dict[str, WaypointNode], edges: List[Tuple[str, str]]):
        self.nodes = dict(nodes)
        self._adjacency: Dict[str, List[str]] = {node_id: [] for node_id in self.nodes}
        for a, b in edges:
            if a not in self.nodes or b not in self.nodes:
                raise KeyError(f"Edge {a}-{b} references an unknown node")
            if b not in self._adjacency[a]:
                self._adjacency[a].append(b)
            if a not in self._adjacency[b]:
                self._adjacency[b].append(a)

    def neighbors(self, node_id: str) -> List[WaypointNode]:
        return [self.nodes[n] for n in self._adjacency.get(node_id, [])]

    def nearest_node(self, point: Coordinate) -> Tuple[WaypointNode, float]:
        """Closest node to point and its distance in km."""
        best = None
        best_dist = float("inf")
        for node in self.nodes.values():
            dist = haversine_km(point, node.coordinates)
            if dist < best_dist:
                best = node
                best_dist = dist
        if best is None:
            raise LookupError("Waypoint graph is empty")
        return best, best_dist

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)


def build_default_graph() -> WaypointGraph:
    nodes = {
        node_id: WaypointNode(node_id, Coordinate(lat=lat, lng=lng))
        for node_id, (lat, lng) in {**CITIES, **HIGHWAY_NODES}.items()
    }
    edges = []
    for corridor in CORRIDORS:
        edges.extend(zip(corridor, corridor[1:]))
    edges.extend(LINKS)
    return WaypointGraph(nodes, edges)


default_graph = build_default_graph()
