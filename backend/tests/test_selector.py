"""Tests for safety scoring and route selection."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import RatingVerdict, SegmentCoordinates
from saferoute.schemas.routing import RouteCandidate, RouteDegraded, RouteOk, RouteProvider, RouteType
from saferoute.services.geo import GeographicBoundsError, haversine_km
from saferoute.services.road_segments import RoadSegmentStore, make_segment_id
from saferoute.services.routing.chain import RouteProviderChain
from saferoute.services.routing.context import RoutingContext
from saferoute.services.routing.pathfinding import NoRouteFound, PathfindingEngine
from saferoute.services.routing.selector import (
    RouteSelector,
    avoidance_waypoints,
    combined_score,
    rank_candidates,
)
from saferoute.services.safety import SafetyScorer

from conftest import make_segment


START = Coordinate(lat=20.0, lng=78.0)
DEST = Coordinate(lat=20.1, lng=78.0)

# Eleven points due north, 0.01 degrees apart
DIRECT = [Coordinate(lat=round(20.0 + i * 0.01, 2), lng=78.0) for i in range(11)]
DETOUR = [
    START,
    Coordinate(lat=20.0, lng=78.03),
    Coordinate(lat=20.05, lng=78.03),
    Coordinate(lat=20.1, lng=78.03),
    DEST,
]


def _candidate(points, minutes, provider=RouteProvider.GRAPHHOPPER) -> RouteCandidate:
    return RouteCandidate(
        coordinates=points,
        distance_km=round(sum(haversine_km(a, b) for a, b in zip(points, points[1:])), 3),
        duration_minutes=minutes,
        provider=provider,
    )


class ScriptedProvider:
    """Returns one scripted response per call."""

    def __init__(self, responses, name=RouteProvider.GRAPHHOPPER):
        self.name = name
        self.enabled = True
        self.responses = list(responses)
        self.calls = []

    async def fetch_routes(self, start, destination, prefer_safety=False, waypoints=(), alternatives=1):
        self.calls.append({"waypoints": list(waypoints), "alternatives": alternatives})
        return self.responses.pop(0)

    async def close(self):
        pass


class StubScorer(SafetyScorer):
    """Scores routes by their second point."""

    def __init__(self, scores):
        super().__init__()
        self.scores = scores

    def score(self, route, rated_segments, default=75):
        return self.scores.get(route[1], default)


def _unroutable_pathfinder():
    pathfinder = MagicMock(spec=PathfindingEngine)
    pathfinder.route.side_effect = NoRouteFound("no graph")
    return pathfinder


def _selector(providers, store=None, scorer=None, pathfinder=None):
    chain = RouteProviderChain(
        providers=providers,
        pathfinder=pathfinder or _unroutable_pathfinder(),
        provider_timeout=1,
        fallback_speed_kmh=40,
    )
    return RouteSelector(chain=chain, store=store or RoadSegmentStore(), scorer=scorer)


async def _rate(store, start, end, verdict):
    await store.submit_rating(
        make_segment_id(start, end),
        SegmentCoordinates(start=start, end=end),
        verdict,
    )


# =============================================================================
# Safety Scoring
# =============================================================================

class TestSafetyScorer:
    """Tests for scoring a route against rated segments."""

    def test_default_without_ratings(self):
        assert SafetyScorer().score(DIRECT, [], default=75) == 75

    def test_default_when_nothing_matches(self):
        far = make_segment(Coordinate(lat=25.0, lng=80.0), Coordinate(lat=25.01, lng=80.0), RatingVerdict.BAD)
        assert SafetyScorer().score(DIRECT, [far], default=65) == 65

    def test_bad_share_lowers_score(self):
        bad = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.BAD)
        # Two of ten sampled stretches lie within a kilometre of the bad midpoint
        assert SafetyScorer().score(DIRECT, [bad]) == 80

    def test_good_ratings_score_full(self):
        good = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.GOOD)
        assert SafetyScorer().score(DIRECT, [good]) == 100

    def test_long_routes_are_sampled(self):
        route = [Coordinate(lat=20.0 + i * 0.001, lng=78.0) for i in range(101)]
        bad = make_segment(route[0], route[100], RatingVerdict.BAD)
        score = SafetyScorer().score(route, [bad])
        assert 0 <= score < 100

    def test_bad_segments_near(self):
        bad = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.BAD)
        good = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.001), RatingVerdict.GOOD)
        assert SafetyScorer().bad_segments_near(DIRECT, [bad, good]) == [bad]


# =============================================================================
# Ranking
# =============================================================================

class TestRanking:
    """Tests for the combined safety and speed score."""

    def test_combined_score(self):
        assert combined_score(90, 60) == pytest.approx(91.2)
        assert combined_score(50, 40) == pytest.approx(63.8)

    def test_speed_score_floors_at_zero(self):
        assert combined_score(0, 5000) == 0

    def test_equal_combined_score_prefers_faster_route(self):
        # Both durations floor the speed score at zero, so the combined scores are identical
        slow = _candidate(DIRECT, 1500).model_copy(update={"safety_score": 80})
        fast = _candidate(DIRECT, 1200).model_copy(update={"safety_score": 80})

        assert combined_score(80, 1500) == combined_score(80, 1200)
        assert rank_candidates([slow, fast])[0] is fast

    def test_scoring_is_deterministic(self):
        bad = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.BAD)
        good = make_segment(Coordinate(lat=20.075, lng=78.0), Coordinate(lat=20.085, lng=78.0), RatingVerdict.GOOD)
        snapshot = [bad, good]
        selector = _selector([])
        candidate = _candidate(DIRECT, 15)

        first = selector.score_candidate(candidate, snapshot)
        second = selector.score_candidate(candidate, list(snapshot))

        assert first == second
        assert SafetyScorer().score(DIRECT, snapshot) == SafetyScorer().score(DIRECT, snapshot)
        assert rank_candidates([first, second])[0].safety_score == first.safety_score

    def test_avoidance_waypoints_are_offset(self):
        bad = make_segment(Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.BAD)
        waypoints = avoidance_waypoints(DIRECT, [bad])

        assert len(waypoints) == 1
        assert haversine_km(waypoints[0], DIRECT[5]) == pytest.approx(0.5, rel=1e-3)

    def test_avoidance_waypoints_are_capped_and_ordered(self):
        bad = [
            make_segment(DIRECT[i], DIRECT[i + 1], RatingVerdict.BAD)
            for i in reversed(range(10))
        ]
        waypoints = avoidance_waypoints(DIRECT, bad)

        assert len(waypoints) == 5
        lats = [w.lat for w in waypoints]
        assert lats == sorted(lats)


# =============================================================================
# Route Selection
# =============================================================================

class TestSelectBestRoute:
    """Tests for choosing among candidates."""

    ROUTE_A = [START, Coordinate(lat=20.05, lng=78.01), DEST]
    ROUTE_B = [START, Coordinate(lat=20.05, lng=77.99), DEST]

    @pytest.mark.asyncio
    async def test_safer_route_wins(self):
        provider = ScriptedProvider([[_candidate(self.ROUTE_B, 40), _candidate(self.ROUTE_A, 60)]])
        scorer = StubScorer({self.ROUTE_A[1]: 90, self.ROUTE_B[1]: 50})
        selector = _selector([provider], scorer=scorer)

        result = await selector.select_best_route(START, DEST, context=RoutingContext(10))

        assert isinstance(result, RouteOk)
        assert result.route == self.ROUTE_A
        assert result.safety_score == 90
        assert result.route_type == RouteType.GRAPHHOPPER
        assert result.provider == RouteProvider.GRAPHHOPPER

    @pytest.mark.asyncio
    async def test_standard_route_type_without_safety(self):
        provider = ScriptedProvider(
            [[_candidate(self.ROUTE_A, 60, provider=RouteProvider.OSRM)]],
            name=RouteProvider.OSRM,
        )
        selector = _selector([provider])

        result = await selector.select_best_route(START, DEST, prefer_safety=False, context=RoutingContext(10))

        assert result.route_type == RouteType.STANDARD
        assert result.provider == RouteProvider.OSRM

    @pytest.mark.asyncio
    async def test_out_of_region_contacts_no_provider(self):
        selector = _selector([])
        selector.chain.fetch_external = AsyncMock(return_value=[])
        london = Coordinate(lat=51.5074, lng=-0.1278)

        with pytest.raises(GeographicBoundsError):
            await selector.select_best_route(london, DEST)

        selector.chain.fetch_external.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_straight_line_is_degraded(self):
        selector = _selector([])

        result = await selector.select_best_route(START, DEST, context=RoutingContext(10))

        assert isinstance(result, RouteDegraded)
        assert result.status == "degraded"
        assert result.route_type == RouteType.STRAIGHT_LINE
        assert result.safety_score == 50
        assert result.reason

    @pytest.mark.asyncio
    async def test_astar_only(self, delhi, agra):
        selector = _selector([], pathfinder=PathfindingEngine(max_snap_km=250, base_speed_kmh=40))

        result = await selector.select_best_route(delhi, agra, context=RoutingContext(10))

        assert isinstance(result, RouteOk)
        assert result.route_type == RouteType.ASTAR
        assert result.safety_score == 65

    @pytest.mark.asyncio
    async def test_astar_beats_slow_external_route(self, delhi, agra):
        slow = _candidate([delhi, agra], 2000)
        provider = ScriptedProvider([[slow]])
        selector = _selector([provider], pathfinder=PathfindingEngine(max_snap_km=250, base_speed_kmh=40))

        result = await selector.select_best_route(delhi, agra, context=RoutingContext(10))

        assert result.provider == RouteProvider.ASTAR
        assert result.route_type == RouteType.FALLBACK

    def test_emergency_route(self):
        selector = _selector([])
        result = selector.emergency_route(START, DEST, reason="selector failed")

        assert isinstance(result, RouteDegraded)
        assert result.route_type == RouteType.EMERGENCY
        assert result.reason == "selector failed"
        assert result.route[0] == START
        assert result.route[-1] == DEST


# =============================================================================
# Avoidance Pass
# =============================================================================

class TestAvoidancePass:
    """Tests for re-routing around bad segments."""

    @pytest_asyncio.fixture
    async def rated_store(self):
        store = RoadSegmentStore()
        await _rate(store, Coordinate(lat=20.045, lng=78.0), Coordinate(lat=20.055, lng=78.0), RatingVerdict.BAD)
        # Good ratings along the detour, centred on each of its stretches
        for start, end in [
            ((20.0, 78.01), (20.0, 78.02)),
            ((20.02, 78.03), (20.03, 78.03)),
            ((20.07, 78.03), (20.08, 78.03)),
            ((20.1, 78.01), (20.1, 78.02)),
        ]:
            await _rate(
                store,
                Coordinate(lat=start[0], lng=start[1]),
                Coordinate(lat=end[0], lng=end[1]),
                RatingVerdict.GOOD,
            )
        return store

    @pytest.mark.asyncio
    async def test_detour_replaces_route_through_bad_segment(self, rated_store):
        provider = ScriptedProvider([
            [_candidate(DIRECT, 15)],
            [_candidate(DETOUR, 20)],
        ])
        selector = _selector([provider], store=rated_store)

        result = await selector.select_best_route(START, DEST, context=RoutingContext(10))

        assert result.route_type == RouteType.SAFE_ROUTE
        assert result.route == DETOUR
        assert result.safety_score == 100

        assert len(provider.calls) == 2
        retry = provider.calls[1]
        assert retry["alternatives"] == 1
        assert len(retry["waypoints"]) == 1
        bad_midpoint = Coordinate(lat=20.05, lng=78.0)
        assert haversine_km(retry["waypoints"][0], bad_midpoint) == pytest.approx(0.5, rel=1e-3)

    @pytest.mark.asyncio
    async def test_worse_detour_is_discarded(self, rated_store):
        slow_detour = [START, Coordinate(lat=20.05, lng=78.5), DEST]
        provider = ScriptedProvider([
            [_candidate(DIRECT, 15)],
            [_candidate(slow_detour, 600)],
        ])
        selector = _selector([provider], store=rated_store)

        result = await selector.select_best_route(START, DEST, context=RoutingContext(10))

        assert result.route_type == RouteType.GRAPHHOPPER
        assert result.route == DIRECT
        assert result.safety_score == 80

    @pytest.mark.asyncio
    async def test_astar_winner_is_rerouted_around_bad_segment(self, rated_store):
        slow_external = [START, Coordinate(lat=20.05, lng=78.5), DEST]
        provider = ScriptedProvider([
            [_candidate(slow_external, 600)],
            [_candidate(DETOUR, 20)],
        ])
        pathfinder = MagicMock(spec=PathfindingEngine)
        pathfinder.route.return_value = _candidate(DIRECT, 15, provider=RouteProvider.ASTAR)
        selector = _selector([provider], store=rated_store, pathfinder=pathfinder)

        result = await selector.select_best_route(START, DEST, context=RoutingContext(10))

        assert result.route_type == RouteType.SAFE_ROUTE
        assert result.route == DETOUR
        assert len(provider.calls) == 2
        assert len(provider.calls[1]["waypoints"]) == 1

    @pytest.mark.asyncio
    async def test_no_avoidance_without_safety_preference(self, rated_store):
        provider = ScriptedProvider([[_candidate(DIRECT, 15)]])
        selector = _selector([provider], store=rated_store)

        result = await selector.select_best_route(
            START, DEST, prefer_safety=False, context=RoutingContext(10)
        )

        assert result.route_type == RouteType.STANDARD
        assert len(provider.calls) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
