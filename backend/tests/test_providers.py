"""Tests for the GraphHopper and OSRM clients (mocked HTTP transport)."""

import httpx
import pytest

from saferoute.schemas.common import Coordinate
from saferoute.schemas.routing import RouteProvider
from saferoute.services.polyline import encode_polyline
from saferoute.services.routing.providers import (
    GraphHopperProvider,
    OSRMProvider,
    ProviderError,
    ProviderTimeout,
)


START = Coordinate(lat=28.6139, lng=77.2090)
DEST = Coordinate(lat=28.5355, lng=77.3910)
MIDDLE = Coordinate(lat=28.5800, lng=77.3000)

GH_URL = "https://graphhopper.test/api/1/route"
OSRM_URL = "https://osrm.test"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _graphhopper(handler, api_key="test-key") -> GraphHopperProvider:
    return GraphHopperProvider(client=_client(handler), api_key=api_key, base_url=GH_URL, timeout=5)


def _osrm(handler) -> OSRMProvider:
    return OSRMProvider(client=_client(handler), base_url=OSRM_URL, timeout=5)


GH_PATH = {
    "distance": 15000.0,
    "time": 1200000,
    "points": {
        "type": "LineString",
        "coordinates": [[START.lng, START.lat], [MIDDLE.lng, MIDDLE.lat], [DEST.lng, DEST.lat]],
    },
}


# =============================================================================
# GraphHopper
# =============================================================================

class TestGraphHopperProvider:
    """Tests for GraphHopper request building and response parsing."""

    @pytest.mark.asyncio
    async def test_parses_geojson_points(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, json={"paths": [GH_PATH]})

        provider = _graphhopper(handler)
        candidates = await provider.fetch_routes(START, DEST, prefer_safety=True)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.provider == RouteProvider.GRAPHHOPPER
        assert candidate.distance_km == 15.0
        assert candidate.duration_minutes == 20.0
        assert candidate.coordinates == [START, MIDDLE, DEST]

        params = captured["request"].url.params
        assert params["key"] == "test-key"
        assert params["profile"] == "car"
        assert params["weighting"] == "short_fastest"
        assert params.get_list("point") == [f"{START.lat},{START.lng}", f"{DEST.lat},{DEST.lng}"]

    @pytest.mark.asyncio
    async def test_parses_encoded_points(self):
        encoded = dict(GH_PATH, points=encode_polyline([START, MIDDLE, DEST]))

        def handler(request):
            return httpx.Response(200, json={"paths": [encoded]})

        candidates = await _graphhopper(handler).fetch_routes(START, DEST)
        assert len(candidates[0].coordinates) == 3
        assert candidates[0].coordinates[1].lat == pytest.approx(MIDDLE.lat)

    @pytest.mark.asyncio
    async def test_requests_alternatives(self):
        captured = {}

        def handler(request):
            captured["params"] = request.url.params
            return httpx.Response(200, json={"paths": [GH_PATH, GH_PATH, GH_PATH, GH_PATH]})

        candidates = await _graphhopper(handler).fetch_routes(START, DEST, alternatives=3)

        assert len(candidates) == 3
        assert captured["params"]["algorithm"] == "alternative_route"
        assert captured["params"]["alternative_route.max_paths"] == "3"

    @pytest.mark.asyncio
    async def test_waypoints_are_sent_in_order(self):
        captured = {}

        def handler(request):
            captured["params"] = request.url.params
            return httpx.Response(200, json={"paths": [GH_PATH]})

        await _graphhopper(handler).fetch_routes(START, DEST, waypoints=[MIDDLE], alternatives=3)

        points = captured["params"].get_list("point")
        assert points[1] == f"{MIDDLE.lat},{MIDDLE.lng}"
        assert "algorithm" not in captured["params"]

    def test_standard_weighting_without_safety(self):
        provider = _graphhopper(lambda r: httpx.Response(200))
        params = dict(provider.build_params(START, DEST, False, [], 1))
        assert params["weighting"] == "fastest"

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        provider = _graphhopper(lambda r: httpx.Response(200, json={"paths": [GH_PATH]}), api_key="")
        assert provider.enabled is False
        with pytest.raises(ProviderError):
            await provider.fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_html_error_page(self):
        def handler(request):
            return httpx.Response(
                200,
                text="<!DOCTYPE html><html><body>Bad gateway</body></html>",
                headers={"content-type": "text/html"},
            )

        with pytest.raises(ProviderError) as exc_info:
            await _graphhopper(handler).fetch_routes(START, DEST)
        assert "HTML" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": "internal"})

        with pytest.raises(ProviderError):
            await _graphhopper(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeout):
            await _graphhopper(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await _graphhopper(handler).fetch_routes(START, DEST)
        assert not isinstance(exc_info.value, ProviderTimeout)

    @pytest.mark.asyncio
    async def test_no_paths(self):
        def handler(request):
            return httpx.Response(200, json={"paths": [], "message": "Cannot find point"})

        with pytest.raises(ProviderError) as exc_info:
            await _graphhopper(handler).fetch_routes(START, DEST)
        assert "Cannot find point" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="{not json", headers={"content-type": "application/json"})

        with pytest.raises(ProviderError):
            await _graphhopper(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_non_list_coordinates(self):
        def handler(request):
            return httpx.Response(200, json={"paths": [dict(GH_PATH, points={"coordinates": 5})]})

        with pytest.raises(ProviderError):
            await _graphhopper(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_nan_distance(self):
        body = (
            '{"paths": [{"distance": NaN, "time": 1200000, "points": {"coordinates": '
            f'[[{START.lng}, {START.lat}], [{DEST.lng}, {DEST.lat}]]}}}}]}}'
        )

        def handler(request):
            return httpx.Response(200, content=body.encode(), headers={"content-type": "application/json"})

        with pytest.raises(ProviderError):
            await _graphhopper(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_malformed_path_is_skipped(self):
        broken = dict(GH_PATH, points={"coordinates": "nope"})

        def handler(request):
            return httpx.Response(200, json={"paths": [broken, GH_PATH]})

        candidates = await _graphhopper(handler).fetch_routes(START, DEST, alternatives=2)
        assert len(candidates) == 1
        assert candidates[0].coordinates == [START, MIDDLE, DEST]


# =============================================================================
# OSRM
# =============================================================================

class TestOSRMProvider:
    """Tests for OSRM request building and response parsing."""

    OSRM_ROUTE = {
        "distance": 20500.0,
        "duration": 1500.0,
        "geometry": {
            "type": "LineString",
            "coordinates": [[START.lng, START.lat], [DEST.lng, DEST.lat]],
        },
    }

    @pytest.mark.asyncio
    async def test_parses_route(self):
        captured = {}

        def handler(request):
            captured["url"] = request.url
            return httpx.Response(200, json={"code": "Ok", "routes": [self.OSRM_ROUTE]})

        candidates = await _osrm(handler).fetch_routes(START, DEST)

        assert len(candidates) == 1
        assert candidates[0].provider == RouteProvider.OSRM
        assert candidates[0].distance_km == 20.5
        assert candidates[0].duration_minutes == 25.0
        assert captured["url"].path == (
            f"/route/v1/driving/{START.lng},{START.lat};{DEST.lng},{DEST.lat}"
        )
        assert captured["url"].params["geometries"] == "geojson"
        assert captured["url"].params["alternatives"] == "false"

    @pytest.mark.asyncio
    async def test_alternatives_flag(self):
        captured = {}

        def handler(request):
            captured["params"] = request.url.params
            return httpx.Response(200, json={"code": "Ok", "routes": [self.OSRM_ROUTE, self.OSRM_ROUTE]})

        candidates = await _osrm(handler).fetch_routes(START, DEST, alternatives=3)
        assert captured["params"]["alternatives"] == "true"
        assert len(candidates) == 2

    @pytest.mark.asyncio
    async def test_no_route_code(self):
        def handler(request):
            return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route"})

        with pytest.raises(ProviderError) as exc_info:
            await _osrm(handler).fetch_routes(START, DEST)
        assert "NoRoute" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_route_without_geometry_is_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 10, "duration": 5}]})

        with pytest.raises(ProviderError):
            await _osrm(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_non_list_coordinates(self):
        route = dict(self.OSRM_ROUTE, geometry={"type": "LineString", "coordinates": 5})

        def handler(request):
            return httpx.Response(200, json={"code": "Ok", "routes": [route]})

        with pytest.raises(ProviderError):
            await _osrm(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_nan_duration(self):
        body = (
            '{"code": "Ok", "routes": [{"distance": 20500.0, "duration": NaN, "geometry": {"coordinates": '
            f'[[{START.lng}, {START.lat}], [{DEST.lng}, {DEST.lat}]]}}}}]}}'
        )

        def handler(request):
            return httpx.Response(200, content=body.encode(), headers={"content-type": "application/json"})

        with pytest.raises(ProviderError):
            await _osrm(handler).fetch_routes(START, DEST)

    @pytest.mark.asyncio
    async def test_routes_of_wrong_type(self):
        def handler(request):
            return httpx.Response(200, json={"code": "Ok", "routes": {"distance": 10}})

        with pytest.raises(ProviderError):
            await _osrm(handler).fetch_routes(START, DEST)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
