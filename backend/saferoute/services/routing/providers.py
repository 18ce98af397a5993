"""External road routing providers (GraphHopper, OSRM).

Each provider turns a provider-specific JSON response into
RouteCandidates. Anything that is not a usable route (timeouts, network
errors, non-2xx statuses, HTML error pages, malformed payloads) is raised
as ProviderError so the fallback chain can move on.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from saferoute.config import settings
from saferoute.schemas.common import Coordinate
from saferoute.schemas.routing import RouteCandidate, RouteProvider
from saferoute.services.geo import coerce_point, polyline_length_km
from saferoute.services.polyline import decode_polyline

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A routing provider failed to return a usable route."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderTimeout(ProviderError):
    """A routing provider did not answer in time."""


def _points_from_lnglat(raw: Any) -> List[Coordinate]:
    """Convert GeoJSON-ordered [lng, lat] pairs, dropping invalid ones.

    Raises ValueError if raw is not a list of pairs at all.
    """
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"coordinates must be a list, got {type(raw).__name__}")
    points = []
    for pair in raw:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        point = coerce_point((pair[1], pair[0]))
        if point is not None:
            points.append(point)
    return points


def _finite(value: Any, scale: float) -> Optional[float]:
    """value / scale as a finite, non-negative float, or None."""
    try:
        number = float(value) / scale
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


class BaseRouteProvider:
    """Shared HTTP handling for routing providers."""

    name: RouteProvider

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            headers={"Accept": "application/json"},
        )

    @property
    def enabled(self) -> bool:
        return True

    async def _get_json(self, url: str, params: Any = None) -> Dict[str, Any]:
        provider = self.name.value
        try:
            response = await self.client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(provider, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(provider, f"request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(provider, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        body_start = response.text[:200].lstrip().lower()
        if body_start.startswith("<!doctype") or body_start.startswith("<html"):
            raise ProviderError(provider, "returned HTML instead of JSON")
        if content_type and "json" not in content_type:
            raise ProviderError(provider, f"unexpected content type {content_type}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(provider, "returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProviderError(provider, "returned a non-object JSON payload")
        return data

    async def fetch_routes(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool = False,
        waypoints: Sequence[Coordinate] = (),
        alternatives: int = 1,
    ) -> List[RouteCandidate]:
        raise NotImplementedError

    def _candidate(self, points: List[Coordinate], distance_m: Any, duration: Any, per_minute: float) -> RouteCandidate:
        """Build a candidate; raises ValueError for NaN, infinite or negative figures."""
        if distance_m is None:
            distance_km = polyline_length_km(points)
        else:
            distance_km = _finite(distance_m, 1000)
            if distance_km is None:
                raise ValueError(f"invalid distance {distance_m!r}")
        minutes = _finite(duration if duration is not None else 0, per_minute)
        if minutes is None:
            raise ValueError(f"invalid duration {duration!r}")
        return RouteCandidate(
            coordinates=points,
            distance_km=round(distance_km, 3),
            duration_minutes=round(minutes, 1),
            provider=self.name,
        )

    def parse(self, data: Dict[str, Any]) -> List[RouteCandidate]:
        raise NotImplementedError

    def _parse_or_fail(self, data: Dict[str, Any]) -> List[RouteCandidate]:
        """parse(), with any malformed-payload error reported as ProviderError."""
        try:
            return self.parse(data)
        except ProviderError:
            raise
        except (TypeError, KeyError, AttributeError, ValueError) as e:
            raise ProviderError(self.name.value, f"malformed response: {e}") from e

    async def close(self):
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self.client.aclose()


class GraphHopperProvider(BaseRouteProvider):
    """GraphHopper Routing API (car profile)."""

    name = RouteProvider.GRAPHHOPPER

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key if api_key is not None else settings.graphhopper_api_key
        self.base_url = base_url or settings.graphhopper_url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def build_params(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool,
        waypoints: Sequence[Coordinate],
        alternatives: int,
    ) -> List[Tuple[str, str]]:
        params = [
            ("key", self.api_key),
            ("profile", "car"),
            ("locale", "en"),
            ("instructions", "false"),
            ("calc_points", "true"),
            ("points_encoded", "false"),
            # Shorter, lower-class roads over raw speed when safety matters
            ("weighting", "short_fastest" if prefer_safety else "fastest"),
        ]
        # Alternatives are only supported between two points
        if alternatives > 1 and not waypoints:
            params.extend([
                ("algorithm", "alternative_route"),
                ("alternative_route.max_paths", str(alternatives)),
                ("ch.disable", "true"),
            ])
        elif prefer_safety:
            params.append(("ch.disable", "true"))
        for point in [start, *waypoints, destination]:
            params.append(("point", f"{point.lat},{point.lng}"))
        return params

    def parse(self, data: Dict[str, Any]) -> List[RouteCandidate]:
        paths = data.get("paths")
        if not isinstance(paths, list) or not paths:
            message = data.get("message", "no paths in response")
            raise ProviderError(self.name.value, str(message))

        candidates = []
        for path in paths:
            if not isinstance(path, dict):
                continue
            raw_points = path.get("points")
            try:
                if isinstance(raw_points, str):
                    points = decode_polyline(raw_points)
                elif isinstance(raw_points, dict):
                    points = _points_from_lnglat(raw_points.get("coordinates"))
                else:
                    points = []
                if len(points) < 2:
                    continue
                candidates.append(self._candidate(points, path.get("distance"), path.get("time"), 60000))
            except ValueError as e:
                logger.debug(f"Skipping malformed GraphHopper path: {e}")

        if not candidates:
            raise ProviderError(self.name.value, "no usable paths in response")
        return candidates

    async def fetch_routes(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool = False,
        waypoints: Sequence[Coordinate] = (),
        alternatives: int = 1,
    ) -> List[RouteCandidate]:
        if not self.enabled:
            raise ProviderError(self.name.value, "no API key configured")
        params = self.build_params(start, destination, prefer_safety, waypoints, alternatives)
        data = await self._get_json(self.base_url, params=params)
        candidates = self._parse_or_fail(data)
        logger.info(f"GraphHopper returned {len(candidates)} route(s)")
        return candidates[:max(1, alternatives)]


class OSRMProvider(BaseRouteProvider):
    """OSRM HTTP route service (driving profile)."""

    name = RouteProvider.OSRM

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        profile: str = "driving",
        timeout: Optional[float] = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.base_url = (base_url or settings.osrm_url).rstrip("/")
        self.profile = profile

    def build_url(self, start: Coordinate, destination: Coordinate, waypoints: Sequence[Coordinate]) -> str:
        coords = ";".join(f"{p.lng},{p.lat}" for p in [start, *waypoints, destination])
        return f"{self.base_url}/route/v1/{self.profile}/{coords}"

    def parse(self, data: Dict[str, Any]) -> List[RouteCandidate]:
        code = data.get("code")
        if code is not None and code != "Ok":
            raise ProviderError(self.name.value, f"{code}: {data.get('message', '')}".strip())

        routes = data.get("routes")
        if not isinstance(routes, list) or not routes:
            raise ProviderError(self.name.value, "no routes in response")

        candidates = []
        for route in routes:
            if not isinstance(route, dict):
                continue
            geometry = route.get("geometry") or {}
            try:
                points = _points_from_lnglat(geometry.get("coordinates") if isinstance(geometry, dict) else None)
                if len(points) < 2:
                    continue
                candidates.append(self._candidate(points, route.get("distance"), route.get("duration"), 60))
            except ValueError as e:
                logger.debug(f"Skipping malformed OSRM route: {e}")

        if not candidates:
            raise ProviderError(self.name.value, "no usable routes in response")
        return candidates

    async def fetch_routes(
        self,
        start: Coordinate,
        destination: Coordinate,
        prefer_safety: bool = False,
        waypoints: Sequence[Coordinate] = (),
        alternatives: int = 1,
    ) -> List[RouteCandidate]:
        # OSRM has no safety weighting; alternatives give the selector more to choose from
        params = {
            "overview": "full",
            "geometries": "geojson",
            "alternatives": "true" if alternatives > 1 and not waypoints else "false",
        }
        data = await self._get_json(self.build_url(start, destination, waypoints), params=params)
        candidates = self._parse_or_fail(data)
        logger.info(f"OSRM returned {len(candidates)} route(s)")
        return candidates[:max(1, alternatives)]
