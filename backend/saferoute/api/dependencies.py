"""FastAPI dependency injection helpers.

Services are built once at startup (see ``saferoute.main.lifespan``) and
handed to routes through these dependencies, so tests can swap them with
``app.dependency_overrides``.
"""

import logging
from typing import Optional

from saferoute.config import settings
from saferoute.schemas.road_segment import RatingVerdict
from saferoute.services.rating_repository import RatingRepository
from saferoute.services.road_segments import RoadSegmentStore
from saferoute.services.routing.chain import RouteProviderChain
from saferoute.services.routing.selector import RouteSelector
from saferoute.services.segmenter import GeometrySegmenter

logger = logging.getLogger(__name__)


class Services:
    """Long-lived service objects shared by all requests."""

    def __init__(
        self,
        store: RoadSegmentStore,
        chain: RouteProviderChain,
        segmenter: GeometrySegmenter,
    ):
        self.store = store
        self.chain = chain
        self.segmenter = segmenter
        self.selector = RouteSelector(chain=chain, store=store)

    async def close(self):
        await self.chain.close()


_services: Optional[Services] = None


def build_services(repository: Optional[RatingRepository] = None) -> Services:
    """Create and install the shared services."""
    global _services
    store = RoadSegmentStore(
        repository=repository,
        tie_verdict=RatingVerdict(settings.rating_tie_verdict),
    )
    segmenter = GeometrySegmenter(
        target_length_km=settings.segment_length_km,
        tolerance_km=settings.segment_tolerance_km,
    )
    _services = Services(store=store, chain=RouteProviderChain(), segmenter=segmenter)
    logger.info(f"Services ready (ratings {'persistent' if repository else 'in-memory'})")
    return _services


def get_services() -> Services:
    if _services is None:
        return build_services()
    return _services


async def shutdown_services() -> None:
    global _services
    if _services is not None:
        await _services.close()
        _services = None


def get_segment_store() -> RoadSegmentStore:
    return get_services().store


def get_route_selector() -> RouteSelector:
    return get_services().selector


def get_segmenter() -> GeometrySegmenter:
    return get_services().segmenter
