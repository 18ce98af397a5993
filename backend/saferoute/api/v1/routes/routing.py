"""Routing API endpoints."""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from saferoute.api.dependencies import get_route_selector, get_segment_store, get_segmenter
from saferoute.core.exceptions import APIException, GeographicBoundsException, get_request_id
from saferoute.schemas.common import BoundingBox
from saferoute.schemas.road_segment import RatedSegmentSlice, SegmentationRequest
from saferoute.schemas.routing import RouteRequest, RouteResult
from saferoute.services.geo import GeographicBoundsError, default_region, ensure_in_region
from saferoute.services.road_segments import RoadSegmentStore
from saferoute.services.routing.context import RoutingCancelled, RoutingContext
from saferoute.services.routing.selector import RouteSelector
from saferoute.services.segmenter import GeometrySegmenter

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 1.0


async def _watch_disconnect(request: Request, context: RoutingContext) -> None:
    """Cancel the routing context once the client goes away."""
    while True:
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
        if await request.is_disconnected():
            logger.info(f"[{context.request_id}] Client disconnected, cancelling route calculation")
            context.cancel()
            return


@router.post("/calculate", response_model=RouteResult)
async def calculate_route(
    route_request: RouteRequest,
    request: Request,
    selector: RouteSelector = Depends(get_route_selector),
):
    """
    Calculate the best route between two points.

    Tries GraphHopper, then OSRM, then the highway graph search, and
    ranks candidates by community safety ratings and travel time. A
    synthesized straight line is returned (status "degraded") when
    nothing else is available.
    """
    request_id = get_request_id(request)
    context = RoutingContext.from_settings(request_id=request_id)
    watcher = asyncio.create_task(_watch_disconnect(request, context))

    try:
        return await selector.select_best_route(
            route_request.start,
            route_request.destination,
            prefer_safety=route_request.prioritize_safety,
            context=context,
        )
    except GeographicBoundsError as e:
        raise GeographicBoundsException(detail=str(e))
    except RoutingCancelled:
        raise APIException(
            status_code=499,
            detail="Client closed request",
            error_code="CLIENT_CLOSED_REQUEST",
        )
    except Exception as e:
        # Never leave a valid in-region request without a route
        logger.error(f"[{request_id}] Route selection failed, returning emergency route: {type(e).__name__}: {e}")
        return selector.emergency_route(
            route_request.start,
            route_request.destination,
            reason="Route calculation failed; showing direct line",
        )
    finally:
        watcher.cancel()


@router.post("/segments", response_model=List[RatedSegmentSlice])
async def segment_route(
    segmentation_request: SegmentationRequest,
    segmenter: GeometrySegmenter = Depends(get_segmenter),
    store: RoadSegmentStore = Depends(get_segment_store),
) -> List[RatedSegmentSlice]:
    """
    Slice a route into fixed-length segments for rating.

    Each slice carries any community rating already stored under its id.
    """
    region = default_region()
    for point in segmentation_request.coordinates:
        ensure_in_region(point, region)

    slices = segmenter.segment(
        segmentation_request.coordinates,
        target_length_km=segmentation_request.target_length_km,
    )
    if not slices:
        return []

    bounds = BoundingBox.around(segmentation_request.coordinates, padding=0.01)
    stored = {s.id: s for s in await store.query(bounds)}

    results = []
    for piece in slices:
        rated = stored.get(piece.id)
        extra = {}
        if rated is not None:
            extra = {
                "rating": rated.rating,
                "rating_count": rated.rating_count,
                "traffic_status": rated.traffic_status,
            }
        results.append(RatedSegmentSlice(**piece.model_dump(), **extra))
    return results
