"""Road segment rating endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from saferoute.api.dependencies import get_segment_store
from saferoute.core.exceptions import (
    ResourceNotFoundException,
    ServiceUnavailableException,
    ValidationException,
    get_request_id,
)
from saferoute.schemas.common import BoundingBox
from saferoute.schemas.road_segment import RatingSubmission, RoadSegment, TrafficUpdate
from saferoute.services.geo import default_region, ensure_in_region
from saferoute.services.rating_repository import StorageError
from saferoute.services.road_segments import RatingError, RoadSegmentStore, SegmentNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=RoadSegment, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    submission: RatingSubmission,
    request: Request,
    response: Response,
    store: RoadSegmentStore = Depends(get_segment_store),
) -> RoadSegment:
    """
    Rate a road segment Good or Bad.

    Returns 201 when the segment is new, 200 when an existing segment
    was updated, and 202 when the rating was applied in memory but could
    not be saved.
    """
    request_id = get_request_id(request)
    region = default_region()
    ensure_in_region(submission.coordinates.start, region)
    ensure_in_region(submission.coordinates.end, region)

    try:
        segment = await store.submit_rating(
            submission.segment_id,
            submission.coordinates,
            submission.rating,
            points=submission.points,
            distance_km=submission.distance_km,
        )
    except RatingError as e:
        raise ValidationException(detail=str(e), field="rating")
    except StorageError as e:
        if e.segment is None:
            raise ServiceUnavailableException(service="Rating store")
        logger.warning(f"[{request_id}] Rating for {submission.segment_id} not persisted")
        response.status_code = status.HTTP_202_ACCEPTED
        return e.segment

    if segment.rating_count > 1:
        response.status_code = status.HTTP_200_OK
    return segment


@router.get("", response_model=List[RoadSegment])
async def list_ratings(
    bounds: Optional[str] = Query(None, description="Bounding box: north,south,east,west"),
    store: RoadSegmentStore = Depends(get_segment_store),
) -> List[RoadSegment]:
    """Rated segments whose area intersects the bounding box, or all of them without one."""
    if bounds is None:
        return await store.all_segments()
    try:
        bbox = BoundingBox.from_string(bounds)
    except ValueError as e:
        raise ValidationException(detail=f"Invalid bounds: {e}", field="bounds")
    return await store.query(bbox)


@router.get("/{segment_id}", response_model=RoadSegment)
async def get_rating(
    segment_id: str,
    store: RoadSegmentStore = Depends(get_segment_store),
) -> RoadSegment:
    segment = await store.get(segment_id)
    if segment is None:
        raise ResourceNotFoundException("Road segment", segment_id)
    return segment


@router.put("/{segment_id}/traffic", response_model=RoadSegment)
async def update_traffic_status(
    segment_id: str,
    update: TrafficUpdate,
    response: Response,
    store: RoadSegmentStore = Depends(get_segment_store),
) -> RoadSegment:
    """Set the reported traffic status on a rated segment."""
    try:
        return await store.set_traffic_status(segment_id, update.traffic_status)
    except SegmentNotFoundError:
        raise ResourceNotFoundException("Road segment", segment_id)
    except StorageError as e:
        if e.segment is None:
            raise ServiceUnavailableException(service="Rating store")
        response.status_code = status.HTTP_202_ACCEPTED
        return e.segment
