"""Persistence for road segment ratings.

The store talks to a ``RatingRepository``; the SQL implementation keeps
one row per segment in the ``road_segments`` table. Every database
failure surfaces as ``StorageError`` so callers can degrade instead of
failing the request.
"""

import logging
from typing import List, Optional, Protocol

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from saferoute.models.road_segment import RoadSegmentRecord
from saferoute.schemas.common import BoundingBox, Coordinate
from saferoute.schemas.road_segment import (
    RatingVerdict,
    RoadSegment,
    SegmentCoordinates,
    TrafficStatus,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the rating store cannot be read or written.

    ``segment`` carries the optimistic in-memory result of a write that
    could not be persisted.
    """

    def __init__(self, message: str, segment: Optional[RoadSegment] = None):
        super().__init__(message)
        self.segment = segment


class RatingRepository(Protocol):
    async def get(self, segment_id: str) -> Optional[RoadSegment]:
        ...

    async def put(self, segment: RoadSegment) -> None:
        ...

    async def query_by_bounds(self, bounds: BoundingBox) -> List[RoadSegment]:
        ...

    async def list_all(self) -> List[RoadSegment]:
        ...

    async def delete(self, segment_id: str) -> bool:
        ...


def record_to_segment(record: RoadSegmentRecord) -> RoadSegment:
    """Convert a database row into a RoadSegment."""
    return RoadSegment(
        id=record.id,
        coordinates=SegmentCoordinates(
            start=Coordinate(lat=record.start_lat, lng=record.start_lng),
            end=Coordinate(lat=record.end_lat, lng=record.end_lng),
        ),
        points=[Coordinate(lat=p[0], lng=p[1]) for p in (record.points or [])],
        rating=RatingVerdict(record.rating),
        rating_count=record.rating_count,
        good_rating_count=record.good_rating_count,
        bad_rating_count=record.bad_rating_count,
        bounding_area=BoundingBox(
            north=record.north, south=record.south, east=record.east, west=record.west
        ),
        traffic_status=TrafficStatus(record.traffic_status),
        distance_km=record.distance_km,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def apply_segment(record: RoadSegmentRecord, segment: RoadSegment) -> RoadSegmentRecord:
    """Copy RoadSegment fields onto a database row."""
    record.start_lat = segment.coordinates.start.lat
    record.start_lng = segment.coordinates.start.lng
    record.end_lat = segment.coordinates.end.lat
    record.end_lng = segment.coordinates.end.lng
    record.points = [[p.lat, p.lng] for p in segment.points]
    record.rating = segment.rating.value
    record.rating_count = segment.rating_count
    record.good_rating_count = segment.good_rating_count
    record.bad_rating_count = segment.bad_rating_count
    record.traffic_status = segment.traffic_status.value
    record.distance_km = segment.distance_km
    record.north = segment.bounding_area.north
    record.south = segment.bounding_area.south
    record.east = segment.bounding_area.east
    record.west = segment.bounding_area.west
    if segment.created_at is not None:
        record.created_at = segment.created_at
    if segment.updated_at is not None:
        record.updated_at = segment.updated_at
    return record


class SqlRatingRepository:
    """RatingRepository backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, segment_id: str) -> Optional[RoadSegment]:
        try:
            async with self.session_factory() as session:
                record = await session.get(RoadSegmentRecord, segment_id)
                return record_to_segment(record) if record else None
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Failed to load segment {segment_id}: {e}")
            raise StorageError(f"Failed to load segment {segment_id}") from e

    async def put(self, segment: RoadSegment) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = await session.get(RoadSegmentRecord, segment.id)
                    if record is None:
                        record = RoadSegmentRecord(id=segment.id)
                        session.add(apply_segment(record, segment))
                    else:
                        apply_segment(record, segment)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Failed to save segment {segment.id}: {e}")
            raise StorageError(f"Failed to save segment {segment.id}") from e

    async def query_by_bounds(self, bounds: BoundingBox) -> List[RoadSegment]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(RoadSegmentRecord).where(
                        and_(
                            RoadSegmentRecord.south <= bounds.north,
                            RoadSegmentRecord.north >= bounds.south,
                            RoadSegmentRecord.west <= bounds.east,
                            RoadSegmentRecord.east >= bounds.west,
                        )
                    )
                )
                return [record_to_segment(r) for r in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Bounding-box query failed: {e}")
            raise StorageError("Failed to query segments") from e

    async def list_all(self) -> List[RoadSegment]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(RoadSegmentRecord).order_by(RoadSegmentRecord.updated_at.desc())
                )
                return [record_to_segment(r) for r in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Listing segments failed: {e}")
            raise StorageError("Failed to list segments") from e

    async def delete(self, segment_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RoadSegmentRecord).where(RoadSegmentRecord.id == segment_id)
                    )
                    return result.rowcount > 0
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Failed to delete segment {segment_id}: {e}")
            raise StorageError(f"Failed to delete segment {segment_id}") from e


def create_sql_repository(session_factory: Optional[async_sessionmaker] = None) -> SqlRatingRepository:
    """SQL repository using the application's session factory by default."""
    if session_factory is None:
        from saferoute.db.session import async_session_maker

        session_factory = async_session_maker
    return SqlRatingRepository(session_factory)


__all__ = [
    "StorageError",
    "RatingRepository",
    "SqlRatingRepository",
    "create_sql_repository",
    "record_to_segment",
]
