"""Shared test fixtures.

Ratings use an in-memory SQLite database (via aiosqlite) so tests run
without PostgreSQL, and no test talks to a real routing provider.
"""

import math
import os

# Must be set before saferoute.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATINGS_PERSISTENCE_ENABLED", "false")
os.environ.setdefault("GRAPHHOPPER_API_KEY", "")
os.environ.setdefault("LOG_REQUESTS", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from saferoute.models.base import Base
from saferoute.schemas.common import Coordinate
from saferoute.schemas.road_segment import (
    RatingVerdict,
    RoadSegment,
    SegmentCoordinates,
    TrafficStatus,
)
from saferoute.services.rating_repository import SqlRatingRepository
from saferoute.services.road_segments import bounding_area_for, make_segment_id

# Kilometres per degree of latitude on the sphere used by haversine_km
KM_PER_DEG_LAT = 6371.0 * math.pi / 180


def north_of(origin: Coordinate, km: float) -> Coordinate:
    """Point km kilometres due north of origin."""
    return Coordinate(lat=origin.lat + km / KM_PER_DEG_LAT, lng=origin.lng)


def make_segment(
    start: Coordinate,
    end: Coordinate,
    rating: RatingVerdict = RatingVerdict.GOOD,
    traffic: TrafficStatus = TrafficStatus.UNKNOWN,
) -> RoadSegment:
    good = 1 if rating == RatingVerdict.GOOD else 0
    bad = 1 if rating == RatingVerdict.BAD else 0
    coordinates = SegmentCoordinates(start=start, end=end)
    return RoadSegment(
        id=make_segment_id(start, end),
        coordinates=coordinates,
        points=[start, end],
        rating=rating,
        rating_count=good + bad,
        good_rating_count=good,
        bad_rating_count=bad,
        bounding_area=bounding_area_for(coordinates),
        traffic_status=traffic,
    )


@pytest.fixture
def delhi():
    return Coordinate(lat=28.7041, lng=77.1025)


@pytest.fixture
def agra():
    return Coordinate(lat=27.1767, lng=78.0081)


@pytest_asyncio.fixture
async def sql_repository():
    """SqlRatingRepository over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    yield SqlRatingRepository(factory)
    await engine.dispose()
