"""Crowd-sourced road segment ratings.

The store is the only writer of RoadSegment records. Writes for one
segment key are serialized with a per-key lock; reads never take a lock
and may observe a slightly stale view.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from saferoute.schemas.common import BoundingBox, Coordinate
from saferoute.schemas.road_segment import (
    RatingVerdict,
    RoadSegment,
    SegmentCoordinates,
    TrafficStatus,
)
from saferoute.services.geo import coerce_point, polyline_length_km
from saferoute.services.rating_repository import RatingRepository, StorageError

logger = logging.getLogger(__name__)

BOUNDING_PADDING_DEG = 0.01
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RatingError(ValueError):
    """A rating submission is malformed."""


class SegmentNotFoundError(LookupError):
    """No segment is stored under the requested key."""

    def __init__(self, segment_id: str):
        self.segment_id = segment_id
        super().__init__(f"Road segment {segment_id} not found")


def make_segment_id(start: Coordinate, end: Coordinate) -> str:
    """Stable key for a stretch of road; nearby re-ratings collide on purpose."""
    return f"road_{start.lat:.4f}_{start.lng:.4f}_{end.lat:.4f}_{end.lng:.4f}"


def bounding_area_for(
    coordinates: SegmentCoordinates,
    points: Iterable[Coordinate] = (),
    padding: float = BOUNDING_PADDING_DEG,
) -> BoundingBox:
    """Padded box around a segment's endpoints and path."""
    return BoundingBox.around([coordinates.start, coordinates.end, *points], padding=padding)


def majority_rating(good: int, bad: int, tie_verdict: RatingVerdict = RatingVerdict.GOOD) -> RatingVerdict:
    """Strict-majority consensus; ties and empty tallies resolve to tie_verdict."""
    total = good + bad
    if total == 0:
        return RatingVerdict.UNKNOWN
    if bad * 2 > total:
        return RatingVerdict.BAD
    if good * 2 > total:
        return RatingVerdict.GOOD
    return tie_verdict


def _last_touched(segment: RoadSegment) -> datetime:
    stamp = segment.updated_at or segment.created_at
    if stamp is None:
        return _EPOCH
    # SQLite hands back naive timestamps
    return stamp if stamp.tzinfo is not None else stamp.replace(tzinfo=timezone.utc)


class RoadSegmentStore:
    """In-memory view of rated segments, optionally backed by a repository."""

    def __init__(
        self,
        repository: Optional[RatingRepository] = None,
        tie_verdict: RatingVerdict = RatingVerdict.GOOD,
    ):
        if tie_verdict == RatingVerdict.UNKNOWN:
            raise ValueError("tie_verdict must be Good or Bad")
        self.repository = repository
        self.tie_verdict = tie_verdict
        # Without a repository this holds every segment; with one, only
        # segments whose latest write has not been persisted yet.
        self._cache: Dict[str, RoadSegment] = {}
        # segment id -> (lock, number of coroutines holding or awaiting it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _lock_for(self, segment_id: str):
        """Serialize writes to one key; the lock is dropped once unused."""
        lock, users = self._locks.get(segment_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[segment_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[segment_id]
            if users <= 1:
                del self._locks[segment_id]
            else:
                self._locks[segment_id] = (lock, users - 1)

    async def _load(self, segment_id: str) -> Optional[RoadSegment]:
        """Current record, preferring the repository and falling back to cache."""
        cached = self._cache.get(segment_id)
        if self.repository is None:
            return cached
        try:
            stored = await self.repository.get(segment_id)
        except StorageError:
            logger.warning(f"Using cached copy of segment {segment_id}; storage unavailable")
            return cached
        if stored is None:
            return cached
        # An unpersisted in-memory update can be ahead of the database
        if cached is not None and cached.rating_count > stored.rating_count:
            return cached
        return stored

    async def _save(self, segment: RoadSegment) -> RoadSegment:
        if self.repository is None:
            self._cache[segment.id] = segment
            return segment
        try:
            await self.repository.put(segment)
        except StorageError as e:
            self._cache[segment.id] = segment
            logger.error(f"Segment {segment.id} kept in memory only: {e}")
            raise StorageError(str(e), segment=segment) from e
        self._cache.pop(segment.id, None)
        return segment

    async def get(self, segment_id: str) -> Optional[RoadSegment]:
        return await self._load(segment_id)

    async def query(self, bounds: BoundingBox) -> List[RoadSegment]:
        """All segments whose bounding area intersects bounds.

        A storage failure degrades to whatever is cached in memory.
        """
        stored: List[RoadSegment] = []
        if self.repository is not None:
            try:
                stored = await self.repository.query_by_bounds(bounds)
            except StorageError:
                logger.warning("Segment query fell back to in-memory ratings")

        cached = [s for s in list(self._cache.values()) if s.bounding_area.intersects(bounds)]
        return self._merge(stored, cached)

    async def all_segments(self) -> List[RoadSegment]:
        """Every rated segment, most recently updated first."""
        stored: List[RoadSegment] = []
        if self.repository is not None:
            try:
                stored = await self.repository.list_all()
            except StorageError:
                logger.warning("Segment listing fell back to in-memory ratings")

        merged = self._merge(stored, list(self._cache.values()))
        return sorted(merged, key=_last_touched, reverse=True)

    @staticmethod
    def _merge(stored: Iterable[RoadSegment], cached: Iterable[RoadSegment]) -> List[RoadSegment]:
        """Union by id; an unpersisted copy wins when it has at least as many ratings."""
        results: Dict[str, RoadSegment] = {s.id: s for s in stored}
        for segment in cached:
            existing = results.get(segment.id)
            if existing is None or segment.rating_count >= existing.rating_count:
                results[segment.id] = segment
        return list(results.values())

    async def submit_rating(
        self,
        segment_id: str,
        coordinates: SegmentCoordinates,
        verdict: RatingVerdict,
        points: Optional[Iterable] = None,
        distance_km: Optional[float] = None,
    ) -> RoadSegment:
        """Record one rating and return the updated segment.

        Raises RatingError for malformed input and StorageError (carrying
        the in-memory result) if the rating could not be persisted.
        """
        if not segment_id or not segment_id.strip():
            raise RatingError("segment_id is required")
        if not isinstance(verdict, RatingVerdict):
            try:
                verdict = RatingVerdict(verdict)
            except ValueError:
                raise RatingError(f"Invalid rating: {verdict!r}")
        if verdict == RatingVerdict.UNKNOWN:
            raise RatingError("Rating must be Good or Bad")
        if not isinstance(coordinates, SegmentCoordinates):
            raise RatingError("Segment coordinates must include start and end")

        path = [p for p in (coerce_point(p) for p in (points or [])) if p is not None]
        if len(path) < 2:
            path = [coordinates.start, coordinates.end]

        async with self._lock_for(segment_id):
            existing = await self._load(segment_id)
            now = datetime.now(timezone.utc)

            if existing is None:
                good = 1 if verdict == RatingVerdict.GOOD else 0
                bad = 1 - good
                segment = RoadSegment(
                    id=segment_id,
                    coordinates=coordinates,
                    points=path,
                    rating=majority_rating(good, bad, self.tie_verdict),
                    rating_count=1,
                    good_rating_count=good,
                    bad_rating_count=bad,
                    bounding_area=bounding_area_for(coordinates, path),
                    distance_km=distance_km if distance_km is not None else round(polyline_length_km(path), 3),
                    created_at=now,
                    updated_at=now,
                )
                logger.info(f"Created segment {segment_id} rated {verdict.value}")
            else:
                good = existing.good_rating_count + (1 if verdict == RatingVerdict.GOOD else 0)
                bad = existing.bad_rating_count + (1 if verdict == RatingVerdict.BAD else 0)
                segment = existing.model_copy(update={
                    "rating": majority_rating(good, bad, self.tie_verdict),
                    "rating_count": good + bad,
                    "good_rating_count": good,
                    "bad_rating_count": bad,
                    "updated_at": now,
                })
                logger.info(
                    f"Updated segment {segment_id}: {segment.rating.value} "
                    f"({good} good / {bad} bad)"
                )

            return await self._save(segment)

    async def set_traffic_status(self, segment_id: str, status: TrafficStatus) -> RoadSegment:
        """Set the reported traffic status of an existing segment."""
        async with self._lock_for(segment_id):
            existing = await self._load(segment_id)
            if existing is None:
                raise SegmentNotFoundError(segment_id)
            segment = existing.model_copy(update={
                "traffic_status": TrafficStatus(status),
                "updated_at": datetime.now(timezone.utc),
            })
            return await self._save(segment)

    async def delete(self, segment_id: str) -> bool:
        """Remove a segment (admin only). Returns False if it did not exist."""
        async with self._lock_for(segment_id):
            removed = self._cache.pop(segment_id, None) is not None
            if self.repository is not None:
                removed = await self.repository.delete(segment_id) or removed
            return removed
