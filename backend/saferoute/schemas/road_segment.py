"""Road segment rating schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from saferoute.schemas.common import BoundingBox, Coordinate


class RatingVerdict(str, Enum):
    """Community verdict on a road segment."""

    GOOD = "Good"
    BAD = "Bad"
    UNKNOWN = "Unknown"


class TrafficStatus(str, Enum):
    """Reported traffic on a road segment."""

    CONGESTED = "Congested"
    MODERATE = "Moderate"
    SMOOTH = "Smooth"
    UNKNOWN = "Unknown"


class SegmentCoordinates(BaseModel):
    """Start and end of a road segment."""

    model_config = ConfigDict(frozen=True)

    start: Coordinate
    end: Coordinate


class RoadSegment(BaseModel):
    """A rated stretch of road and its consensus."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable segment key")
    coordinates: SegmentCoordinates
    points: List[Coordinate] = Field(default_factory=list, description="Ordered path of the segment")
    rating: RatingVerdict = RatingVerdict.UNKNOWN
    rating_count: int = Field(default=0, ge=0)
    good_rating_count: int = Field(default=0, ge=0)
    bad_rating_count: int = Field(default=0, ge=0)
    bounding_area: BoundingBox
    traffic_status: TrafficStatus = TrafficStatus.UNKNOWN
    distance_km: Optional[float] = Field(default=None, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_counts(self) -> "RoadSegment":
        if self.rating_count != self.good_rating_count + self.bad_rating_count:
            raise ValueError("rating_count must equal good_rating_count + bad_rating_count")
        return self

    @property
    def path(self) -> List[Coordinate]:
        """Points if present, otherwise start and end."""
        if len(self.points) >= 2:
            return list(self.points)
        return [self.coordinates.start, self.coordinates.end]


class RatingSubmission(BaseModel):
    """Request body for rating a road segment."""

    segment_id: str = Field(..., min_length=1, max_length=200)
    coordinates: SegmentCoordinates
    rating: RatingVerdict
    points: Optional[List[Coordinate]] = Field(default=None, max_length=5000)
    distance_km: Optional[float] = Field(default=None, ge=0)


class TrafficUpdate(BaseModel):
    """Request body for setting the traffic status of a segment."""

    traffic_status: TrafficStatus


class SegmentSlice(BaseModel):
    """One fixed-length piece of a routed polyline."""

    id: str
    sequence: int = Field(..., ge=0)
    coordinates: SegmentCoordinates
    points: List[Coordinate]
    distance_km: float = Field(..., ge=0)


class SegmentationRequest(BaseModel):
    """Request body for slicing a route into rateable segments."""

    coordinates: List[Coordinate] = Field(..., min_length=2, max_length=20000)
    target_length_km: Optional[float] = Field(default=None, gt=0, le=50)


class RatedSegmentSlice(SegmentSlice):
    """Segment slice annotated with any stored community rating."""

    rating: RatingVerdict = RatingVerdict.UNKNOWN
    rating_count: int = 0
    traffic_status: TrafficStatus = TrafficStatus.UNKNOWN
