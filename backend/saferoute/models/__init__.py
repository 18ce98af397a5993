# Database models
from saferoute.models.base import Base
from saferoute.models.road_segment import RoadSegmentRecord

__all__ = ["Base", "RoadSegmentRecord"]
