"""Road segment rating database model."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from saferoute.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoadSegmentRecord(Base):
    """A rated stretch of road with its vote counts."""

    __tablename__ = "road_segments"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)

    # Endpoints
    start_lat: Mapped[float] = mapped_column(Float, nullable=False)
    start_lng: Mapped[float] = mapped_column(Float, nullable=False)
    end_lat: Mapped[float] = mapped_column(Float, nullable=False)
    end_lng: Mapped[float] = mapped_column(Float, nullable=False)

    # Ordered [lat, lng] pairs
    points: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Consensus
    rating: Mapped[str] = mapped_column(String(16), nullable=False, default="Unknown")
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    good_rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bad_rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    traffic_status: Mapped[str] = mapped_column(String(16), nullable=False, default="Unknown")
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Bounding area
    north: Mapped[float] = mapped_column(Float, nullable=False)
    south: Mapped[float] = mapped_column(Float, nullable=False)
    east: Mapped[float] = mapped_column(Float, nullable=False)
    west: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_road_segments_bounds", "south", "north", "west", "east"),
    )

    def __repr__(self) -> str:
        return f"<RoadSegmentRecord {self.id} {self.rating} ({self.rating_count})>"
