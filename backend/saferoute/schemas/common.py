"""Common schemas used across the application."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator
from shapely.geometry import box


class Coordinate(BaseModel):
    """Geographic coordinate."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")

    def as_tuple(self) -> tuple:
        return (self.lat, self.lng)


class BoundingBox(BaseModel):
    """Bounding box for spatial queries, in degrees."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    north: float = Field(..., ge=-90, le=90)
    south: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)
    west: float = Field(..., ge=-180, le=180)

    @model_validator(mode="after")
    def check_order(self) -> "BoundingBox":
        if self.south > self.north:
            raise ValueError("south must not be greater than north")
        if self.west > self.east:
            raise ValueError("west must not be greater than east")
        return self

    @classmethod
    def from_string(cls, bbox_str: str) -> "BoundingBox":
        """Parse bounding box from a 'north,south,east,west' string."""
        try:
            parts = [float(x) for x in bbox_str.split(",")]
        except ValueError:
            raise ValueError("Bounding box values must be numbers")
        if len(parts) != 4:
            raise ValueError("Bounding box must have 4 values: north,south,east,west")
        return cls(north=parts[0], south=parts[1], east=parts[2], west=parts[3])

    @classmethod
    def around(cls, points: List[Coordinate], padding: float = 0.0) -> "BoundingBox":
        """Smallest box containing all points, grown by ``padding`` degrees."""
        if not points:
            raise ValueError("Cannot build a bounding box from no points")
        return cls(
            north=min(90.0, max(p.lat for p in points) + padding),
            south=max(-90.0, min(p.lat for p in points) - padding),
            east=min(180.0, max(p.lng for p in points) + padding),
            west=max(-180.0, min(p.lng for p in points) - padding),
        )

    def to_polygon(self):
        return box(self.west, self.south, self.east, self.north)

    def intersects(self, other: "BoundingBox") -> bool:
        """True if the two boxes overlap or touch."""
        return self.to_polygon().intersects(other.to_polygon())

    def contains(self, point: Coordinate) -> bool:
        return self.south <= point.lat <= self.north and self.west <= point.lng <= self.east
