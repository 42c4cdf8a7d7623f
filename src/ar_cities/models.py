"""
Value types shared by the fusion engine and the layout engine.
"""

from dataclasses import dataclass
from enum import Enum


class SourceKind(Enum):
    """Which orientation backend produced a sample."""
    GENERIC_SENSOR = "generic-sensor"
    DEVICE_FUSION = "deviceorientation+motion"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class OrientationSample:
    """One fused orientation estimate, in degrees."""
    heading_deg: float  # 0..360, magnetic
    pitch_deg: float    # up positive
    roll_deg: float
    source: SourceKind
    timestamp: float    # seconds on the event loop clock


@dataclass(frozen=True)
class LatLon:
    """Geographic position in degrees."""
    lat: float
    lon: float


@dataclass(frozen=True)
class City:
    """A labelled geographic entity."""
    name: str
    country: str
    lat: float
    lon: float
    population: int

    @property
    def key(self) -> str:
        return f"{self.name}|{self.country}"


@dataclass(frozen=True)
class Candidate:
    """A city paired with its range and bearing from the user for one frame."""
    city: City
    distance_km: float
    bearing_deg: float


@dataclass
class PlacementRect:
    """Axis-aligned rectangle in CSS pixel space."""
    x: float
    y: float
    w: float
    h: float

    def overlaps(self, other: "PlacementRect") -> bool:
        # Touching edges count as a collision
        return not (
            self.x + self.w < other.x
            or other.x + other.w < self.x
            or self.y + self.h < other.y
            or other.y + other.h < self.y
        )

    def moved_to(self, y: float) -> "PlacementRect":
        return PlacementRect(self.x, y, self.w, self.h)
