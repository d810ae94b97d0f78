"""
Course geometry and timing results.

Timing lines come from the track catalog or from request bodies. Crossings,
laps and speed events are recomputed from a TelemetryRun on demand and are
never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float


@dataclass(frozen=True)
class TimingLine:
    """Oriented line segment a->b used for crossing detection."""

    a: GeoPoint
    b: GeoPoint

    def __post_init__(self):
        if self.a == self.b:
            raise ValueError("Timing line endpoints must be distinct")

    @property
    def midpoint(self) -> GeoPoint:
        return GeoPoint((self.a.lat + self.b.lat) / 2, (self.a.lon + self.b.lon) / 2)


@dataclass(frozen=True)
class Course:
    """
    A start/finish line plus optional sector boundaries.

    Sector timing is only active when both sector lines are present.
    """

    name: str
    start_finish: TimingLine
    sector_2: Optional[TimingLine] = None
    sector_3: Optional[TimingLine] = None

    @property
    def has_sectors(self) -> bool:
        return self.sector_2 is not None and self.sector_3 is not None


@dataclass
class Track:
    name: str
    courses: list[Course] = field(default_factory=list)

    def get_course(self, name: str) -> Optional[Course]:
        for course in self.courses:
            if course.name == name:
                return course
        return None


@dataclass(frozen=True)
class Crossing:
    """Path/line intersection between samples sample_index and sample_index + 1."""

    sample_index: int
    crossing_time: float   # ms, interpolated
    fraction: float        # position along the path segment, [0, 1]
    direction: int         # +1 or -1, side the path came from


@dataclass(frozen=True)
class SectorTimes:
    s1: float
    s2: float
    s3: float


@dataclass(frozen=True)
class Lap:
    lap_number: int
    start_time: float
    end_time: float
    lap_time_ms: float
    max_speed_mph: float
    max_speed_kph: float
    min_speed_mph: float
    min_speed_kph: float
    start_index: int
    end_index: int
    sectors: Optional[SectorTimes] = None


@dataclass(frozen=True)
class OptimalLap:
    """Sum of the best observed sector times across laps with full sectors."""

    best_s1: float
    best_s2: float
    best_s3: float
    optimal_time_ms: float
    fastest_lap_ms: float
    delta_ms: float

    @property
    def is_consistent(self) -> bool:
        # A negative delta means sector boundaries were detected inconsistently
        return self.delta_ms >= -1e-6


class SpeedEventType(str, Enum):
    PEAK = "peak"
    VALLEY = "valley"


@dataclass(frozen=True)
class SpeedEvent:
    type: SpeedEventType
    speed: int            # rounded display speed in the requested unit
    lat: float
    lon: float
    index: int
    time: float           # ms
