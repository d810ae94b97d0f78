"""
Canonical telemetry data model.

Every decoder output is normalized into this structure with:
- elapsed time in milliseconds from the first accepted sample
- decimal-degree WGS84 positions
- speed cached in m/s, mph and km/h (mph/km/h always derived from m/s)
- an auxiliary field map keyed by AuxField, or by column name for
  passthrough columns of less common formats
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray

from racelog.utils.signal import heading_delta, normalize_heading


CANONICAL_VERSION = "v1"

MPS_TO_MPH = 2.23694
MPS_TO_KPH = 3.6


class AuxField(Enum):
    """Known auxiliary channels, valued by their display name."""

    SATELLITES = "Satellites"
    H_ACCURACY = "H Accuracy (m)"
    ALTITUDE = "Altitude (m)"
    V_ACCURACY = "V Accuracy (m)"
    LAT_G = "Lat G"
    LON_G = "Lon G"
    LAT_G_NATIVE = "Lat G (Native)"
    LON_G_NATIVE = "Lon G (Native)"
    YAW_RATE = "Yaw Rate"
    DISTANCE = "Distance"
    RPM = "RPM"
    TEMP_1 = "Temp 1"
    TEMP_2 = "Temp 2"
    EGT = "EGT"
    WATER_TEMP = "Water Temp"
    OIL_TEMP = "Oil Temp"
    THROTTLE = "Throttle"


# Default synthetic descriptor index per known field. Negative indices mark
# fields the decoders name themselves; passthrough columns use their column
# position (>= 0).
AUX_FIELD_INDEX: dict[AuxField, int] = {
    AuxField.SATELLITES: -1,
    AuxField.H_ACCURACY: -2,
    AuxField.ALTITUDE: -3,
    AuxField.V_ACCURACY: -4,
    AuxField.LAT_G: -10,
    AuxField.LON_G: -11,
    AuxField.LAT_G_NATIVE: -12,
    AuxField.LON_G_NATIVE: -13,
    AuxField.YAW_RATE: -14,
    AuxField.DISTANCE: -15,
    AuxField.RPM: -20,
    AuxField.TEMP_1: -21,
    AuxField.TEMP_2: -22,
    AuxField.EGT: -23,
    AuxField.WATER_TEMP: -24,
    AuxField.OIL_TEMP: -25,
    AuxField.THROTTLE: -26,
}

AUX_FIELD_UNIT: dict[AuxField, str] = {
    AuxField.H_ACCURACY: "m",
    AuxField.ALTITUDE: "m",
    AuxField.V_ACCURACY: "m",
    AuxField.LAT_G: "g",
    AuxField.LON_G: "g",
    AuxField.LAT_G_NATIVE: "g",
    AuxField.LON_G_NATIVE: "g",
    AuxField.RPM: "rpm",
}

# Passthrough columns are keyed by their (header) name
AuxKey = Union[AuxField, str]


def aux_key_name(key: AuxKey) -> str:
    return key.value if isinstance(key, AuxField) else key


@dataclass
class Sample:
    """
    One accepted GPS observation.

    speed_mph and speed_kph are computed from speed_mps at construction and
    must never be set independently.
    """

    t: float                 # ms since first accepted sample
    lat: float               # decimal degrees
    lon: float               # decimal degrees
    speed_mps: float
    heading: Optional[float] = None  # degrees in [0, 360)
    aux: dict[AuxKey, float] = field(default_factory=dict)
    raw_nmea: Optional[str] = field(default=None, repr=False)

    speed_mph: float = field(init=False)
    speed_kph: float = field(init=False)

    def __post_init__(self):
        self.speed_mph = self.speed_mps * MPS_TO_MPH
        self.speed_kph = self.speed_mps * MPS_TO_KPH
        if self.heading is not None:
            self.heading = normalize_heading(self.heading)

    def speed_in(self, unit: str) -> float:
        """Speed in "mps", "mph" or "kph"."""
        if unit == "mph":
            return self.speed_mph
        if unit == "kph":
            return self.speed_kph
        if unit == "mps":
            return self.speed_mps
        raise ValueError(f"Unknown speed unit: {unit}")


@dataclass
class FieldDescriptor:
    """
    Declares one auxiliary field of a decoded run.

    Only `enabled` may change after decoding (display state owned by the UI).
    """

    index: int
    name: str
    unit: Optional[str] = None
    enabled: bool = True

    @classmethod
    def for_aux(cls, aux: AuxField) -> "FieldDescriptor":
        return cls(index=AUX_FIELD_INDEX[aux], name=aux.value, unit=AUX_FIELD_UNIT.get(aux))


@dataclass(frozen=True)
class Bounds:
    """Geographic bounding box of a run."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


@dataclass
class RunMetadata:
    """Metadata about a decoded run."""

    id: str
    name: str
    source_format: str
    source_file: Optional[Path]
    recorded_at: Optional[datetime]
    duration_ms: float
    sample_count: int
    sample_rate_hz: float
    canonical_version: str = CANONICAL_VERSION


@dataclass
class TelemetryRun:
    """
    Canonical representation of a single decoded session.

    Produced once by the canonicalizer. Timing and event detection read it
    and never mutate it.
    """

    metadata: RunMetadata
    samples: list[Sample]
    fields: list[FieldDescriptor]
    bounds: Bounds

    @property
    def duration_ms(self) -> float:
        return self.metadata.duration_ms

    @property
    def start_date(self) -> Optional[datetime]:
        return self.metadata.recorded_at

    @property
    def timestamps(self) -> NDArray[np.float64]:
        return np.array([s.t for s in self.samples], dtype=np.float64)

    def speeds(self, unit: str = "mps") -> NDArray[np.float64]:
        return np.array([s.speed_in(unit) for s in self.samples], dtype=np.float64)

    def aux_series(self, key: AuxKey) -> NDArray[np.float64]:
        """Values of one auxiliary field, NaN where a sample lacks it."""
        return np.array([s.aux.get(key, np.nan) for s in self.samples], dtype=np.float64)

    def get_time_range(self) -> tuple[float, float]:
        if len(self.samples) == 0:
            return (0.0, 0.0)
        return (float(self.samples[0].t), float(self.samples[-1].t))

    def get_bounding_box(self) -> tuple[float, float, float, float]:
        """(min_lat, min_lon, max_lat, max_lon)"""
        b = self.bounds
        return (b.min_lat, b.min_lon, b.max_lat, b.max_lon)

    def sample_at_time(self, t: float) -> dict:
        """
        Get interpolated position/speed/heading at time t (ms).
        """
        if len(self.samples) == 0:
            return {
                "time": 0.0,
                "lat": np.nan,
                "lon": np.nan,
                "speed_mps": np.nan,
                "heading": None,
            }

        times = self.timestamps
        idx = int(np.searchsorted(times, t))
        if idx <= 0:
            return self._sample_at_index(0)
        if idx >= len(times):
            return self._sample_at_index(len(times) - 1)

        s0, s1 = self.samples[idx - 1], self.samples[idx]
        alpha = (t - s0.t) / (s1.t - s0.t) if s1.t != s0.t else 0.0

        if s0.heading is not None and s1.heading is not None:
            heading = normalize_heading(s0.heading + alpha * heading_delta(s1.heading, s0.heading))
        else:
            heading = s1.heading if s1.heading is not None else s0.heading

        return {
            "time": float(t),
            "lat": s0.lat + alpha * (s1.lat - s0.lat),
            "lon": s0.lon + alpha * (s1.lon - s0.lon),
            "speed_mps": s0.speed_mps + alpha * (s1.speed_mps - s0.speed_mps),
            "heading": heading,
        }

    def _sample_at_index(self, idx: int) -> dict:
        s = self.samples[idx]
        return {
            "time": float(s.t),
            "lat": s.lat,
            "lon": s.lon,
            "speed_mps": s.speed_mps,
            "heading": s.heading,
        }


@dataclass
class RunSummary:
    """Lightweight summary of a run for listing."""

    id: str
    name: str
    source_format: str
    source_file: Optional[str]
    recorded_at: Optional[str]
    duration_ms: float
    sample_count: int

    @classmethod
    def from_run(cls, run: TelemetryRun) -> "RunSummary":
        return cls(
            id=run.metadata.id,
            name=run.metadata.name,
            source_format=run.metadata.source_format,
            source_file=str(run.metadata.source_file) if run.metadata.source_file else None,
            recorded_at=run.metadata.recorded_at.isoformat() if run.metadata.recorded_at else None,
            duration_ms=run.metadata.duration_ms,
            sample_count=run.metadata.sample_count,
        )
