"""
Shared decoder contract and row-level sanity filters.

Every decoder turns an already-resident buffer into a RawLog or raises a
single DecodeError once scanning is finished. Rows that fail a field, range,
checksum or plausibility check are skipped and counted, never surfaced.
"""

import logging
from enum import Enum
from typing import Optional, Protocol, Union

from racelog.models.raw import RawLog
from racelog.models.telemetry import FieldDescriptor, Sample
from racelog.utils.coordinates import haversine_distance, is_valid_coordinate

logger = logging.getLogger(__name__)


MAX_SPEED_MPS = 150.0           # ~335 mph, anything above is a decode artifact
TELEPORT_WINDOW_S = 10.0        # jumps are only judged between fixes closer than this
TELEPORT_MIN_DISTANCE_M = 100.0
TELEPORT_NOMINAL_STEP_M = 50.0  # allowed movement per nominal 25 Hz update
TELEPORT_NOMINAL_DT_S = 0.04
KNOTS_TO_MPS = 0.514444
KPH_TO_MPS = 1 / 3.6
STANDARD_GRAVITY = 9.80665


class DecodeError(ValueError):
    """Terminal failure to decode a whole buffer."""


class SpeedFallbackPolicy(Enum):
    """What a decoder does with a speed above MAX_SPEED_MPS."""

    DROP = "drop"                              # discard the sample
    SUBSTITUTE_PREVIOUS = "substitute_previous"  # keep it with the last valid speed


class LogDecoder(Protocol):
    """Decoder interface for one log format."""

    name: str
    binary: bool
    speed_policy: SpeedFallbackPolicy

    def sniff(self, data: Union[bytes, str]) -> bool:
        ...

    def decode(self, data: Union[bytes, str]) -> RawLog:
        ...


def teleport_limit(dt_s: float) -> float:
    """Largest plausible jump between fixes dt_s apart (meters, or m/s below one second)."""
    return max(TELEPORT_MIN_DISTANCE_M, TELEPORT_NOMINAL_STEP_M * (dt_s / TELEPORT_NOMINAL_DT_S))


def is_teleport(prev: Sample, lat: float, lon: float, t: float) -> bool:
    """
    True if moving from prev to (lat, lon) at t (ms) is an implausible jump.

    For gaps of a second or more the limit bounds the distance; for shorter
    gaps it bounds the implied speed, so a 20 m hop in 40 ms is rejected.
    """
    dt_s = (t - prev.t) / 1000.0
    if not 0 < dt_s < TELEPORT_WINDOW_S:
        return False
    distance = haversine_distance(prev.lat, prev.lon, lat, lon)
    return distance > teleport_limit(dt_s) * min(1.0, dt_s)


def bound_speed(
    speed_mps: float,
    previous: Optional[Sample],
    policy: SpeedFallbackPolicy,
) -> Optional[float]:
    """
    Apply the speed sanity bound.

    Returns the speed to store, or None when the sample must be dropped.
    """
    if speed_mps <= MAX_SPEED_MPS:
        return speed_mps
    if policy is SpeedFallbackPolicy.DROP:
        return None
    return previous.speed_mps if previous is not None else 0.0


class SampleCollector:
    """
    Accumulates accepted samples for one decode pass.

    Applies the coordinate range check and the teleportation filter against
    the previously accepted sample.
    """

    def __init__(self, source: str, label: Optional[str] = None):
        self.source = source
        self.label = label or source.upper()
        self.samples: list[Sample] = []
        self.rejected = 0

    @property
    def last(self) -> Optional[Sample]:
        return self.samples[-1] if self.samples else None

    def position_ok(self, lat: float, lon: float, t: float) -> bool:
        """Range and teleport checks; counts the rejection on failure."""
        if not is_valid_coordinate(lat, lon):
            self.rejected += 1
            return False
        prev = self.last
        if prev is not None and is_teleport(prev, lat, lon, t):
            logger.debug(
                "%s teleportation rejected: %.0fm in %.3fs",
                self.label,
                haversine_distance(prev.lat, prev.lon, lat, lon),
                (t - prev.t) / 1000.0,
            )
            self.rejected += 1
            return False
        return True

    def reject(self):
        self.rejected += 1

    def add(self, sample: Sample):
        self.samples.append(sample)

    def finish(self, **kwargs) -> RawLog:
        """Build the RawLog, or fail if nothing survived."""
        if not self.samples:
            raise DecodeError(f"No valid GPS data found in {self.label} file")
        logger.info(
            "Decoded %s log: %d samples accepted, %d rejected",
            self.label,
            len(self.samples),
            self.rejected,
        )
        return RawLog(
            source=self.source,
            samples=self.samples,
            rejected_count=self.rejected,
            **kwargs,
        )


def to_text(data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8-sig", errors="replace")
    return data.lstrip("\ufeff")


def parse_float(value: Optional[str]) -> Optional[float]:
    """Float from a text cell, or None when blank/unparseable/non-finite."""
    if value is None:
        return None
    value = value.strip().strip('"')
    if not value:
        return None
    try:
        result = float(value)
    except ValueError:
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def present_fields(samples: list[Sample], candidates) -> list[FieldDescriptor]:
    """Descriptors for the known aux fields that at least one sample carries."""
    return [
        FieldDescriptor.for_aux(aux)
        for aux in candidates
        if any(aux in s.aux for s in samples)
    ]


def split_delimited(line: str, delimiters: str = ",") -> list[str]:
    """Split a CSV line on any of the delimiters, honoring double quotes."""
    cells = []
    current = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch in delimiters and not in_quotes:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    cells.append("".join(current).strip())
    return cells
