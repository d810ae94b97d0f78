"""
NMEA datalog decoder.

Each line is tab-delimited: field 0 holds an NMEA sentence (bare or quoted),
any further fields are auxiliary channels, named by an optional header row.
Only RMC sentences carry position, validity and speed together, so they are
the only sentences decoded.
"""

import logging
from datetime import datetime, timezone
from functools import reduce
from typing import NamedTuple, Optional, Union

from racelog.models.raw import RawLog
from racelog.models.telemetry import FieldDescriptor, Sample
from racelog.services.decoding import (
    KNOTS_TO_MPS,
    MAX_SPEED_MPS,
    DecodeError,
    SampleCollector,
    SpeedFallbackPolicy,
    bound_speed,
    parse_float,
    to_text,
)
from racelog.utils.coordinates import haversine_distance

logger = logging.getLogger(__name__)


RMC_TYPES = ("$GPRMC", "$GNRMC")
DAY_MS = 86_400_000
DAY_WRAP_THRESHOLD_MS = 43_200_000   # a jump back of more than 12 h is a midnight wrap
MIN_SPEED_DT_S = 0.05
SNIFF_LINES = 50


class RmcFix(NamedTuple):
    time_ms: float             # ms since midnight UTC
    lat: float
    lon: float
    speed_mps: Optional[float]
    course: Optional[float]
    date: Optional[tuple[int, int, int]]   # (year, month, day)


def split_fields(line: str) -> list[str]:
    """Split a tab-delimited line and strip surrounding quotes from each cell."""
    fields = []
    for cell in line.split("\t"):
        cell = cell.strip()
        if len(cell) >= 2 and cell.startswith('"') and cell.endswith('"'):
            cell = cell[1:-1]
        fields.append(cell)
    return fields


def nmea_checksum(body: str) -> int:
    """XOR of every character between '$' and '*'."""
    return reduce(lambda acc, ch: acc ^ ord(ch), body, 0)


def verify_checksum(sentence: str) -> bool:
    """True when the sentence has no checksum or a matching one."""
    if "*" not in sentence:
        return True
    body, _, given = sentence[1:].partition("*")
    given = given.strip()[:2]
    try:
        return nmea_checksum(body) == int(given, 16)
    except ValueError:
        return False


def parse_nmea_coordinate(value: str, hemisphere: str, degree_digits: int) -> Optional[float]:
    """Degrees-minutes (ddmm.mmmm / dddmm.mmmm) to signed decimal degrees."""
    if len(value) < degree_digits + 2:
        return None
    try:
        degrees = int(value[:degree_digits])
        minutes = float(value[degree_digits:])
    except ValueError:
        return None
    result = degrees + minutes / 60.0
    if hemisphere in ("S", "W"):
        result = -result
    return result


def parse_nmea_time(value: str) -> Optional[float]:
    """hhmmss.sss to ms since midnight."""
    if len(value) < 6:
        return None
    try:
        hours = int(value[0:2])
        minutes = int(value[2:4])
        seconds = float(value[4:])
    except ValueError:
        return None
    return (hours * 3600 + minutes * 60) * 1000 + round(seconds * 1000)


def parse_nmea_date(value: str) -> Optional[tuple[int, int, int]]:
    """ddmmyy to (year, month, day)."""
    if len(value) < 6 or not value[:6].isdigit():
        return None
    return (2000 + int(value[4:6]), int(value[2:4]), int(value[0:2]))


def parse_rmc(sentence: str) -> Optional[RmcFix]:
    """
    Decode a valid-fix RMC sentence.

    $GPRMC,hhmmss.ss,A,llll.ll,a,yyyyy.yy,a,x.x,x.x,ddmmyy,...
    Returns None for other sentence types, void fixes and malformed fields.
    """
    sentence = sentence.strip().strip('"').strip()
    if not verify_checksum(sentence):
        return None

    parts = sentence.split("*")[0].split(",")
    if len(parts) < 10 or parts[0] not in RMC_TYPES:
        return None
    if parts[2] != "A":
        return None

    time_ms = parse_nmea_time(parts[1])
    lat = parse_nmea_coordinate(parts[3], parts[4], 2)
    lon = parse_nmea_coordinate(parts[5], parts[6], 3)
    if time_ms is None or lat is None or lon is None:
        return None

    knots = parse_float(parts[7])
    return RmcFix(
        time_ms=time_ms,
        lat=lat,
        lon=lon,
        speed_mps=knots * KNOTS_TO_MPS if knots is not None else None,
        course=parse_float(parts[8]),
        date=parse_nmea_date(parts[9]),
    )


def speed_from_positions(prev: Sample, lat: float, lon: float, t: float) -> Optional[float]:
    """Speed implied by two fixes, None if too close in time or implausible."""
    dt_s = (t - prev.t) / 1000.0
    if dt_s < MIN_SPEED_DT_S:
        return None
    speed = haversine_distance(prev.lat, prev.lon, lat, lon) / dt_s
    if speed > MAX_SPEED_MPS:
        return None
    return speed


class NmeaDecoder:
    """Decoder for tab-delimited NMEA datalogs."""

    name = "nmea"
    binary = False
    speed_policy = SpeedFallbackPolicy.SUBSTITUTE_PREVIOUS

    def sniff(self, data: Union[bytes, str]) -> bool:
        text = to_text(data[:4096] if isinstance(data, bytes) else data[:4096])
        for line in text.splitlines()[:SNIFF_LINES]:
            first = split_fields(line.strip())[0] if line.strip() else ""
            if first.startswith("$G") and "," in first:
                return True
        return False

    def decode(self, data: Union[bytes, str]) -> RawLog:
        lines = [line for line in to_text(data).splitlines() if line.strip()]
        if not lines:
            raise DecodeError("Empty file")

        header: list[str] = []
        first = lines[0].lstrip()
        if not first.startswith("$") and not first.startswith('"$'):
            header = split_fields(lines[0])
            lines = lines[1:]

        collector = SampleCollector(self.name, "NMEA")
        descriptors: Optional[list[FieldDescriptor]] = None
        base_ms: Optional[float] = None
        last_ms: Optional[float] = None
        day_offset = 0.0
        start_date: Optional[datetime] = None

        for line in lines:
            fields = split_fields(line.strip())
            fix = parse_rmc(fields[0])
            if fix is None:
                collector.reject()
                continue

            current_ms = fix.time_ms + day_offset
            if last_ms is not None and current_ms < last_ms - DAY_WRAP_THRESHOLD_MS:
                day_offset += DAY_MS
                current_ms = fix.time_ms + day_offset

            t = 0.0 if base_ms is None else current_ms - base_ms
            if not collector.position_ok(fix.lat, fix.lon, t):
                continue

            prev = collector.last
            speed = fix.speed_mps
            if (speed is None or speed > MAX_SPEED_MPS) and prev is not None:
                speed = speed_from_positions(prev, fix.lat, fix.lon, t)
            if speed is None:
                speed = prev.speed_mps if prev is not None else 0.0
            speed = bound_speed(speed, prev, self.speed_policy)

            if descriptors is None:
                descriptors = self._passthrough_descriptors(fields, header)

            last_ms = current_ms
            if base_ms is None:
                base_ms = current_ms
                start_date = self._start_date(fix)

            aux: dict = {}
            for descriptor in descriptors:
                if descriptor.index < len(fields):
                    value = parse_float(fields[descriptor.index])
                    if value is not None:
                        aux[descriptor.name] = value

            collector.add(
                Sample(
                    t=t,
                    lat=fix.lat,
                    lon=fix.lon,
                    speed_mps=speed,
                    heading=fix.course,
                    aux=aux,
                    raw_nmea=fields[0],
                )
            )

        return collector.finish(fields=descriptors or [], start_date=start_date)

    def _passthrough_descriptors(self, fields: list[str], header: list[str]) -> list[FieldDescriptor]:
        """One descriptor per numeric auxiliary column of the first accepted row."""
        descriptors = []
        for j in range(1, len(fields)):
            if parse_float(fields[j]) is None:
                continue
            name = header[j] if j < len(header) and header[j] else f"Field {j}"
            descriptors.append(FieldDescriptor(index=j, name=name))
        return descriptors

    def _start_date(self, fix: RmcFix) -> Optional[datetime]:
        if fix.date is None:
            return None
        year, month, day = fix.date
        seconds = fix.time_ms / 1000.0
        try:
            return datetime(
                year, month, day,
                int(seconds // 3600), int(seconds % 3600 // 60), int(seconds % 60),
                tzinfo=timezone.utc,
            )
        except ValueError:
            return None
