"""
Racelogic VBOX (.vbo) decoder.

VBO files are sectioned text:
- [header] with metadata (and usually a "File created on" line above it)
- [column names] with one space-delimited row of channel names
- [data] with space-delimited rows

Velocity is km/h. Coordinates are decimal degrees or packed DDDMM.MMMMM.
"""

import logging
import math
import re
from datetime import datetime
from typing import Optional, Union

from racelog.models.raw import RawLog
from racelog.models.telemetry import AuxField, Sample
from racelog.services.decoding import (
    KPH_TO_MPS,
    DecodeError,
    SampleCollector,
    SpeedFallbackPolicy,
    bound_speed,
    parse_float,
    present_fields,
    to_text,
)

logger = logging.getLogger(__name__)


SNIFF_CHARS = 2000
SECTION_MARKERS = ("[header]", "[column names]", "[data]")
DAY_MS = 86_400_000
HHMMSS_THRESHOLD = 100000

# Lower-cased column name -> role
KNOWN_COLUMNS = {
    "sats": "sats",
    "satellites": "sats",
    "time": "time",
    "lat": "lat",
    "latitude": "lat",
    "long": "lon",
    "lon": "lon",
    "longitude": "lon",
    "velocity": "velocity",
    "speed": "velocity",
    "velocity_kmh": "velocity",
    "heading": "heading",
    "height": "height",
    "altitude": "height",
    "long_accel": "lon_accel",
    "longacc": "lon_accel",
    "lat_accel": "lat_accel",
    "latacc": "lat_accel",
    "lateral_accel": "lat_accel",
    "longitudinal_accel": "lon_accel",
    "yaw_rate": "yaw_rate",
    "yawrate": "yaw_rate",
    "distance": "distance",
}

# Legacy VBOX column order when names are missing or unknown
POSITIONAL_COLUMNS = ("sats", "time", "lat", "lon", "velocity", "heading", "height")
MIN_POSITIONAL_FIELDS = 5

AUX_COLUMNS = {
    "sats": AuxField.SATELLITES,
    "height": AuxField.ALTITUDE,
    "lat_accel": AuxField.LAT_G_NATIVE,
    "lon_accel": AuxField.LON_G_NATIVE,
    "yaw_rate": AuxField.YAW_RATE,
    "distance": AuxField.DISTANCE,
}

CREATED_PATTERN = re.compile(
    r"File created on\s+(\d{1,2})/(\d{1,2})/(\d{4})\s+at\s+(\d{1,2}):(\d{2}):(\d{2})",
    re.IGNORECASE,
)


def parse_vbo_time(value: str) -> Optional[float]:
    """
    VBO time to ms since midnight.

    Values >= 100000 are hhmmss.sss, smaller values are seconds since
    midnight.
    """
    num = parse_float(value)
    if num is None:
        return None
    if num < HHMMSS_THRESHOLD:
        return num * 1000.0

    whole, _, fraction = value.strip().partition(".")
    whole = whole.zfill(6)
    try:
        hours = int(whole[:-4])
        minutes = int(whole[-4:-2])
        seconds = float(f"{whole[-2:]}.{fraction or '0'}")
    except ValueError:
        return None
    return (hours * 3600 + minutes * 60 + seconds) * 1000.0


def parse_vbo_coordinate(value: str) -> Optional[float]:
    """Decimal degrees, or packed degrees + decimal minutes when |value| > 180."""
    num = parse_float(value)
    if num is None:
        return None
    if abs(num) <= 180:
        return num
    sign = -1.0 if num < 0 else 1.0
    magnitude = abs(num)
    degrees = math.floor(magnitude / 100)
    minutes = magnitude - degrees * 100
    return sign * (degrees + minutes / 60.0)


def parse_created_date(lines: list[str]) -> Optional[datetime]:
    for line in lines:
        match = CREATED_PATTERN.search(line)
        if match:
            day, month, year, hour, minute, second = (int(g) for g in match.groups())
            try:
                return datetime(year, month, day, hour, minute, second)
            except ValueError:
                return None
    return None


class VboDecoder:
    """Decoder for Racelogic VBOX sectioned text logs."""

    name = "vbo"
    binary = False
    speed_policy = SpeedFallbackPolicy.DROP

    def sniff(self, data: Union[bytes, str]) -> bool:
        prefix = to_text(data[:SNIFF_CHARS]).lower()
        return any(marker in prefix for marker in SECTION_MARKERS)

    def decode(self, data: Union[bytes, str]) -> RawLog:
        lines = to_text(data).splitlines()

        column_names_idx = None
        data_idx = None
        for i, line in enumerate(lines):
            marker = line.strip().lower()
            if marker == "[column names]":
                column_names_idx = i
            elif marker == "[data]":
                data_idx = i
                break

        if data_idx is None:
            raise DecodeError("No [data] section found in VBO file")

        column_map: dict[str, int] = {}
        if column_names_idx is not None:
            header = next((l for l in lines[column_names_idx + 1:data_idx] if l.strip()), "")
            column_map = self._map_columns(header.split())

        collector = SampleCollector(self.name, "VBO")
        base_ms: Optional[float] = None

        for line in lines[data_idx + 1:]:
            line = line.strip()
            if not line or line.startswith("["):
                continue
            fields = line.split()
            if len(fields) < 3:
                continue

            if "lat" not in column_map or "lon" not in column_map:
                if len(fields) < MIN_POSITIONAL_FIELDS:
                    collector.reject()
                    continue
                column_map = {
                    role: i for i, role in enumerate(POSITIONAL_COLUMNS) if i < len(fields)
                }
                logger.debug("VBO column names not recognized, using positional layout")

            sample = self._parse_row(fields, column_map, collector, base_ms)
            if sample is None:
                continue
            if base_ms is None:
                base_ms = self._row_time(fields, column_map) or 0.0
            collector.add(sample)

        candidates = [AuxField.SATELLITES, AuxField.ALTITUDE, AuxField.LAT_G_NATIVE,
                      AuxField.LON_G_NATIVE, AuxField.YAW_RATE, AuxField.DISTANCE]
        return collector.finish(
            fields=present_fields(collector.samples, candidates),
            start_date=parse_created_date(lines[:data_idx]),
        )

    def _map_columns(self, names: list[str]) -> dict[str, int]:
        column_map: dict[str, int] = {}
        for i, name in enumerate(names):
            role = KNOWN_COLUMNS.get(name.lower())
            if role is not None and role not in column_map:
                column_map[role] = i
        return column_map

    def _cell(self, fields: list[str], column_map: dict[str, int], role: str) -> Optional[str]:
        idx = column_map.get(role)
        if idx is None or idx >= len(fields):
            return None
        return fields[idx]

    def _row_time(self, fields: list[str], column_map: dict[str, int]) -> Optional[float]:
        cell = self._cell(fields, column_map, "time")
        return parse_vbo_time(cell) if cell is not None else None

    def _parse_row(
        self,
        fields: list[str],
        column_map: dict[str, int],
        collector: SampleCollector,
        base_ms: Optional[float],
    ) -> Optional[Sample]:
        lat = parse_vbo_coordinate(self._cell(fields, column_map, "lat") or "")
        lon = parse_vbo_coordinate(self._cell(fields, column_map, "lon") or "")
        if lat is None or lon is None:
            collector.reject()
            return None

        time_ms = self._row_time(fields, column_map) or 0.0
        t = 0.0 if base_ms is None else time_ms - base_ms
        if t < 0:
            t += DAY_MS

        if not collector.position_ok(lat, lon, t):
            return None

        speed_kph = parse_float(self._cell(fields, column_map, "velocity")) or 0.0
        speed = bound_speed(speed_kph * KPH_TO_MPS, collector.last, self.speed_policy)
        if speed is None:
            collector.reject()
            return None

        aux = {}
        for role, aux_field in AUX_COLUMNS.items():
            value = parse_float(self._cell(fields, column_map, role))
            if value is not None:
                aux[aux_field] = value

        return Sample(
            t=t,
            lat=lat,
            lon=lon,
            speed_mps=speed,
            heading=parse_float(self._cell(fields, column_map, "heading")),
            aux=aux,
        )
