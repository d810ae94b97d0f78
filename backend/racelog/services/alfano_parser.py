"""
Alfano CSV decoder.

Alfano loggers (ADA app, Off Camber Data exports) write a metadata preamble
(Driver:, Track:, Date:, ...) ahead of a header row and comma or semicolon
separated data. Metadata lines can also reappear after the header.
"""

import logging
import re
from typing import Optional, Union

import numpy as np
import pandas as pd

from racelog.models.raw import RawLog
from racelog.models.telemetry import AuxField, Sample
from racelog.services.decoding import (
    KPH_TO_MPS,
    STANDARD_GRAVITY,
    DecodeError,
    SampleCollector,
    SpeedFallbackPolicy,
    bound_speed,
    present_fields,
    split_delimited,
    to_text,
)
from racelog.utils.signal import clamp

logger = logging.getLogger(__name__)


HEADER_SCAN_LINES = 50
SNIFF_CHARS = 3000
SNIFF_METADATA_LINES = 20
DELIMITERS = ",;"
DAY_MS = 86_400_000
MS_TIME_THRESHOLD = 100000
NATIVE_G_MPS2_THRESHOLD = 10.0   # larger magnitudes are m/s^2
NATIVE_G_LIMIT = 5.0

# Header tokens specific to Alfano exports
ALFANO_HEADERS = {
    "gps_latitude", "gps_longitude", "gps_speed", "gps_heading", "gps_altitude",
    "latacc", "lonacc", "lat acc", "lon acc", "lateral acc", "longitudinal acc",
    "rpm", "t1", "t2", "egt", "water", "oil", "throttle", "lap", "laptime",
}

# Accelerometer and temperature channels AiM names differently
ALFANO_ONLY_HEADERS = {
    "latacc", "lonacc", "lat acc", "lon acc", "lateral acc", "longitudinal acc",
    "t1", "t2", "water",
}

METADATA_PATTERNS = [
    re.compile(r"^\s*\"?(driver|track|championship|session|date|kart|engine)\s*:", re.IGNORECASE),
]

# Lower-cased header -> role
COLUMN_MAPPINGS = {
    "time": "time",
    "timestamp": "time",
    "elapsed": "time",
    "elapsed time": "time",
    "time (s)": "time",
    "time (ms)": "time_ms",
    "gps_latitude": "lat",
    "gps_longitude": "lon",
    "latitude": "lat",
    "longitude": "lon",
    "lat": "lat",
    "lon": "lon",
    "long": "lon",
    "gps_speed": "speed",
    "speed": "speed",
    "speed (km/h)": "speed",
    "speed (kph)": "speed",
    "velocity": "speed",
    "gps_heading": "heading",
    "heading": "heading",
    "course": "heading",
    "gps_altitude": "altitude",
    "altitude": "altitude",
    "height": "altitude",
    "alt": "altitude",
    "latacc": "lat_g",
    "lat acc": "lat_g",
    "lateral acc": "lat_g",
    "lateral acceleration": "lat_g",
    "lat g": "lat_g",
    "lateral g": "lat_g",
    "lonacc": "lon_g",
    "lon acc": "lon_g",
    "longitudinal acc": "lon_g",
    "longitudinal acceleration": "lon_g",
    "lon g": "lon_g",
    "longitudinal g": "lon_g",
    "rpm": "rpm",
    "engine rpm": "rpm",
    "t1": "temp1",
    "t2": "temp2",
    "temp1": "temp1",
    "temp2": "temp2",
    "egt": "egt",
    "exhaust": "egt",
    "water": "water_temp",
    "water temp": "water_temp",
    "oil": "oil_temp",
    "oil temp": "oil_temp",
    "throttle": "throttle",
    "tps": "throttle",
    "distance": "distance",
    "satellites": "satellites",
    "sats": "satellites",
}

AUX_COLUMNS = {
    "altitude": AuxField.ALTITUDE,
    "rpm": AuxField.RPM,
    "temp1": AuxField.TEMP_1,
    "temp2": AuxField.TEMP_2,
    "egt": AuxField.EGT,
    "water_temp": AuxField.WATER_TEMP,
    "oil_temp": AuxField.OIL_TEMP,
    "throttle": AuxField.THROTTLE,
    "distance": AuxField.DISTANCE,
    "satellites": AuxField.SATELLITES,
}

# Channel names that mark an AiM export rather than an Alfano one
AIM_INDICATORS = (
    "gps_speed", "gps_lat", "gps_long", "gps_latitude", "gps_longitude",
    "acc_lat", "acc_long", "lateral g", "longitudinal g", "t_h2o", "t_egt", "gps_nsat",
)


def is_metadata_line(line: str) -> bool:
    return any(p.match(line) for p in METADATA_PATTERNS)


def native_g(value: float) -> float:
    """Accelerometer reading in g, converting from m/s^2 when it looks like one."""
    if abs(value) > NATIVE_G_MPS2_THRESHOLD:
        value = value / STANDARD_GRAVITY
    return clamp(value, -NATIVE_G_LIMIT, NATIVE_G_LIMIT)


def map_header(cells: list[str]) -> dict[str, int]:
    column_map: dict[str, int] = {}
    for j, cell in enumerate(cells):
        role = COLUMN_MAPPINGS.get(cell.lower().strip())
        if role is not None:
            column_map[role] = j
    return column_map


class AlfanoDecoder:
    """Decoder for Alfano metadata-preamble CSV exports."""

    name = "alfano"
    binary = False
    speed_policy = SpeedFallbackPolicy.DROP

    def sniff(self, data: Union[bytes, str]) -> bool:
        prefix = to_text(data[:SNIFF_CHARS])
        lowered = prefix.lower()
        if "[header]" in lowered or "[data]" in lowered:
            return False

        lines = [line for line in prefix.splitlines() if line.strip()]
        if any(is_metadata_line(line) for line in lines[:SNIFF_METADATA_LINES]):
            return True

        for line in lines[:HEADER_SCAN_LINES]:
            cells = [c.lower() for c in split_delimited(line, DELIMITERS)]
            if not any(c in ALFANO_HEADERS for c in cells):
                continue
            # The first header-like row decides
            if any(c in ALFANO_ONLY_HEADERS for c in cells):
                return True
            aim_hits = sum(1 for indicator in AIM_INDICATORS if indicator in line.lower())
            return aim_hits < 2
        return False

    def decode(self, data: Union[bytes, str]) -> RawLog:
        lines = to_text(data).splitlines()

        header_idx, column_map = self._find_header(lines)
        if header_idx is None:
            raise DecodeError("Could not find header row in Alfano CSV")
        if "lat" not in column_map or "lon" not in column_map:
            raise DecodeError("Alfano CSV missing required GPS columns (GPS_Lat, GPS_Long)")

        df = self._read_rows(lines[header_idx + 1:], column_map)
        collector = SampleCollector(self.name, "Alfano")
        base_ms: Optional[float] = None

        for row in df.itertuples(index=False):
            lat, lon = row.lat, row.lon
            if np.isnan(lat) or np.isnan(lon):
                collector.reject()
                continue

            time_ms = self._row_time_ms(row)
            t = 0.0 if base_ms is None else time_ms - base_ms
            if t < 0:
                t += DAY_MS

            if not collector.position_ok(lat, lon, t):
                continue

            speed_kph = row.speed if not np.isnan(row.speed) else 0.0
            speed = bound_speed(speed_kph * KPH_TO_MPS, collector.last, self.speed_policy)
            if speed is None:
                collector.reject()
                continue

            aux = {}
            if not np.isnan(row.lat_g):
                aux[AuxField.LAT_G_NATIVE] = native_g(row.lat_g)
            if not np.isnan(row.lon_g):
                aux[AuxField.LON_G_NATIVE] = native_g(row.lon_g)
            for role, aux_field in AUX_COLUMNS.items():
                value = getattr(row, role)
                if not np.isnan(value):
                    if role == "rpm" and value < 0:
                        continue
                    aux[aux_field] = float(value)

            if base_ms is None:
                base_ms = time_ms
            collector.add(
                Sample(
                    t=t,
                    lat=float(lat),
                    lon=float(lon),
                    speed_mps=speed,
                    heading=None if np.isnan(row.heading) else float(row.heading),
                    aux=aux,
                )
            )

        candidates = [AuxField.LAT_G_NATIVE, AuxField.LON_G_NATIVE, *AUX_COLUMNS.values()]
        return collector.finish(fields=present_fields(collector.samples, candidates))

    def _find_header(self, lines: list[str]) -> tuple[Optional[int], dict[str, int]]:
        """First row with >= 2 known columns, one of them latitude or speed."""
        scanned = 0
        for i, line in enumerate(lines):
            if not line.strip():
                continue
            scanned += 1
            if scanned > HEADER_SCAN_LINES:
                break
            column_map = map_header(split_delimited(line.strip(), DELIMITERS))
            if len(column_map) >= 2 and ("lat" in column_map or "speed" in column_map):
                return i, column_map
        return None, {}

    def _read_rows(self, lines: list[str], column_map: dict[str, int]) -> pd.DataFrame:
        """Data rows as a numeric frame with one column per role (NaN if absent)."""
        rows = []
        for line in lines:
            line = line.strip()
            if not line or is_metadata_line(line):
                continue
            cells = split_delimited(line, DELIMITERS)
            if len(cells) < 3:
                continue
            rows.append(cells)

        roles = ["time", "time_ms", "lat", "lon", "speed", "heading", "lat_g", "lon_g", *AUX_COLUMNS]
        frame = {}
        for role in roles:
            idx = column_map.get(role)
            values = [cells[idx] if idx is not None and idx < len(cells) else None for cells in rows]
            frame[role] = pd.to_numeric(pd.Series(values, dtype=object), errors="coerce").astype(np.float64)
        return pd.DataFrame(frame, columns=roles)

    def _row_time_ms(self, row) -> float:
        if not np.isnan(row.time_ms):
            return float(row.time_ms)
        if not np.isnan(row.time):
            # Large values are already milliseconds
            return float(row.time) if row.time > MS_TIME_THRESHOLD else float(row.time) * 1000.0
        return 0.0
