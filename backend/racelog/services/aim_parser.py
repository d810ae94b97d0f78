"""
AiM (Race Studio / MyChron) CSV decoder.

The header row is recognized by AiM channel names; the delimiter is chosen
by counting candidates on that row. Time and speed units are inferred once,
from the first accepted data row.
"""

import io
import logging
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


HEADER_SCAN_LINES = 10
SNIFF_LINES = 5
SECONDS_TIME_LIMIT = 10000      # first time value below this means seconds
KPH_SPEED_FLOOR = 50.0          # first speed above this means km/h
MPS_SPEED_CEILING = 30.0        # first speed in (0, this) means m/s
NATIVE_G_MPS2_THRESHOLD = 5.0
NATIVE_G_LIMIT = 5.0

HEADER_INDICATORS = (
    "gps_speed",
    "gps_lat",
    "gps_long",
    "gps_latitude",
    "gps_longitude",
    "acc_lat",
    "acc_long",
    "lateral g",
    "longitudinal g",
    "t_h2o",
    "t_egt",
    "gps_nsat",
)

# Role -> normalized header names, in order of preference
ALIASES = {
    "time": ("time", "t"),
    "lat": ("gps_lat", "gps_latitude", "latitude", "lat"),
    "lon": ("gps_long", "gps_longitude", "longitude", "lon"),
    "speed": ("gps_speed", "speed"),
    "heading": ("gps_heading", "gps_course", "heading", "course"),
    "altitude": ("gps_altitude", "altitude", "gps_alt"),
    "lat_g": ("acc_lat", "lateral_g", "lat_g", "gy"),
    "lon_g": ("acc_long", "longitudinal_g", "lon_g", "long_g", "gx"),
    "rpm": ("rpm", "engine_rpm"),
    "water_temp": ("t_h2o", "water_temp", "coolant"),
    "egt": ("t_egt", "egt", "exhaust_temp"),
    "throttle": ("throttle", "tps", "throttle_pos"),
    "satellites": ("gps_nsat", "satellites", "nsat"),
}

AUX_COLUMNS = {
    "altitude": AuxField.ALTITUDE,
    "rpm": AuxField.RPM,
    "water_temp": AuxField.WATER_TEMP,
    "egt": AuxField.EGT,
    "throttle": AuxField.THROTTLE,
    "satellites": AuxField.SATELLITES,
}


def count_indicators(line: str) -> int:
    lowered = line.lower()
    return sum(1 for indicator in HEADER_INDICATORS if indicator in lowered)


def detect_delimiter(line: str) -> str:
    commas = line.count(",")
    semicolons = line.count(";")
    tabs = line.count("\t")
    if tabs > commas and tabs > semicolons:
        return "\t"
    if semicolons > commas:
        return ";"
    return ","


def normalize_header(name: str) -> str:
    name = "_".join(name.strip().lower().split())
    return name.replace("gps_latitude", "gps_lat").replace("gps_longitude", "gps_long")


def resolve_columns(headers: list[str]) -> dict[str, int]:
    """Role -> position of the first header matching the role's alias chain."""
    by_normalized: dict[str, int] = {}
    for j, header in enumerate(headers):
        by_normalized.setdefault(normalize_header(header), j)
    resolved = {}
    for role, aliases in ALIASES.items():
        for alias in aliases:
            if alias in by_normalized:
                resolved[role] = by_normalized[alias]
                break
    return resolved


def native_g(value: float) -> float:
    if abs(value) > NATIVE_G_MPS2_THRESHOLD:
        value = value / STANDARD_GRAVITY
    return clamp(value, -NATIVE_G_LIMIT, NATIVE_G_LIMIT)


class AimDecoder:
    """Decoder for AiM channel-header CSV exports."""

    name = "aim"
    binary = False
    speed_policy = SpeedFallbackPolicy.DROP

    def sniff(self, data: Union[bytes, str]) -> bool:
        text = to_text(data[:4096])
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) < 2:
            return False
        return any(count_indicators(line) >= 2 for line in lines[:SNIFF_LINES])

    def decode(self, data: Union[bytes, str]) -> RawLog:
        lines = [line for line in to_text(data).splitlines() if line.strip()]
        if len(lines) < 2:
            raise DecodeError("Empty file")

        header_idx = self._find_header(lines)
        if header_idx is None:
            raise DecodeError("Could not find header row in AiM CSV")

        delimiter = detect_delimiter(lines[header_idx])
        header = split_delimited(lines[header_idx], delimiter)
        columns = resolve_columns(header)
        if "lat" not in columns or "lon" not in columns:
            raise DecodeError("AiM CSV missing required GPS columns (GPS_Lat, GPS_Long)")

        df = self._read_frame(lines[header_idx + 1:], delimiter, len(header))
        numeric = pd.DataFrame(
            {
                role: pd.to_numeric(df[columns[role]], errors="coerce") if role in columns
                else pd.Series(np.nan, index=df.index)
                for role in ALIASES
            }
        ).astype(np.float64)

        collector = SampleCollector(self.name, "AiM")
        base_time: Optional[float] = None
        time_scale = 1000.0
        speed_scale = KPH_TO_MPS

        for row in numeric.itertuples(index=False):
            if np.isnan(row.lat) or np.isnan(row.lon):
                collector.reject()
                continue

            t = 0.0
            row_base, row_scale = base_time, time_scale
            if not np.isnan(row.time):
                if row_base is None:
                    row_scale = 1000.0 if row.time < SECONDS_TIME_LIMIT else 1.0
                    row_base = float(row.time)
                t = (float(row.time) - row_base) * row_scale

            if not collector.position_ok(float(row.lat), float(row.lon), t):
                continue

            speed = 0.0
            if not np.isnan(row.speed):
                if not collector.samples:
                    speed_scale = self._speed_scale(float(row.speed), speed_scale)
                speed = float(row.speed) * speed_scale
            bounded = bound_speed(speed, collector.last, self.speed_policy)
            if bounded is None:
                collector.reject()
                continue

            aux = {}
            if not np.isnan(row.lat_g):
                aux[AuxField.LAT_G] = native_g(float(row.lat_g))
            if not np.isnan(row.lon_g):
                aux[AuxField.LON_G] = native_g(float(row.lon_g))
            for role, aux_field in AUX_COLUMNS.items():
                value = getattr(row, role)
                if not np.isnan(value):
                    aux[aux_field] = float(value)

            # Time base is the first accepted sample
            base_time, time_scale = row_base, row_scale
            collector.add(
                Sample(
                    t=t,
                    lat=float(row.lat),
                    lon=float(row.lon),
                    speed_mps=bounded,
                    heading=None if np.isnan(row.heading) else float(row.heading),
                    aux=aux,
                )
            )

        candidates = [AuxField.LAT_G, AuxField.LON_G, *AUX_COLUMNS.values()]
        return collector.finish(fields=present_fields(collector.samples, candidates))

    def _find_header(self, lines: list[str]) -> Optional[int]:
        for i, line in enumerate(lines[:HEADER_SCAN_LINES]):
            lowered = line.lower()
            if count_indicators(line) >= 2:
                return i
            if "time" in lowered and ("gps" in lowered or "acc" in lowered):
                return i
        return None

    def _read_frame(self, lines: list[str], delimiter: str, width: int) -> pd.DataFrame:
        """Body rows as strings, one positional column per header cell."""
        if not lines:
            return pd.DataFrame(columns=list(range(width)), dtype=object)
        return pd.read_csv(
            io.StringIO("\n".join(lines)),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            quotechar='"',
            skipinitialspace=True,
            on_bad_lines="skip",
            engine="python",
        )

    def _speed_scale(self, first_speed: float, default: float) -> float:
        if first_speed > KPH_SPEED_FLOOR:
            return KPH_TO_MPS
        if 0 < first_speed < MPS_SPEED_CEILING:
            return 1.0
        return default
