"""
Canonicalizer for decoded logs.

Derives GPS-based G-forces where the logger did not record them, builds
field descriptors, bounds and metadata, and wraps the result into the
TelemetryRun consumed by timing and event detection.
"""

import hashlib
import logging
import math
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from racelog.models.raw import RawLog
from racelog.models.telemetry import (
    AuxField,
    Bounds,
    FieldDescriptor,
    RunMetadata,
    Sample,
    TelemetryRun,
)
from racelog.utils.signal import heading_delta, moving_average

logger = logging.getLogger(__name__)


GRAVITY = 9.80665
MAX_DERIVED_G = 3.0
MIN_ACCEL_DT_S = 0.05
G_SMOOTHING_WINDOW = 5


def derive_accelerations(samples: list[Sample]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    GPS-derived lateral and longitudinal G per sample.

    Uses the neighbors i-1 and i+1 (clamped at the ends). Longitudinal G is
    the speed change over the neighbor interval; lateral G is speed times the
    heading change rate. Both are clamped to +/-3 g and are 0 where the
    neighbors are less than 50 ms apart.

    Returns:
        (lat_g, lon_g) arrays, unsmoothed
    """
    n = len(samples)
    lat_g = np.zeros(n, dtype=np.float64)
    lon_g = np.zeros(n, dtype=np.float64)

    for i in range(n):
        prev = samples[max(0, i - 1)]
        curr = samples[i]
        nxt = samples[min(n - 1, i + 1)]

        dt = (nxt.t - prev.t) / 1000.0
        if dt < MIN_ACCEL_DT_S:
            continue

        dv = nxt.speed_mps - prev.speed_mps
        yaw_rate = math.radians(heading_delta(nxt.heading, prev.heading)) / dt

        lon_g[i] = np.clip((dv / dt) / GRAVITY, -MAX_DERIVED_G, MAX_DERIVED_G)
        lat_g[i] = np.clip((curr.speed_mps * yaw_rate) / GRAVITY, -MAX_DERIVED_G, MAX_DERIVED_G)

    return lat_g, lon_g


def canonicalize_raw(
    raw: RawLog,
    name: str,
    source_file: Optional[Path] = None,
    run_id: Optional[str] = None,
) -> TelemetryRun:
    """
    Convert a decoded RawLog into a canonical TelemetryRun (v1).

    Lat G / Lon G are derived from GPS for every component the decoder did
    not supply natively, then smoothed with a 5-sample centered average.
    """
    samples = raw.samples
    if not samples:
        raise ValueError("Cannot canonicalize a log without samples")

    has_native_lat = any(AuxField.LAT_G in s.aux for s in samples)
    has_native_lon = any(AuxField.LON_G in s.aux for s in samples)

    derived: list[FieldDescriptor] = []
    if not (has_native_lat and has_native_lon):
        lat_g, lon_g = derive_accelerations(samples)
        if not has_native_lat:
            _store(samples, AuxField.LAT_G, moving_average(lat_g, G_SMOOTHING_WINDOW))
            derived.append(FieldDescriptor.for_aux(AuxField.LAT_G))
        if not has_native_lon:
            _store(samples, AuxField.LON_G, moving_average(lon_g, G_SMOOTHING_WINDOW))
            derived.append(FieldDescriptor.for_aux(AuxField.LON_G))

    declared = {d.name for d in derived}
    fields = derived + [d for d in raw.fields if d.name not in declared]

    lats = np.array([s.lat for s in samples], dtype=np.float64)
    lons = np.array([s.lon for s in samples], dtype=np.float64)
    bounds = Bounds(
        min_lat=float(lats.min()),
        max_lat=float(lats.max()),
        min_lon=float(lons.min()),
        max_lon=float(lons.max()),
    )

    duration_ms = float(samples[-1].t)
    sample_rate_hz = len(samples) / max(duration_ms / 1000.0, 0.001)

    metadata = RunMetadata(
        id=run_id or generate_run_id(name, source_file=source_file),
        name=name,
        source_format=raw.source,
        source_file=source_file,
        recorded_at=raw.start_date,
        duration_ms=duration_ms,
        sample_count=len(samples),
        sample_rate_hz=sample_rate_hz,
    )

    logger.info(
        "Canonicalized %s run %r: %d samples, %.1fs, %.1f Hz",
        raw.source,
        name,
        len(samples),
        duration_ms / 1000.0,
        sample_rate_hz,
    )

    return TelemetryRun(metadata=metadata, samples=samples, fields=fields, bounds=bounds)


def _store(samples: list[Sample], key: AuxField, values: NDArray[np.float64]):
    for sample, value in zip(samples, values):
        sample.aux[key] = float(value)


def generate_run_id(
    name: str,
    source_file: Optional[Path] = None,
    data: Optional[bytes] = None,
) -> str:
    """Stable id from file name/size/mtime, or from name + content for buffers."""
    if source_file is not None and source_file.exists():
        stat = source_file.stat()
        id_string = f"{source_file.name}_{stat.st_size}_{stat.st_mtime}".encode()
    else:
        id_string = name.encode() + b"_" + (data or b"")
    return hashlib.sha256(id_string).hexdigest()[:16]
