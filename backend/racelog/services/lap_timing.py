"""
Lap and sector timing.

All lines and sample positions are projected into one local plane centered
on the start/finish midpoint. Every consecutive sample pair is intersected
with each timing line; accepted crossings are debounced and must keep the
direction of the first accepted crossing.
"""

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from racelog.models.telemetry import Sample
from racelog.models.timing import Course, Crossing, Lap, OptimalLap, SectorTimes, TimingLine
from racelog.utils.coordinates import (
    PlanePoint,
    project_array_to_plane,
    project_to_plane,
    segment_intersection,
    side_of_line,
)

logger = logging.getLogger(__name__)


START_FINISH_DEBOUNCE_MS = 5000.0
SECTOR_DEBOUNCE_MS = 1000.0
GLITCH_SPEED_MPH = 1.0
GLITCH_MAX_RUN = 3


def find_crossings(
    samples: list[Sample],
    line: TimingLine,
    center_lat: float,
    center_lon: float,
    debounce_ms: float,
    xs: Optional[NDArray[np.float64]] = None,
    ys: Optional[NDArray[np.float64]] = None,
) -> list[Crossing]:
    """
    Debounced, direction-gated crossings of one timing line.

    Args:
        samples: Canonical sample stream
        line: Timing line to test against
        center_lat, center_lon: Shared projection center
        debounce_ms: Minimum time between accepted crossings
        xs, ys: Pre-projected sample positions (computed if omitted)
    """
    if len(samples) < 2:
        return []

    if xs is None or ys is None:
        xs, ys = _project_samples(samples, center_lat, center_lon)

    a = project_to_plane(line.a.lat, line.a.lon, center_lat, center_lon)
    b = project_to_plane(line.b.lat, line.b.lon, center_lat, center_lon)

    crossings: list[Crossing] = []
    last_time = -debounce_ms
    last_direction = 0

    for i in range(len(samples) - 1):
        p1 = PlanePoint(float(xs[i]), float(ys[i]))
        p2 = PlanePoint(float(xs[i + 1]), float(ys[i + 1]))

        fraction = segment_intersection(p1, p2, a, b)
        if fraction is None:
            continue

        s1, s2 = samples[i], samples[i + 1]
        crossing_time = s1.t + fraction * (s2.t - s1.t)
        direction = 1 if side_of_line(p2, a, b) > side_of_line(p1, a, b) else -1

        if crossing_time - last_time < debounce_ms:
            continue
        if last_direction != 0 and direction != last_direction:
            continue

        crossings.append(
            Crossing(
                sample_index=i,
                crossing_time=crossing_time,
                fraction=fraction,
                direction=direction,
            )
        )
        last_time = crossing_time
        last_direction = direction

    return crossings


def calculate_laps(samples: list[Sample], course: Course) -> list[Lap]:
    """
    Laps between consecutive start/finish crossings.

    Sector times are attached only when the course has both sector lines and
    both sector crossings fall strictly inside the lap, in order.
    """
    if len(samples) < 2:
        return []

    center = course.start_finish.midpoint
    xs, ys = _project_samples(samples, center.lat, center.lon)

    crossings = find_crossings(
        samples, course.start_finish, center.lat, center.lon, START_FINISH_DEBOUNCE_MS, xs, ys
    )

    sector_2: list[Crossing] = []
    sector_3: list[Crossing] = []
    if course.has_sectors:
        sector_2 = find_crossings(
            samples, course.sector_2, center.lat, center.lon, SECTOR_DEBOUNCE_MS, xs, ys
        )
        sector_3 = find_crossings(
            samples, course.sector_3, center.lat, center.lon, SECTOR_DEBOUNCE_MS, xs, ys
        )

    speeds_mph = np.array([s.speed_mph for s in samples], dtype=np.float64)
    speeds_kph = np.array([s.speed_kph for s in samples], dtype=np.float64)
    # Slow runs are judged over the whole stream, not per lap
    excluded = glitch_mask(speeds_mph)

    laps: list[Lap] = []
    for n, (start, end) in enumerate(zip(crossings, crossings[1:]), start=1):
        lo = start.sample_index
        hi = min(end.sample_index, len(samples) - 1)
        window_mph = speeds_mph[lo:hi + 1]
        window_kph = speeds_kph[lo:hi + 1]

        max_idx = int(np.argmax(window_mph))
        min_idx = _min_speed_index(window_mph, excluded[lo:hi + 1])

        sectors = None
        if course.has_sectors:
            sectors = _sector_times(start.crossing_time, end.crossing_time, sector_2, sector_3)

        laps.append(
            Lap(
                lap_number=n,
                start_time=start.crossing_time,
                end_time=end.crossing_time,
                lap_time_ms=end.crossing_time - start.crossing_time,
                max_speed_mph=float(window_mph[max_idx]),
                max_speed_kph=float(window_kph[max_idx]),
                min_speed_mph=float(window_mph[min_idx]),
                min_speed_kph=float(window_kph[min_idx]),
                start_index=start.sample_index,
                end_index=end.sample_index,
                sectors=sectors,
            )
        )

    logger.debug(
        "Course %r: %d start/finish crossings, %d laps", course.name, len(crossings), len(laps)
    )
    return laps


def glitch_mask(speeds_mph: NDArray[np.float64]) -> NDArray[np.bool_]:
    """
    True for samples inside a short near-zero speed run.

    A run of consecutive samples below 1 mph that is at most three samples
    long is treated as a GPS glitch.
    """
    slow = speeds_mph < GLITCH_SPEED_MPH
    mask = np.zeros(len(speeds_mph), dtype=bool)
    i = 0
    n = len(slow)
    while i < n:
        if not slow[i]:
            i += 1
            continue
        j = i
        while j < n and slow[j]:
            j += 1
        if j - i <= GLITCH_MAX_RUN:
            mask[i:j] = True
        i = j
    return mask


def _min_speed_index(window_mph: NDArray[np.float64], excluded: NDArray[np.bool_]) -> int:
    if np.all(excluded):
        return int(np.argmin(window_mph))
    candidates = np.where(excluded, np.inf, window_mph)
    return int(np.argmin(candidates))


def _sector_times(
    lap_start: float,
    lap_end: float,
    sector_2: list[Crossing],
    sector_3: list[Crossing],
) -> Optional[SectorTimes]:
    s2 = next((c.crossing_time for c in sector_2 if lap_start < c.crossing_time < lap_end), None)
    s3 = next((c.crossing_time for c in sector_3 if lap_start < c.crossing_time < lap_end), None)
    if s2 is None or s3 is None or not s2 < s3:
        return None
    return SectorTimes(s1=s2 - lap_start, s2=s3 - s2, s3=lap_end - s3)


def _project_samples(
    samples: list[Sample],
    center_lat: float,
    center_lon: float,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    lats = np.array([s.lat for s in samples], dtype=np.float64)
    lons = np.array([s.lon for s in samples], dtype=np.float64)
    return project_array_to_plane(lats, lons, center_lat, center_lon)


def calculate_optimal_lap(laps: list[Lap]) -> Optional[OptimalLap]:
    """
    Sum of the best S1, S2 and S3 over laps with complete sectors.

    A negative delta to the fastest such lap points at inconsistent sector
    detection; it is logged and returned as-is.
    """
    timed = [lap for lap in laps if lap.sectors is not None]
    if not timed:
        return None

    best_s1 = min(lap.sectors.s1 for lap in timed)
    best_s2 = min(lap.sectors.s2 for lap in timed)
    best_s3 = min(lap.sectors.s3 for lap in timed)
    optimal = best_s1 + best_s2 + best_s3
    fastest = min(lap.lap_time_ms for lap in timed)

    result = OptimalLap(
        best_s1=best_s1,
        best_s2=best_s2,
        best_s3=best_s3,
        optimal_time_ms=optimal,
        fastest_lap_ms=fastest,
        delta_ms=fastest - optimal,
    )
    # Allow float noise from summing three interpolated intervals
    if result.delta_ms < -1e-6:
        logger.warning(
            "Optimal lap %.3fms is faster than fastest lap %.3fms; sector lines may be misplaced",
            optimal,
            fastest,
        )
    return result


def format_lap_time(ms: float) -> str:
    """m:ss.sss"""
    total_ms = int(round(ms))
    minutes, rem = divmod(total_ms, 60000)
    return f"{minutes}:{rem / 1000:06.3f}"


def format_sector_time(ms: float) -> str:
    """ss.sss, or m:ss.sss from one minute up."""
    if round(ms) >= 60000:
        return format_lap_time(ms)
    return f"{round(ms) / 1000:.3f}"
