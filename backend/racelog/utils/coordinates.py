"""
Geometry utilities for GPS positions and timing lines.

Great-circle distance for sanity filters, and a local equirectangular
plane in which timing lines and path segments are intersected.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

EARTH_RADIUS_M = 6371000.0  # Earth's mean radius in meters


@dataclass(frozen=True)
class PlanePoint:
    """Point in a local plane (meters east/north of the projection center)."""
    x: float
    y: float


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat/2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

    return EARTH_RADIUS_M * c


def project_to_plane(lat: float, lon: float, center_lat: float, center_lon: float) -> PlanePoint:
    """
    Project a GPS position into a local equirectangular plane.

    Longitude is scaled by cos(center_lat). Only accurate for course-sized
    extents (meters to a few kilometers) around the center.

    Args:
        lat, lon: Position in degrees
        center_lat, center_lon: Projection center in degrees

    Returns:
        PlanePoint in meters (x east, y north)
    """
    x = math.radians(lon - center_lon) * EARTH_RADIUS_M * math.cos(math.radians(center_lat))
    y = math.radians(lat - center_lat) * EARTH_RADIUS_M
    return PlanePoint(x, y)


def project_array_to_plane(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
    center_lat: float,
    center_lon: float,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Vectorized project_to_plane for whole sample streams."""
    x = np.radians(lon - center_lon) * EARTH_RADIUS_M * math.cos(math.radians(center_lat))
    y = np.radians(lat - center_lat) * EARTH_RADIUS_M
    return x, y


def side_of_line(p: PlanePoint, a: PlanePoint, b: PlanePoint) -> float:
    """
    Which side of the directed line a->b the point p lies on.

    Returns the 2D cross product of (b - a) and (p - a): positive on the
    left, negative on the right, zero when collinear.
    """
    return (b.x - a.x) * (p.y - a.y) - (b.y - a.y) * (p.x - a.x)


def segment_intersection(
    p1: PlanePoint,
    p2: PlanePoint,
    a: PlanePoint,
    b: PlanePoint,
) -> Optional[float]:
    """
    Intersect the path segment p1->p2 with the finite segment a->b.

    Both path endpoints must straddle line a-b and both line endpoints must
    straddle the path. A path lying on the line (both sides zero) is not a
    crossing.

    Args:
        p1, p2: Consecutive path positions
        a, b: Timing line endpoints

    Returns:
        Fraction in [0, 1] along p1->p2 where the crossing happens, or None
    """
    d1 = side_of_line(p1, a, b)
    d2 = side_of_line(p2, a, b)

    if (d1 > 0 and d2 > 0) or (d1 < 0 and d2 < 0):
        return None

    d3 = side_of_line(a, p1, p2)
    d4 = side_of_line(b, p1, p2)

    if (d3 > 0 and d4 > 0) or (d3 < 0 and d4 < 0):
        return None

    # Collinear: ambiguous, never reported as a crossing
    if d1 == 0 and d2 == 0:
        return None

    denom = d1 - d2
    if abs(denom) < 1e-10:
        return None

    fraction = d1 / denom
    if fraction < 0.0 or fraction > 1.0:
        return None
    return fraction


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """True for finite, in-range, non-null-island coordinates."""
    if math.isnan(lat) or math.isnan(lon):
        return False
    if lat == 0 or lon == 0:
        return False
    return abs(lat) <= 90 and abs(lon) <= 180
