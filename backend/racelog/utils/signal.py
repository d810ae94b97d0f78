"""
Small signal helpers shared by the decoders and post-processing.
"""

from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def normalize_heading(heading: float) -> float:
    """Wrap a heading into [0, 360)."""
    heading = heading % 360.0
    # -1e-15 % 360 rounds to 360.0
    if heading >= 360.0:
        heading -= 360.0
    return heading


def heading_delta(h2: Optional[float], h1: Optional[float]) -> float:
    """
    Shortest signed change from h1 to h2 in degrees, in [-180, 180].

    Missing headings count as no change.
    """
    if h2 is None or h1 is None:
        return 0.0
    delta = h2 - h1
    if delta > 180:
        delta -= 360
    if delta < -180:
        delta += 360
    return delta


def moving_average(values: Sequence[float], window: int = 5) -> NDArray[np.float64]:
    """
    Centered moving average.

    The window shrinks at the ends of the series, so each output is the mean
    of the in-range neighbors only.

    Args:
        values: Input series
        window: Window size in samples (odd sizes are centered exactly)

    Returns:
        Smoothed series, same length as the input
    """
    arr = np.asarray(values, dtype=np.float64)
    if len(arr) == 0 or window <= 1:
        return arr.copy()

    half = window // 2
    n = len(arr)
    idx = np.arange(n)
    lo = np.maximum(idx - half, 0)
    hi = np.minimum(idx + half + 1, n)

    cumulative = np.concatenate(([0.0], np.cumsum(arr)))
    return (cumulative[hi] - cumulative[lo]) / (hi - lo)
