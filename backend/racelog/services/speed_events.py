"""
Speed peak/valley detection.

Works on a centered moving average of speed. A change of derivative sign
marks a candidate extremum at the sample before the flip; the candidate is
confirmed when the new sign holds, then filtered by separation, swing and
peak/valley alternation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from racelog.models.telemetry import Sample
from racelog.models.timing import SpeedEvent, SpeedEventType
from racelog.utils.signal import moving_average

logger = logging.getLogger(__name__)


DERIVATIVE_DEAD_BAND = 0.01


@dataclass
class SpeedEventOptions:
    smoothing_window: int = 5        # samples
    min_swing: float = 3.0           # speed units from the previous event
    min_separation_ms: float = 1000.0
    debounce_count: int = 2          # sign-bearing deltas the new sign must hold
    unit: str = "mph"


def _sign(delta: float) -> int:
    if delta > DERIVATIVE_DEAD_BAND:
        return 1
    if delta < -DERIVATIVE_DEAD_BAND:
        return -1
    return 0


def _confirmed(signs: NDArray[np.int8], flip: int, debounce_count: int) -> bool:
    """
    Whether the sign at delta `flip` holds for debounce_count sign-bearing deltas.

    The flip itself counts as the first one; zero deltas are skipped and an
    opposite sign, or running out of data, rejects the candidate.
    """
    new_sign = signs[flip]
    count = 1
    j = flip + 1
    while count < debounce_count:
        if j >= len(signs):
            return False
        if signs[j] == -new_sign:
            return False
        if signs[j] == new_sign:
            count += 1
        j += 1
    return True


def find_speed_events(
    samples: list[Sample],
    options: Optional[SpeedEventOptions] = None,
) -> list[SpeedEvent]:
    """
    Detect local speed extrema.

    Consecutive events alternate between peak and valley. A same-type
    candidate that is strictly more extreme replaces the previous event
    instead of being appended.
    """
    opts = options or SpeedEventOptions()
    if len(samples) < opts.smoothing_window + opts.debounce_count:
        return []

    raw = np.array([s.speed_in(opts.unit) for s in samples], dtype=np.float64)
    smoothed = moving_average(raw, opts.smoothing_window)
    # signs[k] is the sign of smoothed[k + 1] - smoothed[k]
    signs = np.array([_sign(d) for d in np.diff(smoothed)], dtype=np.int8)

    events: list[SpeedEvent] = []
    last_type: Optional[SpeedEventType] = None
    last_speed = 0.0          # unrounded speed of the last emitted event
    last_time = -np.inf
    prev_sign = 0

    for k, sign in enumerate(signs):
        if sign == 0:
            continue
        if prev_sign == 0 or sign == prev_sign:
            prev_sign = sign
            continue

        candidate_type = SpeedEventType.PEAK if prev_sign > 0 else SpeedEventType.VALLEY
        prev_sign = sign
        idx = k  # sample before the flip

        if not _confirmed(signs, k, opts.debounce_count):
            continue

        sample = samples[idx]
        speed = float(smoothed[idx])
        if sample.t - last_time < opts.min_separation_ms:
            continue
        if last_type is not None and abs(speed - last_speed) < opts.min_swing:
            continue

        event = SpeedEvent(
            type=candidate_type,
            speed=int(np.floor(speed + 0.5)),
            lat=sample.lat,
            lon=sample.lon,
            index=idx,
            time=sample.t,
        )

        if last_type is None or candidate_type != last_type:
            events.append(event)
        else:
            more_extreme = speed > last_speed if candidate_type is SpeedEventType.PEAK else speed < last_speed
            if not more_extreme:
                continue
            events[-1] = event

        last_type = candidate_type
        last_speed = speed
        last_time = sample.t

    logger.debug("Found %d speed events over %d samples", len(events), len(samples))
    return events
