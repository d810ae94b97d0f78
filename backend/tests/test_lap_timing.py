"""
Tests for lap and sector timing.
"""

import logging

import numpy as np
import pytest

from racelog.models.telemetry import Sample
from racelog.models.timing import Course, GeoPoint, Lap, SectorTimes, TimingLine
from racelog.services.lap_timing import (
    START_FINISH_DEBOUNCE_MS,
    calculate_laps,
    calculate_optimal_lap,
    find_crossings,
    format_lap_time,
    format_sector_time,
    glitch_mask,
)
from racelog.services.track_catalog import TrackCatalog
from racelog.utils.sample_data import demo_course, generate_oval_session, local_to_geo


def _samples(trace):
    return [
        Sample(
            t=float(trace.t[i] * 1000.0),
            lat=float(trace.lat[i]),
            lon=float(trace.lon[i]),
            speed_mps=float(trace.speed_mps[i]),
            heading=float(trace.heading[i]),
        )
        for i in range(len(trace))
    ]


def _geo(x, y):
    lat, lon = local_to_geo(np.array([x]), np.array([y]))
    return GeoPoint(float(lat[0]), float(lon[0]))


def _path(points):
    """Samples at (t ms, x m) along the local x axis."""
    return [
        Sample(t=t, lat=_geo(x, 0.0).lat, lon=_geo(x, 0.0).lon, speed_mps=10.0)
        for t, x in points
    ]


# North-south line through the local origin
GATE = TimingLine(_geo(0.0, -10.0), _geo(0.0, 10.0))


@pytest.fixture(scope="module")
def oval_samples():
    return _samples(generate_oval_session(n_laps=3))


def _lap(number, time_ms, sectors=None):
    return Lap(
        lap_number=number,
        start_time=0.0,
        end_time=time_ms,
        lap_time_ms=time_ms,
        max_speed_mph=60.0,
        max_speed_kph=96.6,
        min_speed_mph=30.0,
        min_speed_kph=48.3,
        start_index=0,
        end_index=1,
        sectors=SectorTimes(*sectors) if sectors else None,
    )


class TestFindCrossings:
    """Tests for crossing detection on a single line."""

    def test_interpolated_time(self):
        samples = _path([(0.0, -5.0), (1000.0, 5.0)])
        crossings = find_crossings(samples, GATE, GATE.midpoint.lat, GATE.midpoint.lon, 0.0)
        assert len(crossings) == 1
        assert crossings[0].sample_index == 0
        assert crossings[0].crossing_time == pytest.approx(500.0, abs=1e-3)
        assert crossings[0].fraction == pytest.approx(0.5, abs=1e-6)

    def test_direction_gated_by_first_crossing(self):
        samples = _path([
            (0.0, -5.0), (1000.0, 5.0),
            (10000.0, 5.0), (11000.0, -5.0),
            (20000.0, -5.0), (21000.0, 5.0),
        ])
        crossings = find_crossings(
            samples, GATE, GATE.midpoint.lat, GATE.midpoint.lon, START_FINISH_DEBOUNCE_MS
        )
        assert [round(c.crossing_time) for c in crossings] == [500, 20500]
        assert len({c.direction for c in crossings}) == 1

    def test_debounce(self):
        samples = _path([
            (0.0, -5.0), (1000.0, 5.0),
            (1200.0, 5.0), (1800.0, -5.0),
            (2000.0, -5.0), (3000.0, 5.0),
        ])
        center = GATE.midpoint
        debounced = find_crossings(samples, GATE, center.lat, center.lon, 5000.0)
        loose = find_crossings(samples, GATE, center.lat, center.lon, 1000.0)
        assert [round(c.crossing_time) for c in debounced] == [500]
        assert [round(c.crossing_time) for c in loose] == [500, 2500]

    def test_path_beside_line_not_counted(self):
        samples = _path([(0.0, -5.0), (1000.0, -1.0)])
        assert find_crossings(samples, GATE, GATE.midpoint.lat, GATE.midpoint.lon, 0.0) == []

    def test_too_few_samples(self):
        assert find_crossings(_path([(0.0, -5.0)]), GATE, 0.0, 0.0, 0.0) == []


class TestCalculateLaps:
    """Tests for laps on the simulated oval."""

    def test_three_laps(self, oval_samples):
        laps = calculate_laps(oval_samples, demo_course())
        assert [lap.lap_number for lap in laps] == [1, 2, 3]

    def test_laps_are_contiguous(self, oval_samples):
        laps = calculate_laps(oval_samples, demo_course())
        for prev, nxt in zip(laps, laps[1:]):
            assert prev.end_time == nxt.start_time
            assert prev.end_index == nxt.start_index
        for lap in laps:
            assert lap.lap_time_ms == pytest.approx(lap.end_time - lap.start_time)

    def test_lap_times_consistent(self, oval_samples):
        times = [lap.lap_time_ms for lap in calculate_laps(oval_samples, demo_course())]
        assert 25000 < times[0] < 45000
        assert max(times) - min(times) < 20.0

    def test_speed_extremes(self, oval_samples):
        lap = calculate_laps(oval_samples, demo_course())[1]
        assert lap.max_speed_mph == pytest.approx(28.0 * 2.23694, rel=0.01)
        assert lap.min_speed_mph == pytest.approx(16.0 * 2.23694, rel=0.01)
        assert lap.max_speed_kph == pytest.approx(28.0 * 3.6, rel=0.01)

    def test_sectors_sum_to_lap(self, oval_samples):
        for lap in calculate_laps(oval_samples, demo_course()):
            assert lap.sectors is not None
            assert lap.sectors.s1 > 0 and lap.sectors.s2 > 0 and lap.sectors.s3 > 0
            total = lap.sectors.s1 + lap.sectors.s2 + lap.sectors.s3
            assert total == pytest.approx(lap.lap_time_ms)

    def test_no_sectors_without_both_lines(self, oval_samples):
        laps = calculate_laps(oval_samples, demo_course(with_sectors=False))
        assert len(laps) == 3
        assert all(lap.sectors is None for lap in laps)
        assert calculate_optimal_lap(laps) is None

    def test_catalog_course_without_sector_3(self, oval_samples):
        course = TrackCatalog().get_course("Demo Oval", "Start Only")
        assert not course.has_sectors
        laps = calculate_laps(oval_samples, course)
        assert len(laps) == 3
        assert all(lap.sectors is None for lap in laps)

    def test_catalog_full_course_matches_demo(self, oval_samples):
        course = TrackCatalog().get_course("Demo Oval", "Full")
        catalog_laps = calculate_laps(oval_samples, course)
        demo_laps = calculate_laps(oval_samples, demo_course())
        assert len(catalog_laps) == len(demo_laps)
        for a, b in zip(catalog_laps, demo_laps):
            assert a.lap_time_ms == pytest.approx(b.lap_time_ms, abs=1.0)

    def test_sector_order_required(self, oval_samples):
        course = demo_course()
        swapped = Course(
            name="Swapped",
            start_finish=course.start_finish,
            sector_2=course.sector_3,
            sector_3=course.sector_2,
        )
        laps = calculate_laps(oval_samples, swapped)
        assert all(lap.sectors is None for lap in laps)

    def test_single_crossing_gives_no_laps(self, oval_samples):
        # Stop halfway around the first lap
        assert calculate_laps(oval_samples[:200], demo_course()) == []

    def test_glitch_ignored_for_min_speed(self, oval_samples):
        samples = list(oval_samples)
        laps = calculate_laps(samples, demo_course())
        # A quarter into the lap, on the fast side of the oval
        quarter = laps[1].start_index + (laps[1].end_index - laps[1].start_index) // 4
        for i in (quarter, quarter + 1):
            s = samples[i]
            samples[i] = Sample(t=s.t, lat=s.lat, lon=s.lon, speed_mps=0.1, heading=s.heading)

        glitched = calculate_laps(samples, demo_course())[1]
        assert glitched.min_speed_mph == pytest.approx(laps[1].min_speed_mph)

    def test_slow_run_across_lap_boundary_kept(self, oval_samples):
        samples = list(oval_samples)
        boundary = calculate_laps(samples, demo_course())[0].end_index
        # Six slow samples, only three of them inside the first lap
        for i in range(boundary - 2, boundary + 4):
            s = samples[i]
            samples[i] = Sample(t=s.t, lat=s.lat, lon=s.lon, speed_mps=0.1, heading=s.heading)

        first = calculate_laps(samples, demo_course())[0]
        assert first.min_speed_mph == pytest.approx(samples[boundary].speed_mph)


class TestGlitchMask:
    def test_short_runs_masked(self):
        speeds = np.array([10.0, 0.5, 0.2, 10.0, 0.0, 0.0, 0.0, 0.0, 10.0])
        mask = glitch_mask(speeds)
        assert mask.tolist() == [False, True, True, False, False, False, False, False, False]

    def test_run_of_three_masked(self):
        assert glitch_mask(np.array([5.0, 0.0, 0.0, 0.0])).tolist() == [False, True, True, True]


class TestOptimalLap:
    """Tests for the optimal lap."""

    def test_optimal_not_slower_than_fastest(self, oval_samples):
        laps = calculate_laps(oval_samples, demo_course())
        optimal = calculate_optimal_lap(laps)
        assert optimal.optimal_time_ms <= optimal.fastest_lap_ms + 1e-6
        assert optimal.delta_ms >= -1e-6
        assert optimal.is_consistent

    def test_best_sectors_combined(self):
        laps = [
            _lap(1, 100.0, (30.0, 40.0, 30.0)),
            _lap(2, 101.0, (31.0, 35.0, 35.0)),
            _lap(3, 95.0),
        ]
        optimal = calculate_optimal_lap(laps)
        assert (optimal.best_s1, optimal.best_s2, optimal.best_s3) == (30.0, 35.0, 30.0)
        assert optimal.optimal_time_ms == 95.0
        # Lap 3 has no sectors so it is not the reference
        assert optimal.fastest_lap_ms == 100.0
        assert optimal.delta_ms == 5.0

    def test_inconsistent_sectors_warn(self, caplog):
        laps = [_lap(1, 90.0, (30.0, 40.0, 30.0))]
        with caplog.at_level(logging.WARNING, logger="racelog.services.lap_timing"):
            optimal = calculate_optimal_lap(laps)
        assert optimal.delta_ms == -10.0
        assert not optimal.is_consistent
        assert "faster than fastest lap" in caplog.text

    def test_no_laps(self):
        assert calculate_optimal_lap([]) is None


class TestFormatting:
    @pytest.mark.parametrize("ms,expected", [
        (83456.4, "1:23.456"),
        (59999.6, "1:00.000"),
        (5000.0, "0:05.000"),
        (600000.0, "10:00.000"),
    ])
    def test_lap_time(self, ms, expected):
        assert format_lap_time(ms) == expected

    def test_sector_time(self):
        assert format_sector_time(23456.0) == "23.456"
        assert format_sector_time(61000.0) == "1:01.000"
