"""
Tests for the track catalog.
"""

import json

import pytest

from racelog.services.track_catalog import TrackCatalog, course_from_json


START = {
    "start_a_lat": 28.4127,
    "start_a_lng": -81.378371,
    "start_b_lat": 28.4127,
    "start_b_lng": -81.377962,
}
SECTOR_2 = {
    "sector_2_a_lat": 28.413198,
    "sector_2_a_lng": -81.380313,
    "sector_2_b_lat": 28.413448,
    "sector_2_b_lng": -81.380620,
}
SECTOR_3 = {
    "sector_3_a_lat": 28.412202,
    "sector_3_a_lng": -81.380313,
    "sector_3_b_lat": 28.411952,
    "sector_3_b_lng": -81.380620,
}


@pytest.fixture
def tracks_file(tmp_path):
    path = tmp_path / "tracks.json"
    data = {
        "Club Circuit": {
            "courses": [
                {"name": "Full", **START, **SECTOR_2, **SECTOR_3},
                {"name": "Short", **START, **SECTOR_2},
                {"name": "Broken", "start_a_lat": 28.4},
            ]
        },
        "Empty Track": {"courses": []},
    }
    path.write_text(json.dumps(data))
    return path


class TestCourseFromJson:
    def test_full_course(self):
        course = course_from_json({"name": "Full", **START, **SECTOR_2, **SECTOR_3})
        assert course.has_sectors
        assert course.start_finish.a.lon == pytest.approx(-81.378371)
        assert course.sector_3.b.lat == pytest.approx(28.411952)

    def test_single_sector_dropped(self):
        course = course_from_json({"name": "Short", **START, **SECTOR_3})
        assert course.sector_2 is None
        assert course.sector_3 is None

    def test_missing_start(self):
        with pytest.raises(ValueError, match="no start/finish line"):
            course_from_json({"name": "Nope", **SECTOR_2})

    def test_degenerate_start(self):
        entry = {
            "name": "Point",
            "start_a_lat": 28.4, "start_a_lng": -81.3,
            "start_b_lat": 28.4, "start_b_lng": -81.3,
        }
        with pytest.raises(ValueError, match="distinct"):
            course_from_json(entry)


class TestTrackCatalog:
    """Tests for TrackCatalog."""

    def test_loads_tracks(self, tracks_file):
        catalog = TrackCatalog(tracks_file)
        assert [t.name for t in catalog.tracks()] == ["Club Circuit", "Empty Track"]

    def test_invalid_course_skipped(self, tracks_file):
        track = TrackCatalog(tracks_file).get_track("Club Circuit")
        assert [c.name for c in track.courses] == ["Full", "Short"]

    def test_get_course(self, tracks_file):
        catalog = TrackCatalog(tracks_file)
        assert catalog.get_course("Club Circuit", "Full").has_sectors
        assert not catalog.get_course("Club Circuit", "Short").has_sectors
        assert catalog.get_course("Club Circuit", "Missing") is None
        assert catalog.get_course("Nowhere", "Full") is None

    def test_loaded_once(self, tracks_file):
        catalog = TrackCatalog(tracks_file)
        first = catalog.tracks()
        tracks_file.write_text("{}")
        assert catalog.tracks() is first

    def test_reload(self, tracks_file):
        catalog = TrackCatalog(tracks_file)
        catalog.tracks()
        tracks_file.write_text(json.dumps({"New Track": {"courses": []}}))
        assert [t.name for t in catalog.reload()] == ["New Track"]

    def test_missing_file(self, tmp_path):
        assert TrackCatalog(tmp_path / "absent.json").tracks() == []

    def test_packaged_catalog(self):
        catalog = TrackCatalog()
        track = catalog.get_track("Demo Oval")
        assert track is not None
        assert [c.name for c in track.courses] == ["Full", "Start Only"]
