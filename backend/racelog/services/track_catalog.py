"""
Default track catalog.

Loads track/course definitions from a flat JSON file once and keeps them on
the catalog instance. The host application constructs and owns the catalog.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from racelog.models.timing import Course, GeoPoint, TimingLine, Track

logger = logging.getLogger(__name__)


DEFAULT_TRACKS_FILE = Path(
    os.getenv("RACELOG_TRACKS_FILE", str(Path(__file__).resolve().parent.parent / "data" / "tracks.json"))
)


def _line_from_json(entry: dict, prefix: str) -> Optional[TimingLine]:
    """TimingLine from <prefix>_a_lat/_a_lng/_b_lat/_b_lng, None if incomplete."""
    keys = [f"{prefix}_a_lat", f"{prefix}_a_lng", f"{prefix}_b_lat", f"{prefix}_b_lng"]
    if any(entry.get(k) is None for k in keys):
        return None
    a_lat, a_lng, b_lat, b_lng = (float(entry[k]) for k in keys)
    return TimingLine(GeoPoint(a_lat, a_lng), GeoPoint(b_lat, b_lng))


def course_from_json(entry: dict) -> Course:
    start = _line_from_json(entry, "start")
    if start is None:
        raise ValueError(f"Course {entry.get('name')!r} has no start/finish line")

    sector_2 = _line_from_json(entry, "sector_2")
    sector_3 = _line_from_json(entry, "sector_3")
    # Sector timing needs both lines
    if sector_2 is None or sector_3 is None:
        sector_2 = sector_3 = None

    return Course(name=entry["name"], start_finish=start, sector_2=sector_2, sector_3=sector_3)


class TrackCatalog:
    """Memoized track definitions from a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else DEFAULT_TRACKS_FILE
        self._tracks: Optional[list[Track]] = None

    def tracks(self) -> list[Track]:
        if self._tracks is None:
            self._tracks = self._load()
        return self._tracks

    def get_track(self, name: str) -> Optional[Track]:
        for track in self.tracks():
            if track.name == name:
                return track
        return None

    def get_course(self, track_name: str, course_name: str) -> Optional[Course]:
        track = self.get_track(track_name)
        if track is None:
            return None
        return track.get_course(course_name)

    def reload(self) -> list[Track]:
        self._tracks = None
        return self.tracks()

    def _load(self) -> list[Track]:
        if not self.path.exists():
            logger.warning("Track file not found: %s", self.path)
            return []

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        tracks = []
        for track_name, track_data in data.items():
            courses = []
            for entry in track_data.get("courses", []):
                try:
                    courses.append(course_from_json(entry))
                except (KeyError, ValueError, TypeError) as e:
                    logger.error("Skipping course in track %r: %s", track_name, e)
            tracks.append(Track(name=track_name, courses=courses))

        logger.info("Loaded %d tracks from %s", len(tracks), self.path)
        return tracks
