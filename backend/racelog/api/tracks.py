"""
API routes for the default track catalog.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from racelog.api.runs import get_catalog
from racelog.api.schemas import (
    CourseSchema,
    ErrorResponse,
    GeoPointSchema,
    TimingLineSchema,
    TrackListResponse,
    TrackResponse,
)
from racelog.models.timing import Course, TimingLine, Track
from racelog.services.track_catalog import TrackCatalog


router = APIRouter(
    prefix="/tracks",
    tags=["tracks"],
    responses={404: {"model": ErrorResponse}},
)


def _line_schema(line: Optional[TimingLine]) -> Optional[TimingLineSchema]:
    if line is None:
        return None
    return TimingLineSchema(
        a=GeoPointSchema(lat=line.a.lat, lon=line.a.lon),
        b=GeoPointSchema(lat=line.b.lat, lon=line.b.lon),
    )


def course_schema(course: Course) -> CourseSchema:
    return CourseSchema(
        name=course.name,
        start_finish=_line_schema(course.start_finish),
        sector_2=_line_schema(course.sector_2),
        sector_3=_line_schema(course.sector_3),
    )


def build_track_response(track: Track) -> TrackResponse:
    return TrackResponse(name=track.name, courses=[course_schema(c) for c in track.courses])


@router.get("", response_model=TrackListResponse)
async def list_tracks(catalog: TrackCatalog = Depends(get_catalog)):
    """Track names with their course names."""
    return TrackListResponse(
        tracks={t.name: [c.name for c in t.courses] for t in catalog.tracks()}
    )


@router.get("/{name}", response_model=TrackResponse)
async def get_track(name: str, catalog: TrackCatalog = Depends(get_catalog)):
    track = catalog.get_track(name)
    if track is None:
        raise HTTPException(status_code=404, detail=f"Track not found: {name}")
    return build_track_response(track)
