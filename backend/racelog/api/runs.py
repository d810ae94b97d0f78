"""
API routes for telemetry runs.
"""

import math
import os
from pathlib import Path
from typing import Optional

import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from racelog.api.schemas import (
    BoundsResponse,
    CourseSchema,
    ErrorResponse,
    FieldDescriptorResponse,
    FolderInfoResponse,
    LapResponse,
    LapTimingResponse,
    OptimalLapResponse,
    PlaybackDataResponse,
    PlaybackSampleResponse,
    RunDataResponse,
    RunMetadataResponse,
    RunSummaryResponse,
    SectorTimesResponse,
    SetFolderRequest,
    SpeedEventResponse,
    SpeedEventsResponse,
    TimingLineSchema,
)
from racelog.models.telemetry import AuxField, AuxKey, FieldDescriptor, TelemetryRun
from racelog.models.timing import Course, GeoPoint, Lap, OptimalLap, TimingLine
from racelog.services.decoding import DecodeError
from racelog.services.lap_timing import calculate_laps, calculate_optimal_lap, format_lap_time
from racelog.services.repository import RunRepository
from racelog.services.speed_events import SpeedEventOptions, find_speed_events
from racelog.services.track_catalog import TrackCatalog


DEFAULT_SPEED_UNIT = os.getenv("RACELOG_SPEED_UNIT", "mph")
SPEED_UNITS = ("mph", "kph", "mps")

router = APIRouter(
    prefix="/runs",
    tags=["runs"],
    responses={404: {"model": ErrorResponse}},
)


def get_repository(request: Request) -> RunRepository:
    return request.app.state.repository


def get_catalog(request: Request) -> TrackCatalog:
    return request.app.state.catalog


def _require_run(repo: RunRepository, run_id: str) -> TelemetryRun:
    run = repo.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


def _clean_array(arr: np.ndarray) -> list[Optional[float]]:
    """Convert numpy array to list, replacing NaN with None."""
    return [None if math.isnan(x) else float(x) for x in arr]


def _aux_key(descriptor: FieldDescriptor) -> AuxKey:
    # Passthrough columns (index >= 0) are keyed by name
    if descriptor.index >= 0:
        return descriptor.name
    return AuxField(descriptor.name)


def build_summary_response(summary) -> RunSummaryResponse:
    return RunSummaryResponse(
        id=summary.id,
        name=summary.name,
        source_format=summary.source_format,
        source_file=summary.source_file,
        recorded_at=summary.recorded_at,
        duration_ms=summary.duration_ms,
        sample_count=summary.sample_count,
    )


def build_metadata_response(run: TelemetryRun) -> RunMetadataResponse:
    """Build metadata response from TelemetryRun."""
    meta = run.metadata
    return RunMetadataResponse(
        id=meta.id,
        name=meta.name,
        source_format=meta.source_format,
        source_file=str(meta.source_file) if meta.source_file else None,
        recorded_at=meta.recorded_at.isoformat() if meta.recorded_at else None,
        duration_ms=meta.duration_ms,
        sample_count=meta.sample_count,
        sample_rate_hz=meta.sample_rate_hz,
        canonical_version=meta.canonical_version,
        bounds=BoundsResponse(
            min_lat=run.bounds.min_lat,
            max_lat=run.bounds.max_lat,
            min_lon=run.bounds.min_lon,
            max_lon=run.bounds.max_lon,
        ),
        time_range=run.get_time_range(),
        fields=[
            FieldDescriptorResponse(index=f.index, name=f.name, unit=f.unit, enabled=f.enabled)
            for f in run.fields
        ],
    )


def build_data_response(run: TelemetryRun) -> RunDataResponse:
    return RunDataResponse(
        metadata=build_metadata_response(run),
        timestamps=run.timestamps.tolist(),
        lat=[s.lat for s in run.samples],
        lon=[s.lon for s in run.samples],
        speed_mps=run.speeds("mps").tolist(),
        speed_mph=run.speeds("mph").tolist(),
        speed_kph=run.speeds("kph").tolist(),
        heading=[s.heading for s in run.samples],
        aux={f.name: _clean_array(run.aux_series(_aux_key(f))) for f in run.fields},
    )


def build_playback_response(
    run: TelemetryRun,
    start_time: float,
    end_time: Optional[float],
    target_rate: float,
) -> PlaybackDataResponse:
    """
    Resample a run at target_rate between start_time and end_time (ms).

    Raises:
        ValueError: empty time range
    """
    run_start, run_end = run.get_time_range()
    start_time = max(start_time, run_start)
    end_time = run_end if end_time is None else min(end_time, run_end)
    if start_time >= end_time:
        raise ValueError("Invalid time range")

    duration = end_time - start_time
    n_samples = int(duration / (1000.0 / target_rate)) + 1

    samples = []
    for t in np.linspace(start_time, end_time, n_samples):
        sample = run.sample_at_time(float(t))
        samples.append(PlaybackSampleResponse(**sample))

    return PlaybackDataResponse(
        run_id=run.metadata.id,
        duration_ms=duration,
        sample_rate_hz=target_rate,
        samples=samples,
    )


def _lap_response(lap: Lap) -> LapResponse:
    return LapResponse(
        lap_number=lap.lap_number,
        start_time=lap.start_time,
        end_time=lap.end_time,
        lap_time_ms=lap.lap_time_ms,
        lap_time=format_lap_time(lap.lap_time_ms),
        max_speed_mph=lap.max_speed_mph,
        max_speed_kph=lap.max_speed_kph,
        min_speed_mph=lap.min_speed_mph,
        min_speed_kph=lap.min_speed_kph,
        start_index=lap.start_index,
        end_index=lap.end_index,
        sectors=SectorTimesResponse(s1=lap.sectors.s1, s2=lap.sectors.s2, s3=lap.sectors.s3)
        if lap.sectors is not None else None,
    )


def _optimal_response(optimal: Optional[OptimalLap]) -> Optional[OptimalLapResponse]:
    if optimal is None:
        return None
    return OptimalLapResponse(
        best_s1=optimal.best_s1,
        best_s2=optimal.best_s2,
        best_s3=optimal.best_s3,
        optimal_time_ms=optimal.optimal_time_ms,
        optimal_time=format_lap_time(optimal.optimal_time_ms),
        fastest_lap_ms=optimal.fastest_lap_ms,
        delta_ms=optimal.delta_ms,
        consistent=optimal.is_consistent,
    )


def build_lap_timing_response(run: TelemetryRun, course: Course) -> LapTimingResponse:
    laps = calculate_laps(run.samples, course)
    return LapTimingResponse(
        run_id=run.metadata.id,
        course=course.name,
        laps=[_lap_response(lap) for lap in laps],
        optimal=_optimal_response(calculate_optimal_lap(laps)),
    )


def build_speed_events_response(run: TelemetryRun, options: SpeedEventOptions) -> SpeedEventsResponse:
    events = find_speed_events(run.samples, options)
    return SpeedEventsResponse(
        run_id=run.metadata.id,
        unit=options.unit,
        events=[
            SpeedEventResponse(
                type=e.type.value,
                speed=e.speed,
                lat=e.lat,
                lon=e.lon,
                index=e.index,
                time=e.time,
            )
            for e in events
        ],
    )


def _line_from_schema(line: TimingLineSchema) -> TimingLine:
    return TimingLine(GeoPoint(line.a.lat, line.a.lon), GeoPoint(line.b.lat, line.b.lon))


def course_from_schema(body: CourseSchema) -> Course:
    sector_2 = _line_from_schema(body.sector_2) if body.sector_2 else None
    sector_3 = _line_from_schema(body.sector_3) if body.sector_3 else None
    if sector_2 is None or sector_3 is None:
        sector_2 = sector_3 = None
    return Course(
        name=body.name,
        start_finish=_line_from_schema(body.start_finish),
        sector_2=sector_2,
        sector_3=sector_3,
    )


@router.get("", response_model=list[RunSummaryResponse])
async def list_runs(repo: RunRepository = Depends(get_repository)):
    """
    List all available telemetry runs.

    Returns summaries sorted by recording date (newest first).
    """
    return [build_summary_response(s) for s in repo.list_runs()]


@router.post("/upload", response_model=RunMetadataResponse, status_code=201)
async def upload_run(
    request: Request,
    name: str = Query(..., min_length=1, description="Display name of the run"),
    format: Optional[str] = Query(None, description="Force a decoder (ubx, nmea, vbo, alfano, aim)"),
    repo: RunRepository = Depends(get_repository),
):
    """
    Decode a log file sent as the raw request body.

    The format is auto-detected unless given.
    """
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Empty request body")

    try:
        run = repo.add_buffer(name, data, format_name=format)
    except DecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return build_metadata_response(run)


@router.get("/{run_id}", response_model=RunMetadataResponse)
async def get_run_metadata(run_id: str, repo: RunRepository = Depends(get_repository)):
    """
    Get metadata for a specific run.
    """
    return build_metadata_response(_require_run(repo, run_id))


@router.get("/{run_id}/data", response_model=RunDataResponse)
async def get_run_data(run_id: str, repo: RunRepository = Depends(get_repository)):
    """
    Get full telemetry data for a run.

    Warning: This can be a large response for high-sample-rate runs.
    Consider using /playback endpoint for visualization.
    """
    return build_data_response(_require_run(repo, run_id))


@router.get("/{run_id}/playback", response_model=PlaybackDataResponse)
async def get_playback_data(
    run_id: str,
    start_time: float = Query(0.0, description="Start time in ms"),
    end_time: Optional[float] = Query(None, description="End time in ms (defaults to run end)"),
    target_rate: float = Query(10.0, ge=1.0, le=100.0, description="Target sample rate for playback"),
    repo: RunRepository = Depends(get_repository),
):
    """
    Get resampled playback data for a run.

    Positions, speed and heading are interpolated at the target rate.
    """
    run = _require_run(repo, run_id)
    try:
        return build_playback_response(run, start_time, end_time, target_rate)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{run_id}/laps", response_model=LapTimingResponse)
async def get_laps(
    run_id: str,
    track: str = Query(..., description="Track name from the catalog"),
    course: str = Query(..., description="Course name within the track"),
    repo: RunRepository = Depends(get_repository),
    catalog: TrackCatalog = Depends(get_catalog),
):
    """Lap, sector and optimal lap times against a catalog course."""
    run = _require_run(repo, run_id)
    selected = catalog.get_course(track, course)
    if selected is None:
        raise HTTPException(status_code=404, detail=f"Course not found: {track}/{course}")
    return build_lap_timing_response(run, selected)


@router.post("/{run_id}/laps", response_model=LapTimingResponse)
async def post_laps(
    run_id: str,
    body: CourseSchema,
    repo: RunRepository = Depends(get_repository),
):
    """Lap, sector and optimal lap times against a course given in the body."""
    run = _require_run(repo, run_id)
    try:
        selected = course_from_schema(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return build_lap_timing_response(run, selected)


@router.get("/{run_id}/speed-events", response_model=SpeedEventsResponse)
async def get_speed_events(
    run_id: str,
    unit: str = Query(DEFAULT_SPEED_UNIT, description="mph, kph or mps"),
    smoothing_window: int = Query(5, ge=1, le=101),
    min_swing: float = Query(3.0, ge=0.0),
    min_separation_ms: float = Query(1000.0, ge=0.0),
    debounce_count: int = Query(2, ge=1),
    repo: RunRepository = Depends(get_repository),
):
    """Alternating speed peaks and valleys."""
    if unit not in SPEED_UNITS:
        raise HTTPException(status_code=400, detail=f"Unknown speed unit: {unit}")
    run = _require_run(repo, run_id)
    options = SpeedEventOptions(
        smoothing_window=smoothing_window,
        min_swing=min_swing,
        min_separation_ms=min_separation_ms,
        debounce_count=debounce_count,
        unit=unit,
    )
    return build_speed_events_response(run, options)


# ============================================================================
# Folder Management Routes
# ============================================================================

folder_router = APIRouter(prefix="/folder", tags=["folder"])


@folder_router.get("", response_model=FolderInfoResponse)
async def get_folder_info(repo: RunRepository = Depends(get_repository)):
    """Get information about the current data folder."""
    return FolderInfoResponse(
        path=str(repo.data_folder) if repo.data_folder else None,
        run_count=repo.run_count,
    )


@folder_router.post("", response_model=FolderInfoResponse)
async def set_folder(request: SetFolderRequest, repo: RunRepository = Depends(get_repository)):
    """
    Set the data folder to scan for log files.

    This will clear the current cache and re-scan.
    """
    path = Path(request.path)
    if not path.exists():
        raise HTTPException(status_code=400, detail=f"Folder does not exist: {request.path}")
    if not path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {request.path}")

    count = repo.set_data_folder(path)

    return FolderInfoResponse(path=str(path), run_count=count)


@folder_router.post("/rescan", response_model=FolderInfoResponse)
async def rescan_folder(repo: RunRepository = Depends(get_repository)):
    """
    Rescan the current data folder for new log files.
    """
    if repo.data_folder is None:
        raise HTTPException(status_code=400, detail="No data folder set")

    count = repo.rescan()

    return FolderInfoResponse(path=str(repo.data_folder), run_count=count)
