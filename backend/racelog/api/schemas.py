"""
API schemas (Pydantic models) for request/response validation.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Run Schemas
# ============================================================================

class RunSummaryResponse(BaseModel):
    """Summary of a telemetry run for listing."""
    id: str
    name: str
    source_format: str
    source_file: Optional[str] = None
    recorded_at: Optional[str] = None
    duration_ms: float
    sample_count: int


class FieldDescriptorResponse(BaseModel):
    """Declared auxiliary field."""
    index: int
    name: str
    unit: Optional[str] = None
    enabled: bool = True


class BoundsResponse(BaseModel):
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


class RunMetadataResponse(BaseModel):
    """Full metadata for a run."""
    id: str
    name: str
    source_format: str
    source_file: Optional[str] = None
    recorded_at: Optional[str] = None
    duration_ms: float
    sample_count: int
    sample_rate_hz: float
    canonical_version: str
    bounds: BoundsResponse
    time_range: tuple[float, float]  # (start_ms, end_ms)
    fields: list[FieldDescriptorResponse]


class RunDataResponse(BaseModel):
    """Full run data including time series."""
    metadata: RunMetadataResponse

    # Time series arrays (as lists for JSON serialization)
    timestamps: list[float]
    lat: list[float]
    lon: list[float]
    speed_mps: list[float]
    speed_mph: list[float]
    speed_kph: list[float]
    heading: list[Optional[float]]
    aux: dict[str, list[Optional[float]]]


# ============================================================================
# Playback Schemas
# ============================================================================

class PlaybackSampleResponse(BaseModel):
    """Single interpolated sample for playback."""
    time: float
    lat: float
    lon: float
    speed_mps: float
    heading: Optional[float] = None


class PlaybackDataResponse(BaseModel):
    """Playback data for a run."""
    run_id: str
    duration_ms: float
    sample_rate_hz: float

    # Resampled data for efficient playback
    samples: list[PlaybackSampleResponse]


# ============================================================================
# Timing Schemas
# ============================================================================

class GeoPointSchema(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class TimingLineSchema(BaseModel):
    """Line segment a->b."""
    a: GeoPointSchema
    b: GeoPointSchema

    @model_validator(mode="after")
    def check_distinct(self):
        if self.a == self.b:
            raise ValueError("Timing line endpoints must be distinct")
        return self


class CourseSchema(BaseModel):
    """Course definition (start/finish plus optional sector lines)."""
    name: str = "Custom"
    start_finish: TimingLineSchema
    sector_2: Optional[TimingLineSchema] = None
    sector_3: Optional[TimingLineSchema] = None


class SectorTimesResponse(BaseModel):
    s1: float
    s2: float
    s3: float


class LapResponse(BaseModel):
    lap_number: int
    start_time: float
    end_time: float
    lap_time_ms: float
    lap_time: str  # m:ss.sss
    max_speed_mph: float
    max_speed_kph: float
    min_speed_mph: float
    min_speed_kph: float
    start_index: int
    end_index: int
    sectors: Optional[SectorTimesResponse] = None


class OptimalLapResponse(BaseModel):
    best_s1: float
    best_s2: float
    best_s3: float
    optimal_time_ms: float
    optimal_time: str
    fastest_lap_ms: float
    delta_ms: float
    consistent: bool


class LapTimingResponse(BaseModel):
    run_id: str
    course: str
    laps: list[LapResponse]
    optimal: Optional[OptimalLapResponse] = None


# ============================================================================
# Speed Event Schemas
# ============================================================================

class SpeedEventResponse(BaseModel):
    type: str  # "peak" or "valley"
    speed: int
    lat: float
    lon: float
    index: int
    time: float


class SpeedEventsResponse(BaseModel):
    run_id: str
    unit: str
    events: list[SpeedEventResponse]


# ============================================================================
# Folder Management Schemas
# ============================================================================

class SetFolderRequest(BaseModel):
    """Request to set the data folder."""
    path: str


class FolderInfoResponse(BaseModel):
    """Information about the current data folder."""
    path: Optional[str]
    run_count: int


# ============================================================================
# Track Schemas
# ============================================================================

class TrackListResponse(BaseModel):
    """Available tracks and their course names."""
    tracks: dict[str, list[str]]


class TrackResponse(BaseModel):
    name: str
    courses: list[CourseSchema]


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    code: Optional[str] = None
