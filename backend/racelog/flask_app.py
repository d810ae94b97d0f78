"""
racelog - Flask Backend

Alternative to FastAPI for environments where FastAPI isn't available.
Serves the read endpoints with the same response shapes.
"""

import logging
from pathlib import Path
from typing import Optional

from flask import Flask, current_app, jsonify, request

from racelog.api.runs import (
    DEFAULT_SPEED_UNIT,
    SPEED_UNITS,
    build_data_response,
    build_lap_timing_response,
    build_metadata_response,
    build_playback_response,
    build_speed_events_response,
    build_summary_response,
)
from racelog.api.tracks import build_track_response
from racelog.services.repository import DEFAULT_DATA_FOLDER, RunRepository
from racelog.services.speed_events import SpeedEventOptions
from racelog.services.track_catalog import TrackCatalog


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _repo() -> RunRepository:
    return current_app.config["REPOSITORY"]


def _catalog() -> TrackCatalog:
    return current_app.config["CATALOG"]


def _not_found(what: str):
    return jsonify({"detail": f"{what} not found"}), 404


# ============================================================================
# Health Endpoints
# ============================================================================

def root():
    """Root endpoint - basic health check."""
    return jsonify({
        "name": "racelog",
        "version": "0.1.0",
        "status": "running",
    })


def health_check():
    repo = _repo()
    return jsonify({
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "run_count": repo.run_count,
    })


def get_folder_info():
    repo = _repo()
    return jsonify({
        "path": str(repo.data_folder) if repo.data_folder else None,
        "run_count": repo.run_count,
    })


# ============================================================================
# Run Endpoints
# ============================================================================

def list_runs():
    return jsonify([build_summary_response(s).model_dump() for s in _repo().list_runs()])


def get_run_metadata(run_id: str):
    run = _repo().get_run(run_id)
    if run is None:
        return _not_found(f"Run {run_id}")
    return jsonify(build_metadata_response(run).model_dump())


def get_run_data(run_id: str):
    run = _repo().get_run(run_id)
    if run is None:
        return _not_found(f"Run {run_id}")
    return jsonify(build_data_response(run).model_dump())


def get_playback_data(run_id: str):
    """Get resampled playback data for a run."""
    run = _repo().get_run(run_id)
    if run is None:
        return _not_found(f"Run {run_id}")

    try:
        start_time = float(request.args.get("start_time", 0.0))
        end_time = request.args.get("end_time")
        end_time = float(end_time) if end_time is not None else None
        target_rate = float(request.args.get("target_rate", 10.0))
    except ValueError:
        return jsonify({"detail": "Invalid query parameter"}), 400

    # Validate target_rate
    target_rate = max(1.0, min(100.0, target_rate))

    try:
        response = build_playback_response(run, start_time, end_time, target_rate)
    except ValueError as e:
        return jsonify({"detail": str(e)}), 400
    return jsonify(response.model_dump())


def get_laps(run_id: str):
    run = _repo().get_run(run_id)
    if run is None:
        return _not_found(f"Run {run_id}")

    track = request.args.get("track")
    course_name = request.args.get("course")
    if not track or not course_name:
        return jsonify({"detail": "track and course are required"}), 400

    course = _catalog().get_course(track, course_name)
    if course is None:
        return _not_found(f"Course {track}/{course_name}")
    return jsonify(build_lap_timing_response(run, course).model_dump())


def get_speed_events(run_id: str):
    run = _repo().get_run(run_id)
    if run is None:
        return _not_found(f"Run {run_id}")

    unit = request.args.get("unit", DEFAULT_SPEED_UNIT)
    if unit not in SPEED_UNITS:
        return jsonify({"detail": f"Unknown speed unit: {unit}"}), 400

    try:
        options = SpeedEventOptions(
            smoothing_window=int(request.args.get("smoothing_window", 5)),
            min_swing=float(request.args.get("min_swing", 3.0)),
            min_separation_ms=float(request.args.get("min_separation_ms", 1000.0)),
            debounce_count=int(request.args.get("debounce_count", 2)),
            unit=unit,
        )
    except ValueError:
        return jsonify({"detail": "Invalid query parameter"}), 400

    response = build_speed_events_response(run, options)
    return jsonify(response.model_dump(mode="json"))


# ============================================================================
# Track Endpoints
# ============================================================================

def list_tracks():
    return jsonify({"tracks": {t.name: [c.name for c in t.courses] for t in _catalog().tracks()}})


def get_track(name: str):
    track = _catalog().get_track(name)
    if track is None:
        return _not_found(f"Track {name}")
    return jsonify(build_track_response(track).model_dump())


# ============================================================================
# Startup
# ============================================================================

def create_app(
    repository: Optional[RunRepository] = None,
    catalog: Optional[TrackCatalog] = None,
    data_folder: Optional[Path] = None,
) -> Flask:
    """Create and configure the Flask app."""
    app = Flask(__name__)

    if repository is None:
        repository = RunRepository()
        folder = data_folder if data_folder is not None else DEFAULT_DATA_FOLDER
        if folder.exists():
            repository.set_data_folder(folder)
            logger.info("Initialized repository with folder: %s", folder)
        else:
            logger.info("Data folder not found: %s", folder)

    app.config["REPOSITORY"] = repository
    app.config["CATALOG"] = catalog if catalog is not None else TrackCatalog()

    app.add_url_rule("/", view_func=root)
    app.add_url_rule("/health", view_func=health_check)
    app.add_url_rule("/folder", view_func=get_folder_info)
    app.add_url_rule("/runs", view_func=list_runs)
    app.add_url_rule("/runs/<run_id>", view_func=get_run_metadata)
    app.add_url_rule("/runs/<run_id>/data", view_func=get_run_data)
    app.add_url_rule("/runs/<run_id>/playback", view_func=get_playback_data)
    app.add_url_rule("/runs/<run_id>/laps", view_func=get_laps)
    app.add_url_rule("/runs/<run_id>/speed-events", view_func=get_speed_events)
    app.add_url_rule("/tracks", view_func=list_tracks)
    app.add_url_rule("/tracks/<name>", view_func=get_track)

    return app


if __name__ == "__main__":
    import sys

    # Allow specifying data folder as argument
    folder = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_DATA_FOLDER

    create_app(data_folder=folder).run(host="0.0.0.0", port=8000, debug=True)
