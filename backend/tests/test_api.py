"""
Tests for API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from racelog.api.tracks import course_schema
from racelog.main import create_app
from racelog.services.repository import RunRepository
from racelog.services.track_catalog import TrackCatalog
from racelog.utils.sample_data import (
    demo_course,
    encode_vbo,
    generate_oval_session,
    generate_test_data_set,
)


@pytest.fixture(scope="module")
def test_data_folder(tmp_path_factory):
    """Three-lap demo session in every supported format."""
    folder = tmp_path_factory.mktemp("runs")
    generate_test_data_set(folder, n_laps=3)
    return folder


@pytest.fixture
def client_with_data(test_data_folder):
    """Create test client with a repository over the demo folder."""
    app = create_app(repository=RunRepository(test_data_folder), catalog=TrackCatalog())
    return TestClient(app)


@pytest.fixture
def client():
    """Create test client without a data folder."""
    return TestClient(create_app(repository=RunRepository(), catalog=TrackCatalog()))


def _run_id(client, fmt):
    runs = client.get("/runs").json()
    return next(r["id"] for r in runs if r["source_format"] == fmt)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "racelog"
        assert data["status"] == "running"

    def test_health_endpoint(self, client_with_data, test_data_folder):
        response = client_with_data.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["run_count"] == 5
        assert data["data_folder"] == str(test_data_folder)


class TestFolderEndpoints:
    """Tests for folder management endpoints."""

    def test_get_folder_info_no_folder(self, client):
        response = client.get("/folder")

        assert response.status_code == 200
        assert response.json() == {"path": None, "run_count": 0}

    def test_set_folder(self, client, test_data_folder):
        response = client.post("/folder", json={"path": str(test_data_folder)})

        assert response.status_code == 200
        assert response.json()["run_count"] == 5

    def test_set_folder_nonexistent(self, client, tmp_path):
        response = client.post("/folder", json={"path": str(tmp_path / "missing")})
        assert response.status_code == 400

    def test_set_folder_not_a_directory(self, client, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        response = client.post("/folder", json={"path": str(path)})
        assert response.status_code == 400

    def test_rescan(self, client_with_data):
        response = client_with_data.post("/folder/rescan")
        assert response.status_code == 200
        assert response.json()["run_count"] == 5

    def test_rescan_without_folder(self, client):
        assert client.post("/folder/rescan").status_code == 400


class TestRunEndpoints:
    """Tests for run listing and data endpoints."""

    def test_list_runs(self, client_with_data):
        response = client_with_data.get("/runs")

        assert response.status_code == 200
        runs = response.json()
        assert sorted(r["source_format"] for r in runs) == ["aim", "alfano", "nmea", "ubx", "vbo"]

    def test_list_runs_empty(self, client):
        assert client.get("/runs").json() == []

    def test_get_run_metadata(self, client_with_data):
        run_id = _run_id(client_with_data, "ubx")
        response = client_with_data.get(f"/runs/{run_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == run_id
        assert data["canonical_version"] == "v1"
        assert data["recorded_at"].startswith("2024-03-09T14:30:00")
        assert data["bounds"]["min_lat"] < data["bounds"]["max_lat"]
        assert [f["name"] for f in data["fields"]][:2] == ["Lat G", "Lon G"]

    def test_get_run_not_found(self, client_with_data):
        response = client_with_data.get("/runs/nonexistent")
        assert response.status_code == 404
        assert "Run not found" in response.json()["detail"]

    def test_get_run_data(self, client_with_data):
        run_id = _run_id(client_with_data, "nmea")
        data = client_with_data.get(f"/runs/{run_id}/data").json()

        n = data["metadata"]["sample_count"]
        assert len(data["timestamps"]) == n
        assert len(data["speed_mph"]) == n
        assert len(data["aux"]["Lat G"]) == n
        # Passthrough columns keep their header names
        assert data["aux"]["Water Temp"][0] == pytest.approx(55.0)

    def test_get_playback_data(self, client_with_data):
        run_id = _run_id(client_with_data, "vbo")
        response = client_with_data.get(
            f"/runs/{run_id}/playback",
            params={"start_time": 0, "end_time": 2000, "target_rate": 5},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["duration_ms"] == 2000
        assert len(data["samples"]) == 11
        assert data["samples"][-1]["time"] == pytest.approx(2000.0)

    def test_playback_invalid_range(self, client_with_data):
        run_id = _run_id(client_with_data, "vbo")
        response = client_with_data.get(
            f"/runs/{run_id}/playback", params={"start_time": 5000, "end_time": 1000}
        )
        assert response.status_code == 400

    def test_playback_rate_limits(self, client_with_data):
        run_id = _run_id(client_with_data, "vbo")
        response = client_with_data.get(f"/runs/{run_id}/playback", params={"target_rate": 500})
        assert response.status_code == 422


class TestUpload:
    """Tests for POST /runs/upload."""

    def test_upload(self, client):
        content = encode_vbo(generate_oval_session(n_laps=1)).encode("utf-8")
        response = client.post("/runs/upload", params={"name": "my session"}, content=content)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "my session"
        assert data["source_format"] == "vbo"
        assert client.get(f"/runs/{data['id']}").status_code == 200
        assert client.get("/health").json()["run_count"] == 1

    def test_upload_empty_body(self, client):
        response = client.post("/runs/upload", params={"name": "x"}, content=b"")
        assert response.status_code == 400

    def test_upload_undecodable(self, client):
        response = client.post("/runs/upload", params={"name": "x"}, content=b"hello\n")
        assert response.status_code == 422
        assert "No valid GPS data" in response.json()["detail"]

    def test_upload_unknown_format(self, client):
        response = client.post(
            "/runs/upload", params={"name": "x", "format": "gpx"}, content=b"<gpx/>"
        )
        assert response.status_code == 400
        assert "Unknown log format" in response.json()["detail"]


class TestLapEndpoints:
    """Tests for lap timing endpoints."""

    def test_laps_against_catalog_course(self, client_with_data):
        run_id = _run_id(client_with_data, "ubx")
        response = client_with_data.get(
            f"/runs/{run_id}/laps", params={"track": "Demo Oval", "course": "Full"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["course"] == "Full"
        assert [lap["lap_number"] for lap in data["laps"]] == [1, 2, 3]
        for lap in data["laps"]:
            assert lap["sectors"] is not None
            assert lap["lap_time"].startswith("0:3")
        assert data["optimal"]["consistent"] is True
        assert data["optimal"]["optimal_time_ms"] <= data["optimal"]["fastest_lap_ms"] + 1e-6

    def test_laps_unknown_course(self, client_with_data):
        run_id = _run_id(client_with_data, "ubx")
        response = client_with_data.get(
            f"/runs/{run_id}/laps", params={"track": "Demo Oval", "course": "Reverse"}
        )
        assert response.status_code == 404

    def test_laps_unknown_run(self, client_with_data):
        response = client_with_data.get(
            "/runs/nonexistent/laps", params={"track": "Demo Oval", "course": "Full"}
        )
        assert response.status_code == 404

    def test_laps_with_course_body(self, client_with_data):
        run_id = _run_id(client_with_data, "aim")
        body = course_schema(demo_course(with_sectors=False)).model_dump()
        response = client_with_data.post(f"/runs/{run_id}/laps", json=body)

        assert response.status_code == 200
        data = response.json()
        assert len(data["laps"]) == 3
        assert all(lap["sectors"] is None for lap in data["laps"])
        assert data["optimal"] is None

    def test_degenerate_line_rejected(self, client_with_data):
        run_id = _run_id(client_with_data, "aim")
        point = {"lat": 28.4127, "lon": -81.3797}
        body = {"name": "Bad", "start_finish": {"a": point, "b": point}}
        response = client_with_data.post(f"/runs/{run_id}/laps", json=body)
        assert response.status_code == 422


class TestSpeedEventEndpoints:
    def test_speed_events(self, client_with_data):
        run_id = _run_id(client_with_data, "vbo")
        response = client_with_data.get(f"/runs/{run_id}/speed-events", params={"unit": "kph"})

        assert response.status_code == 200
        data = response.json()
        assert data["unit"] == "kph"
        types = [e["type"] for e in data["events"]]
        assert types[0] == "valley"
        assert all(a != b for a, b in zip(types, types[1:]))

    def test_unknown_unit(self, client_with_data):
        run_id = _run_id(client_with_data, "vbo")
        response = client_with_data.get(f"/runs/{run_id}/speed-events", params={"unit": "knots"})
        assert response.status_code == 400


class TestTrackEndpoints:
    def test_list_tracks(self, client):
        response = client.get("/tracks")
        assert response.status_code == 200
        assert response.json()["tracks"]["Demo Oval"] == ["Full", "Start Only"]

    def test_get_track(self, client):
        data = client.get("/tracks/Demo Oval").json()
        full, start_only = data["courses"]
        assert full["sector_3"] is not None
        assert start_only["sector_2"] is None

    def test_get_track_not_found(self, client):
        assert client.get("/tracks/Nowhere").status_code == 404
