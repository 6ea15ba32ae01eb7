"""
Tests for API Endpoints

This test suite verifies:
- Health check and root endpoints
- Session endpoints (initialize, camera, register, login, reset, log, frame)
- Enrollment endpoints (get, delete)
- WebSocket session stream (ordered snapshots)

The application is served with an injected session controller built on the
stub extractor and stub camera, so no model or webcam is needed.

Run with: pytest tests/test_api_endpoints.py -v
"""

import os
import sqlite3
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api.app import create_app
from core.camera import StubCamera
from core.enrollment_store import EnrollmentStore
from core.face_embedder import StubEmbeddingExtractor
from core.session_controller import SessionController


DIM = 128


@pytest.fixture
def extractor():
    return StubEmbeddingExtractor(default=np.zeros(DIM, dtype=np.float32))


@pytest.fixture
def camera():
    return StubCamera()


@pytest.fixture
def store(tmp_path):
    return EnrollmentStore(
        db_path=tmp_path / "enrollment.sqlite",
        expected_dim=DIM,
        extractor_id="stub/fixed",
    )


@pytest.fixture
def controller(extractor, camera, store):
    return SessionController(
        extractor, camera, store, register_delay_sec=0.0, login_delay_sec=0.0
    )


@pytest.fixture
def client(controller, store):
    """Client for an app whose session starts idle."""
    app = create_app(controller=controller, store=store, autostart=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def ready_client(controller, store):
    """Client for an app that loads models and opens the camera at startup."""
    app = create_app(controller=controller, store=store, autostart=True)
    with TestClient(app) as c:
        yield c


class TestAppFactory:
    """Tests for create_app()."""

    def test_controller_requires_store(self, controller):
        """An injected controller needs its store too."""
        with pytest.raises(ValueError):
            create_app(controller=controller)

    def test_shutdown_releases_camera(self, controller, store, camera):
        """Leaving the app lifespan tears the session down."""
        app = create_app(controller=controller, store=store, autostart=True)
        with TestClient(app):
            assert controller.has_live_stream
        assert controller.is_closed is True
        assert camera.streams[0].released is True


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_degraded_when_idle(self, client):
        """Without models and camera the API reports degraded."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "degraded"
        assert data["models_loaded"] is False
        assert data["camera_live"] is False
        assert data["state"] == "idle"
        assert data["enrolled"] is False

    def test_health_healthy_after_autostart(self, ready_client):
        """With models loaded and the camera live the API is healthy."""
        data = ready_client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["state"] == "camera_ready"

    def test_root_endpoint(self, client):
        """Test root endpoint returns API info."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


class TestSessionEndpoints:
    """Tests for the /session endpoints."""

    def test_get_session(self, client):
        """GET /session returns the observables."""
        data = client.get("/session").json()
        assert data["state"] == "idle"
        assert data["models_loaded"] is False
        assert data["error"] is None
        assert data["threshold"] == pytest.approx(0.55)

    def test_initialize_and_camera(self, client):
        """Initialize then open the camera: CAMERA_READY."""
        response = client.post("/session/initialize")
        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is True
        assert data["session"]["models_loaded"] is True

        data = client.post("/session/camera").json()
        assert data["accepted"] is True
        assert data["session"]["state"] == "camera_ready"
        assert data["session"]["is_camera_ready"] is True
        assert data["session"]["camera_live"] is True

    def test_camera_denied(self, client, camera):
        """Denied permission is session state, not an HTTP error."""
        camera.deny = True
        response = client.post("/session/camera")
        assert response.status_code == 200

        session = response.json()["session"]
        assert session["state"] == "failure"
        assert session["error_kind"] == "camera_access_error"
        assert session["is_failure"] is True

    def test_register_then_login(self, ready_client):
        """Register then log in with the same face: success at distance 0."""
        data = ready_client.post("/session/register").json()
        assert data["accepted"] is True
        assert data["enrollment"]["enrolled"] is True
        assert data["enrollment"]["embedding_dim"] == DIM
        assert data["session"]["state"] == "camera_ready"
        assert data["session"]["notice"]

        data = ready_client.post("/session/login").json()
        assert data["accepted"] is True
        assert data["result"]["outcome"] == "accept"
        assert data["result"]["distance"] == 0.0
        assert data["session"]["state"] == "success"
        assert data["session"]["is_success"] is True

    def test_login_without_enrollment(self, ready_client):
        """Login with nothing enrolled fails with no registered template."""
        data = ready_client.post("/session/login").json()
        assert data["result"]["outcome"] == "reject"
        assert data["result"]["reason"] == "no_registered_template"
        assert data["session"]["state"] == "failure"
        assert "no registered face found" in data["session"]["error"].lower()

    def test_login_mismatch(self, ready_client, extractor):
        """A distant face is rejected with its distance."""
        ready_client.post("/session/register")
        live = np.zeros(DIM, dtype=np.float32)
        live[0] = 0.7
        extractor.queue(live)

        data = ready_client.post("/session/login").json()
        assert data["result"]["outcome"] == "reject"
        assert data["result"]["reason"] == "match_rejected"
        assert data["session"]["distance"] == pytest.approx(0.7, abs=1e-6)
        assert "0.700" in data["session"]["error"]

    def test_capture_before_ready_ignored(self, client):
        """Captures before the camera is ready are not accepted."""
        data = client.post("/session/login").json()
        assert data["accepted"] is False
        assert data["result"] is None
        assert data["session"]["state"] == "idle"

    def test_reset(self, ready_client):
        """Reset after a failed login returns to camera_ready."""
        ready_client.post("/session/login")
        data = ready_client.post("/session/reset").json()
        assert data["accepted"] is True
        assert data["session"]["state"] == "camera_ready"
        assert data["session"]["error"] is None
        assert data["session"]["distance"] is None

    def test_event_log(self, ready_client):
        """The event log records operations and honors limit."""
        data = ready_client.get("/session/log").json()
        assert data["total"] == len(data["entries"])
        assert any("Camera ready" in entry for entry in data["entries"])

        data = ready_client.get("/session/log", params={"limit": 1}).json()
        assert data["total"] == 1

    def test_frame_requires_camera(self, client):
        """No live camera: 404."""
        response = client.get("/session/frame")
        assert response.status_code == 404

    def test_frame_jpeg(self, ready_client):
        """With a live camera the frame is served as JPEG."""
        ready_client.post("/session/register")
        response = ready_client.get("/session/frame")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.content[:2] == b"\xff\xd8"


class TestEnrollmentEndpoints:
    """Tests for the /enrollment endpoints."""

    def test_get_enrollment_empty(self, client):
        data = client.get("/enrollment").json()
        assert data["enrolled"] is False

    def test_get_enrollment_after_register(self, ready_client):
        ready_client.post("/session/register")
        data = ready_client.get("/enrollment").json()
        assert data["enrolled"] is True
        assert data["compatible"] is True
        assert data["embedding_dim"] == DIM
        assert data["extractor_id"] == "stub/fixed"
        assert "embedding" not in data

    def test_incompatible_enrollment(self, client, store):
        """A record from another model is reported as unusable."""
        other = EnrollmentStore(db_path=store.db_path, extractor_id="other/model")
        other.put(np.zeros(DIM, dtype=np.float32))
        other.close()

        data = client.get("/enrollment").json()
        assert data["enrolled"] is True
        assert data["compatible"] is False
        assert data["message"]

    def test_unreadable_enrollment_value(self, ready_client, store):
        """A stored number too large for float32 is reported, not a server error."""
        ready_client.post("/session/register")
        conn = sqlite3.connect(str(store.db_path))
        try:
            conn.execute(
                "UPDATE enrollments SET embedding = ? WHERE key = ?",
                ("[1" + "0" * 400 + "]", store.key),
            )
            conn.commit()
        finally:
            conn.close()

        response = ready_client.get("/enrollment")
        assert response.status_code == 200
        assert response.json()["compatible"] is False

        response = ready_client.get("/health")
        assert response.status_code == 200
        assert response.json()["enrolled"] is False

        data = ready_client.post("/session/login").json()
        assert data["result"]["reason"] == "no_registered_template"

    def test_delete_enrollment(self, ready_client):
        """After DELETE, login fails with no registered template."""
        ready_client.post("/session/register")

        data = ready_client.delete("/enrollment").json()
        assert data["success"] is True
        assert ready_client.delete("/enrollment").json()["success"] is False

        data = ready_client.post("/session/login").json()
        assert data["result"]["reason"] == "no_registered_template"


class TestSessionWebSocket:
    """Tests for the /ws/session stream."""

    def test_initial_snapshot(self, ready_client):
        """The current snapshot is sent on connect."""
        with ready_client.websocket_connect("/ws/session") as websocket:
            message = websocket.receive_json()
            assert message["type"] == "session"
            assert message["data"]["state"] == "camera_ready"

    def test_login_updates_in_order(self, ready_client):
        """Scanning is streamed before the login result."""
        with ready_client.websocket_connect("/ws/session") as websocket:
            websocket.receive_json()
            ready_client.post("/session/login")

            scanning = websocket.receive_json()["data"]
            result = websocket.receive_json()["data"]

        assert scanning["state"] == "scanning"
        assert result["state"] == "failure"
        assert result["sequence"] > scanning["sequence"]
