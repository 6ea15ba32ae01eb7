"""
Tests for the session's supporting components.

Covers:
- Configuration loading
- FaceEmbedder backend resolution and load errors
- StubEmbeddingExtractor scripted results
- Camera constraints, stub camera and JPEG encoding
- Detection box overlay

Run with: pytest tests/test_components.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import core.config as config_module
import core.face_embedder as face_embedder
from core.camera import CameraConstraints, StubCamera, encode_jpeg
from core.config import get_project_root, get_server_config, load_config, resolve_path
from core.errors import CameraAccessError, ErrorKind, ModelLoadError, NoRegisteredTemplate
from core.face_embedder import FaceEmbedder, StubEmbeddingExtractor
from core.ui_overlay import draw_detection_box


class TestConfig:
    """Tests for core.config."""

    def test_project_root_has_config(self):
        assert (get_project_root() / "config.yaml").exists()

    def test_default_config_sections(self):
        """The shipped config carries every section the session reads."""
        config = load_config()
        for section in ("extractor", "camera", "matching", "storage", "session"):
            assert section in config
        assert config["matching"]["threshold"] == 0.55
        assert config["storage"]["key"] == "face_descriptor_demo"
        assert config["matching"]["model_thresholds"]["buffalo_l"] == 1.1
        assert config["extractor"]["model"] in config["matching"]["model_thresholds"]

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("matching:\n  threshold: 0.4\n", encoding="utf-8")
        assert load_config(str(path)) == {"matching": {"threshold": 0.4}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_env_override(self, tmp_path, monkeypatch):
        """FACE_LOGIN_CONFIG points the loader at another file."""
        path = tmp_path / "env.yaml"
        path.write_text("camera:\n  device_id: 3\n", encoding="utf-8")
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(path))
        assert load_config() == {"camera": {"device_id": 3}}

    def test_defaults_fill_missing_keys(self, tmp_path, monkeypatch):
        """Keys absent from the file fall back to the built-in defaults."""
        path = tmp_path / "partial.yaml"
        path.write_text("session:\n  login_delay_sec: 0.2\n", encoding="utf-8")
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(path))
        monkeypatch.setattr(config_module, "_config_instance", None)

        config = config_module.get_config()

        assert config["session"]["login_delay_sec"] == 0.2
        assert config["session"]["register_delay_sec"] == 0.5
        assert config["matching"]["threshold"] == 0.55
        assert config_module.DEFAULTS["session"]["login_delay_sec"] == 1.5

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_resolve_path(self, tmp_path):
        assert resolve_path("storage/x.sqlite") == get_project_root() / "storage" / "x.sqlite"
        assert resolve_path(tmp_path) == tmp_path

    @pytest.mark.parametrize("base_url, expected", [
        ("http://localhost:8000", {"host": "0.0.0.0", "port": 8000}),
        ("http://192.168.1.20:9000/", {"host": "192.168.1.20", "port": 9000}),
        ("https://auth.example.com", {"host": "auth.example.com", "port": 8000}),
    ])
    def test_server_config(self, monkeypatch, base_url, expected):
        monkeypatch.setattr(config_module, "get_api_config", lambda: {"base_url": base_url})
        assert get_server_config() == expected


class TestErrors:
    """Tests for the session error types."""

    def test_default_user_message(self):
        err = CameraAccessError()
        assert err.kind is ErrorKind.CAMERA_ACCESS_ERROR
        assert err.user_message == "Unable to access camera. Please allow permissions."

    def test_log_message_kept_separate(self):
        """Diagnostic detail never replaces the user-facing message."""
        err = NoRegisteredTemplate(log_message="store empty")
        assert str(err) == "store empty"
        assert err.user_message == "No registered face found. Please register first."


class TestFaceEmbedder:
    """Tests for FaceEmbedder without a recognition backend."""

    @pytest.fixture
    def no_backends(self, monkeypatch):
        monkeypatch.setattr(face_embedder, "_INSIGHTFACE_AVAILABLE", False)
        monkeypatch.setattr(face_embedder, "_FACENET_AVAILABLE", False)

    def test_no_backend_fails_to_load(self, no_backends):
        embedder = FaceEmbedder({"backend": "auto"})
        assert embedder.backend is None
        with pytest.raises(ModelLoadError):
            embedder.load_model()
        assert embedder.is_loaded is False

    def test_requested_backend_missing(self, no_backends):
        embedder = FaceEmbedder({"backend": "insightface"})
        with pytest.raises(ModelLoadError):
            embedder.load_model()

    def test_model_id(self, no_backends):
        embedder = FaceEmbedder({"backend": "facenet", "model": "vggface2", "embedding_dim": 512})
        assert embedder.model_id == "facenet/vggface2"
        assert embedder.embedding_dim == 512

    def test_detect_loads_model_first(self, no_backends):
        """detect() loads the model on first use and surfaces load errors."""
        embedder = FaceEmbedder({"backend": "insightface"})
        with pytest.raises(ModelLoadError):
            embedder.detect(np.zeros((480, 640, 3), dtype=np.uint8))


class TestStubEmbeddingExtractor:
    """Tests for the scripted extractor."""

    def test_default_and_queue(self):
        stub = StubEmbeddingExtractor(default=[0.1] * 4)
        stub.queue([0.5] * 4, None, ValueError("boom"))
        frame = np.zeros((100, 200, 3), dtype=np.uint8)

        first = stub.detect(frame)
        assert np.allclose(first.embedding, 0.5)
        assert first.bbox == (50, 25, 150, 75)
        assert stub.detect(frame) is None
        with pytest.raises(ValueError):
            stub.detect(frame)
        assert np.allclose(stub.detect(frame).embedding, 0.1)
        assert stub.detect_calls == 4

    def test_embedding_dim_from_default(self):
        assert StubEmbeddingExtractor(default=[0.0] * 16).embedding_dim == 16
        assert StubEmbeddingExtractor().embedding_dim == 128

    def test_fail_load(self):
        stub = StubEmbeddingExtractor(fail_load=True)
        with pytest.raises(ModelLoadError):
            stub.load_model()
        assert stub.load_calls == 1


class TestCamera:
    """Tests for camera helpers and the stub camera."""

    def test_constraints_from_config(self):
        constraints = CameraConstraints.from_config({"device_id": 2, "width": 320})
        assert constraints.device_id == 2
        assert constraints.width == 320
        assert constraints.height == 480

    def test_constraints_from_none(self):
        assert CameraConstraints.from_config(None) == CameraConstraints()

    def test_stub_camera_denied(self):
        camera = StubCamera(deny=True)
        with pytest.raises(CameraAccessError):
            camera.acquire(CameraConstraints())
        assert camera.acquire_calls == 1

    def test_stub_stream_release(self):
        stream = StubCamera().acquire(CameraConstraints(width=64, height=32))
        assert stream.is_live
        assert stream.read_frame().shape == (32, 64, 3)
        stream.release()
        assert not stream.is_live
        assert stream.read_frame() is None

    def test_encode_jpeg(self):
        data = encode_jpeg(np.zeros((32, 32, 3), dtype=np.uint8))
        assert isinstance(data, bytes)
        assert data[:2] == b"\xff\xd8"


class TestOverlay:
    """Tests for draw_detection_box."""

    def test_draws_in_place(self):
        frame = np.zeros((100, 100, 3), dtype=np.uint8)
        out = draw_detection_box(frame, (10, 10, 50, 50), label="face")
        assert out is frame
        assert frame.any()

    def test_box_outside_frame_is_clipped(self):
        frame = np.zeros((50, 50, 3), dtype=np.uint8)
        draw_detection_box(frame, (-20, -20, 500, 500))
        assert frame.any()
