"""
Core Module for the Face Login System

This package contains the session controller that drives face login, plus
the collaborators it coordinates.

Main components:
    - config: Configuration loading and management
    - errors: Error taxonomy (ErrorKind and session exceptions)
    - face_embedder: Face embedding extraction (insightface / facenet-pytorch)
    - camera: Camera capability (OpenCV)
    - enrollment_store: Single-slot enrollment storage (SQLite)
    - matching: Euclidean match policy
    - session_state: Session states, attempt results and snapshots
    - session_controller: The login session state machine

Usage:
    from core.session_controller import build_session_controller
    controller = build_session_controller()
"""

from core.config import (
    get_config,
    get_section,
    get_extractor_config,
    get_camera_config,
    get_matching_config,
    get_storage_config,
    get_session_config,
    get_api_config,
    get_server_config,
)

from core.errors import (
    ErrorKind,
    FaceAuthError,
    ModelLoadError,
    CameraAccessError,
    NoFaceDetected,
    NoRegisteredTemplate,
    IncompatibleTemplateError,
)

from core.face_embedder import (
    EmbeddingExtractor,
    FaceEmbedder,
    FaceEmbedding,
    StubEmbeddingExtractor,
)

from core.camera import (
    CameraCapability,
    CameraConstraints,
    StreamHandle,
    OpenCVCamera,
    StubCamera,
)

from core.enrollment_store import (
    EnrollmentStore,
    EnrollmentRecord,
    get_enrollment_store,
)

from core.matching import (
    MatchOutcome,
    MatchResult,
    MatchPolicy,
    EuclideanMatchPolicy,
    DEFAULT_THRESHOLD,
)

from core.session_state import (
    SessionState,
    AttemptResult,
    SessionSnapshot,
)

from core.session_controller import (
    SessionController,
    build_session_controller,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_extractor_config",
    "get_camera_config",
    "get_matching_config",
    "get_storage_config",
    "get_session_config",
    "get_api_config",
    "get_server_config",
    # Errors
    "ErrorKind",
    "FaceAuthError",
    "ModelLoadError",
    "CameraAccessError",
    "NoFaceDetected",
    "NoRegisteredTemplate",
    "IncompatibleTemplateError",
    # Embedding extraction
    "EmbeddingExtractor",
    "FaceEmbedder",
    "FaceEmbedding",
    "StubEmbeddingExtractor",
    # Camera
    "CameraCapability",
    "CameraConstraints",
    "StreamHandle",
    "OpenCVCamera",
    "StubCamera",
    # Enrollment
    "EnrollmentStore",
    "EnrollmentRecord",
    "get_enrollment_store",
    # Matching
    "MatchOutcome",
    "MatchResult",
    "MatchPolicy",
    "EuclideanMatchPolicy",
    "DEFAULT_THRESHOLD",
    # Session
    "SessionState",
    "AttemptResult",
    "SessionSnapshot",
    "SessionController",
    "build_session_controller",
]
