"""Shared state definitions for the face login session."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from core.errors import ErrorKind
from core.matching.interfaces import MatchOutcome


class SessionState(str, enum.Enum):
    """
    Session states:

    1. IDLE              - Nothing running (initial, and after models load)
    2. LOADING_MODELS    - Extractor warm-up in progress
    3. CAMERA_PERMISSION - Camera requested, waiting for the stream
    4. CAMERA_READY      - Live stream attached, waiting for the user
    5. SCANNING          - Capture + extraction + decision in progress
    6. SUCCESS           - Login accepted
    7. FAILURE           - Login rejected or a session step failed
    """
    IDLE = "idle"
    LOADING_MODELS = "loading_models"
    CAMERA_PERMISSION = "camera_permission"
    CAMERA_READY = "camera_ready"
    SCANNING = "scanning"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one login scanning cycle. Not persisted."""

    outcome: MatchOutcome
    distance: Optional[float] = None
    reason: Optional[ErrorKind] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is MatchOutcome.ACCEPT


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Read-only view of the session observables at one point in time.

    The boolean predicates are derived from ``state`` and never stored.
    """

    state: SessionState
    models_loaded: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    distance: Optional[float] = None
    notice: Optional[str] = None
    detection_box: Optional[Tuple[int, int, int, int]] = None
    last_result: Optional[AttemptResult] = None
    sequence: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.LOADING_MODELS

    @property
    def is_camera_ready(self) -> bool:
        return self.state is SessionState.CAMERA_READY

    @property
    def is_scanning(self) -> bool:
        return self.state is SessionState.SCANNING

    @property
    def is_success(self) -> bool:
        return self.state is SessionState.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.state is SessionState.FAILURE

    @property
    def has_result(self) -> bool:
        return self.state in (SessionState.SUCCESS, SessionState.FAILURE)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation including the derived predicates."""
        result = None
        if self.last_result is not None:
            result = {
                "outcome": self.last_result.outcome.value,
                "distance": self.last_result.distance,
                "reason": self.last_result.reason.value if self.last_result.reason else None,
            }
        return {
            "state": self.state.value,
            "models_loaded": self.models_loaded,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "distance": self.distance,
            "notice": self.notice,
            "detection_box": list(self.detection_box) if self.detection_box else None,
            "last_result": result,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "is_loading": self.is_loading,
            "is_camera_ready": self.is_camera_ready,
            "is_scanning": self.is_scanning,
            "is_success": self.is_success,
            "is_failure": self.is_failure,
        }


__all__ = ["SessionState", "AttemptResult", "SessionSnapshot"]
