"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used between the presentation layer and
the face login session API.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from core.session_controller import SessionController


# ============================================================
# Session Schemas
# ============================================================

class AttemptResultSchema(BaseModel):
    """Outcome of one login scanning cycle."""
    outcome: str = Field(..., description="'accept' or 'reject'")
    distance: Optional[float] = Field(None, description="Euclidean distance to the enrolled face")
    reason: Optional[str] = Field(None, description="Error kind when rejected")


class SessionStatusResponse(BaseModel):
    """Current session observables plus predicates derived from the state."""
    state: str = Field(..., description="Current session state")
    models_loaded: bool = Field(..., description="Whether the face models are loaded")
    error: Optional[str] = Field(None, description="User-facing error message")
    error_kind: Optional[str] = Field(None, description="Machine-readable error kind")
    distance: Optional[float] = Field(None, description="Distance of the last login attempt")
    notice: Optional[str] = Field(None, description="Out-of-band confirmation message")
    detection_box: Optional[List[int]] = Field(
        None, description="[x1, y1, x2, y2] of the last captured face"
    )
    last_result: Optional[AttemptResultSchema] = Field(None, description="Last login result")
    sequence: int = Field(0, description="Monotonic change counter")
    timestamp: str = Field(..., description="ISO timestamp of the last change")
    is_loading: bool = False
    is_camera_ready: bool = False
    is_scanning: bool = False
    is_success: bool = False
    is_failure: bool = False
    busy: bool = Field(False, description="Whether an operation is in flight")
    camera_live: bool = Field(False, description="Whether a live camera stream is attached")
    threshold: float = Field(..., description="Match threshold in use")

    @classmethod
    def from_controller(cls, controller: SessionController) -> "SessionStatusResponse":
        data = controller.snapshot().to_dict()
        data.update(
            busy=controller.is_busy,
            camera_live=controller.has_live_stream,
            threshold=controller.threshold,
        )
        return cls(**data)


class ActionResponse(BaseModel):
    """Response to a session operation."""
    accepted: bool = Field(..., description="Whether the operation ran (False = ignored/rejected)")
    session: SessionStatusResponse


class EnrollmentInfo(BaseModel):
    """Metadata about the enrolled face. Never contains embedding values."""
    enrolled: bool = Field(..., description="Whether a face is enrolled")
    compatible: bool = Field(True, description="Whether the record matches the current model")
    embedding_dim: Optional[int] = Field(None, description="Embedding dimensionality")
    created_at: Optional[str] = Field(None, description="ISO timestamp of enrollment")
    extractor_id: Optional[str] = Field(None, description="Model that produced the embedding")
    message: Optional[str] = Field(None, description="Why the record is unusable, if it is")


class RegisterResponse(ActionResponse):
    """Response to a registration capture."""
    enrollment: Optional[EnrollmentInfo] = Field(None, description="Stored enrollment, if any")


class LoginResponse(ActionResponse):
    """Response to a login capture."""
    result: Optional[AttemptResultSchema] = Field(None, description="Login result, if the capture ran")


class EventLogResponse(BaseModel):
    """Session event log, oldest first."""
    entries: List[str] = Field(default_factory=list)
    total: int = Field(0, description="Number of entries returned")


class ClearEnrollmentResponse(BaseModel):
    """Response for enrollment deletion."""
    success: bool = Field(..., description="Whether a record was removed")
    message: str = Field(..., description="Status message")


# ============================================================
# System Schemas
# ============================================================

class HealthResponse(BaseModel):
    """Response for health check endpoint."""
    status: str = Field(..., description="'healthy' or 'degraded'")
    models_loaded: bool = Field(..., description="Whether the face models are loaded")
    camera_live: bool = Field(..., description="Whether a live camera stream is attached")
    state: str = Field(..., description="Current session state")
    enrolled: bool = Field(..., description="Whether a face is enrolled")
