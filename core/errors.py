"""
Error Taxonomy for the Face Login Session

Every failure the session can report has an ErrorKind. Pipelines raise the
exceptions below; the SessionController catches them at its boundary and turns
them into a state transition plus a user-facing message, so none of them ever
reaches the presentation layer.

MATCH_REJECTED is a decision outcome, not a fault, so it has no exception.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Kinds of failure surfaced through the session's ``error_kind``."""

    MODEL_LOAD_ERROR = "model_load_error"
    CAMERA_ACCESS_ERROR = "camera_access_error"
    NO_FACE_DETECTED = "no_face_detected"
    NO_REGISTERED_TEMPLATE = "no_registered_template"
    MATCH_REJECTED = "match_rejected"
    VERIFICATION_ERROR = "verification_error"


class FaceAuthError(RuntimeError):
    """
    Base class for recoverable session failures.

    Attributes:
        kind: The ErrorKind reported to observers.
        user_message: Message safe to show to the end user.
    """

    kind: ErrorKind = ErrorKind.VERIFICATION_ERROR
    default_message: str = "Login verification failed."

    def __init__(
        self,
        user_message: Optional[str] = None,
        *,
        log_message: Optional[str] = None,
    ) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


class ModelLoadError(FaceAuthError):
    """Extractor failed to initialize. Fatal until retried from scratch."""

    kind = ErrorKind.MODEL_LOAD_ERROR
    default_message = "Failed to load face detection models."


class CameraAccessError(FaceAuthError):
    """Camera permission denied or device unavailable."""

    kind = ErrorKind.CAMERA_ACCESS_ERROR
    default_message = "Unable to access camera. Please allow permissions."


class NoFaceDetected(FaceAuthError):
    """No embedding could be extracted from the current frame."""

    kind = ErrorKind.NO_FACE_DETECTED
    default_message = "No face detected in live view."


class NoRegisteredTemplate(FaceAuthError):
    """Login attempted while the enrollment store is empty."""

    kind = ErrorKind.NO_REGISTERED_TEMPLATE
    default_message = "No registered face found. Please register first."


class IncompatibleTemplateError(NoRegisteredTemplate):
    """
    Stored record cannot be compared with the current extractor's output.

    Raised for unparsable records, records of the wrong dimensionality and
    records produced by a different extractor model.
    """

    default_message = (
        "Registered face was created with a different face model. "
        "Please register again."
    )


__all__ = [
    "ErrorKind",
    "FaceAuthError",
    "ModelLoadError",
    "CameraAccessError",
    "NoFaceDetected",
    "NoRegisteredTemplate",
    "IncompatibleTemplateError",
]
