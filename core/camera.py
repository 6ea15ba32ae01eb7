"""
Camera Capture Module

Provides the camera capability used by the login session: acquiring a live
stream from a capture device and reading frames from it.

A CameraCapability hands out StreamHandle objects. The session acquires one
handle and keeps it for its whole lifetime, reading frames from it on every
capture and releasing it on teardown.

Usage:
    from core.camera import OpenCVCamera, CameraConstraints

    camera = OpenCVCamera()
    stream = camera.acquire(CameraConstraints(device_id=0))
    frame = stream.read_frame()
    stream.release()
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from core.errors import CameraAccessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConstraints:
    """Requested capture parameters."""
    device_id: int = 0
    width: int = 640
    height: int = 480
    fps: int = 30

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "CameraConstraints":
        """Build constraints from the ``camera`` config section."""
        config = config or {}
        return cls(
            device_id=int(config.get("device_id", 0)),
            width=int(config.get("width", 640)),
            height=int(config.get("height", 480)),
            fps=int(config.get("fps", 30)),
        )


class StreamHandle(ABC):
    """A live frame source. Reads and release block."""

    @property
    @abstractmethod
    def is_live(self) -> bool:
        """True while the stream can deliver frames."""

    @abstractmethod
    def read_frame(self) -> Optional[np.ndarray]:
        """Read the current frame (BGR, uint8), or None if none is available."""

    @abstractmethod
    def release(self) -> None:
        """Release the underlying device. Safe to call more than once."""


class CameraCapability(ABC):
    """Source of camera streams."""

    @abstractmethod
    def acquire(self, constraints: CameraConstraints) -> StreamHandle:
        """
        Open a stream matching the constraints.

        Raises:
            CameraAccessError: If permission is denied or the device is unavailable.
        """


# ============================================================
# OpenCV implementation
# ============================================================


class OpenCVStream(StreamHandle):
    """StreamHandle over a cv2.VideoCapture."""

    def __init__(self, capture: cv2.VideoCapture, device_id: int):
        self._cap: Optional[cv2.VideoCapture] = capture
        self.device_id = device_id

    @property
    def is_live(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def read_frame(self) -> Optional[np.ndarray]:
        if not self.is_live:
            return None

        ret, frame = self._cap.read()
        if not ret:
            return None
        return frame

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Camera {self.device_id} released")


class OpenCVCamera(CameraCapability):
    """Camera capability backed by OpenCV's VideoCapture."""

    def acquire(self, constraints: CameraConstraints) -> StreamHandle:
        cap = cv2.VideoCapture(constraints.device_id)

        if not cap.isOpened():
            cap.release()
            raise CameraAccessError(
                log_message=f"Failed to open camera {constraints.device_id}"
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        cap.set(cv2.CAP_PROP_FPS, constraints.fps)

        logger.info(
            f"Opened camera {constraints.device_id} at "
            f"{constraints.width}x{constraints.height}"
        )
        return OpenCVStream(cap, constraints.device_id)


def encode_jpeg(frame: np.ndarray, quality: int = 85) -> bytes:
    """
    Encode a BGR frame as JPEG bytes.

    Raises:
        ValueError: If encoding fails.
    """
    success, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not success:
        raise ValueError("Failed to encode frame")
    return buffer.tobytes()


# ============================================================
# Stub Implementation (tests and hardware-free demos)
# ============================================================


class StubStream(StreamHandle):
    """Stream that returns a constant frame."""

    def __init__(self, frame: np.ndarray):
        self.frame = frame
        self.released = False
        self.fail_reads = False

    @property
    def is_live(self) -> bool:
        return not self.released

    def read_frame(self) -> Optional[np.ndarray]:
        if self.released or self.fail_reads:
            return None
        return self.frame.copy()

    def release(self) -> None:
        self.released = True


class StubCamera(CameraCapability):
    """
    Camera capability that needs no hardware.

    Args:
        deny: If True, acquire() raises CameraAccessError (permission denied).
              Can be flipped later to simulate the user granting permission.
    """

    def __init__(self, deny: bool = False):
        self.deny = deny
        self.acquire_calls = 0
        self.streams: List[StubStream] = []

    def acquire(self, constraints: CameraConstraints) -> StreamHandle:
        self.acquire_calls += 1
        if self.deny:
            raise CameraAccessError(log_message="Stub camera: permission denied")

        frame = np.zeros((constraints.height, constraints.width, 3), dtype=np.uint8)
        stream = StubStream(frame)
        self.streams.append(stream)
        return stream
