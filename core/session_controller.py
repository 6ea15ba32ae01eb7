"""
Face Login Session Controller

This module drives one face login session: it loads the embedding model,
acquires the camera, runs capture pipelines for registration and login,
applies the match policy and publishes every state change to observers.

State machine (see core.session_state.SessionState):

    IDLE --initialize()--> LOADING_MODELS --ok--> IDLE (or CAMERA_READY)
                                          --error--> FAILURE
    IDLE --start_camera()--> CAMERA_PERMISSION --ok--> CAMERA_READY
                                               --denied--> FAILURE
    CAMERA_READY --capture_and_login()--> SCANNING --> SUCCESS | FAILURE
    CAMERA_READY --capture_and_register()--> SCANNING --> CAMERA_READY | FAILURE
    SUCCESS | FAILURE --reset()--> CAMERA_READY

A failed registration (no face) goes back to CAMERA_READY so the user can
retry in place. A failed login is terminal until reset().

Concurrency model:
    All operations run on one asyncio event loop. Blocking library calls
    (model load, camera open, frame read, extraction) run in worker threads
    through asyncio.to_thread. Session-mutating operations hold a lock:
    captures arriving while another operation is in flight are rejected,
    initialize() and start_camera() wait their turn.

Failures never propagate to the caller. Every failure path sets ``error``,
``error_kind`` and appends an event-log entry.

Usage:
    from core.session_controller import build_session_controller

    controller = build_session_controller()
    await controller.initialize()
    await controller.start_camera()
    await controller.capture_and_register()
    result = await controller.capture_and_login()
    controller.reset()
    await controller.close()
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from core.camera import CameraCapability, CameraConstraints, StreamHandle
from core.enrollment_store import EnrollmentRecord, EnrollmentStore
from core.errors import (
    CameraAccessError,
    ErrorKind,
    FaceAuthError,
    ModelLoadError,
    NoFaceDetected,
    NoRegisteredTemplate,
)
from core.face_embedder import EmbeddingExtractor, FaceEmbedding
from core.matching import EuclideanMatchPolicy, MatchOutcome, MatchPolicy
from core.session_state import AttemptResult, SessionSnapshot, SessionState

logger = logging.getLogger(__name__)

REGISTER_NO_FACE_MESSAGE = "No face detected. Try again."
REGISTER_FAILED_MESSAGE = "Registration failed."
LOGIN_FAILED_MESSAGE = "Login verification failed."
REGISTERED_NOTICE = "Face registered successfully! You can now verify."


class SessionController:
    """
    Coordinates extractor, camera, enrollment store and match policy for one
    login session, and exposes the session observables.

    Args:
        extractor: Embedding extractor (see core.face_embedder).
        camera: Camera capability (see core.camera).
        store: Enrollment store holding the reference embedding.
        policy: Match policy. Defaults to EuclideanMatchPolicy().
        constraints: Camera constraints passed to camera.acquire().
        register_delay_sec: Minimum time from capture_and_register() to its result.
        login_delay_sec: Minimum time from capture_and_login() to its result.
        max_log_entries: Event log capacity; oldest entries are dropped first.
        subscriber_queue_size: Snapshots buffered per observer; a slow observer
            loses its oldest snapshots first.
    """

    _RESULT_FIELDS = (
        "error",
        "error_kind",
        "distance",
        "notice",
        "detection_box",
        "last_result",
    )

    def __init__(
        self,
        extractor: EmbeddingExtractor,
        camera: CameraCapability,
        store: EnrollmentStore,
        policy: Optional[MatchPolicy] = None,
        *,
        constraints: Optional[CameraConstraints] = None,
        register_delay_sec: float = 0.5,
        login_delay_sec: float = 1.5,
        max_log_entries: int = 200,
        subscriber_queue_size: int = 64,
    ) -> None:
        self._extractor = extractor
        self._camera = camera
        self._store = store
        self._policy = policy or EuclideanMatchPolicy()
        self._constraints = constraints or CameraConstraints()
        self.register_delay_sec = max(0.0, float(register_delay_sec))
        self.login_delay_sec = max(0.0, float(login_delay_sec))

        self._lock = asyncio.Lock()
        self._frame_lock = asyncio.Lock()
        self._stream: Optional[StreamHandle] = None
        self._closed = False

        self._state = SessionState.IDLE
        self._models_loaded = False
        self._error: Optional[str] = None
        self._error_kind: Optional[ErrorKind] = None
        self._distance: Optional[float] = None
        self._notice: Optional[str] = None
        self._detection_box: Optional[Tuple[int, int, int, int]] = None
        self._last_result: Optional[AttemptResult] = None
        self._sequence = 0

        self._event_log: deque = deque(maxlen=max(1, int(max_log_entries)))
        self._subscribers: List[asyncio.Queue] = []
        self._subscriber_queue_size = max(1, int(subscriber_queue_size))

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def models_loaded(self) -> bool:
        return self._models_loaded

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self._error_kind

    @property
    def distance(self) -> Optional[float]:
        return self._distance

    @property
    def notice(self) -> Optional[str]:
        """Out-of-band confirmation, e.g. after a successful registration."""
        return self._notice

    @property
    def detection_box(self) -> Optional[Tuple[int, int, int, int]]:
        """Bounding box of the last captured face, for preview overlays."""
        return self._detection_box

    @property
    def last_result(self) -> Optional[AttemptResult]:
        return self._last_result

    @property
    def event_log(self) -> List[str]:
        """Session events, oldest first."""
        return list(self._event_log)

    @property
    def is_busy(self) -> bool:
        """True while an operation holds the session."""
        return self._lock.locked()

    @property
    def has_live_stream(self) -> bool:
        return self._stream is not None and self._stream.is_live

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def threshold(self) -> float:
        return self._policy.threshold

    def snapshot(self) -> SessionSnapshot:
        """Current observables as an immutable snapshot."""
        return SessionSnapshot(
            state=self._state,
            models_loaded=self._models_loaded,
            error=self._error,
            error_kind=self._error_kind,
            distance=self._distance,
            notice=self._notice,
            detection_box=self._detection_box,
            last_result=self._last_result,
            sequence=self._sequence,
        )

    def subscribe(self) -> "asyncio.Queue[SessionSnapshot]":
        """
        Register an observer.

        The returned queue receives the current snapshot immediately, then one
        snapshot per change, in the order the changes happen. When the queue
        is full the oldest snapshot is dropped to make room.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._subscriber_queue_size)
        queue.put_nowait(self.snapshot())
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[SessionSnapshot]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ------------------------------------------------------------------
    # Internal state handling
    # ------------------------------------------------------------------

    def _log(self, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        self._event_log.append(f"[{stamp}] {message}")
        logger.log(level, message)

    def _transition(self, state: SessionState, **changes: Any) -> None:
        """Apply a state change plus observable updates and publish it once."""
        unknown = set(changes) - set(self._RESULT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown session fields: {sorted(unknown)}")

        previous = self._state
        self._state = state
        for name, value in changes.items():
            setattr(self, f"_{name}", value)
        self._sequence += 1

        if previous is not state:
            logger.debug(f"Session state {previous.value} -> {state.value}")

        snapshot = self.snapshot()
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)

    def _clear_result_fields(self) -> Dict[str, Any]:
        return {name: None for name in self._RESULT_FIELDS}

    def _fail(
        self,
        exc: FaceAuthError,
        state: SessionState = SessionState.FAILURE,
        **changes: Any,
    ) -> None:
        """Record a failure: error, error kind, event-log entry, state."""
        if str(exc) != exc.user_message:
            logger.warning(f"{exc.kind.value}: {exc}")
        self._log(f"Error: {exc.user_message}", logging.WARNING)
        self._transition(state, error=exc.user_message, error_kind=exc.kind, **changes)

    async def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await asyncio.to_thread(stream.release)

    async def _pace(self, started: float, minimum: float) -> None:
        """Hold the result until at least ``minimum`` seconds have passed."""
        remaining = minimum - (asyncio.get_running_loop().time() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)

    def _capture_allowed(self, action: str) -> bool:
        """Guards shared by both capture operations. Never changes state."""
        if self._closed:
            self._log(f"{action} ignored: session closed")
            return False
        if self._lock.locked():
            self._log(f"{action} rejected: another operation is in progress", logging.WARNING)
            return False
        if not self._models_loaded:
            self._log(f"{action} ignored: face models not loaded")
            return False
        if self._state is not SessionState.CAMERA_READY or not self.has_live_stream:
            self._log(f"{action} ignored: camera not ready")
            return False
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """
        Warm up the embedding extractor.

        Returns:
            True if the models are loaded.
        """
        async with self._lock:
            if self._closed:
                self._log("Initialize ignored: session closed")
                return False
            if self._models_loaded:
                self._log("Face models already loaded")
                return True

            self._transition(SessionState.LOADING_MODELS, error=None, error_kind=None)
            self._log("Loading face models...")

            try:
                await asyncio.to_thread(self._extractor.load_model)
            except FaceAuthError as e:
                if self._closed:
                    return False
                self._fail(e if isinstance(e, ModelLoadError) else ModelLoadError(log_message=str(e)))
                return False
            except Exception as e:
                if self._closed:
                    return False
                logger.exception("Unexpected error while loading face models")
                self._fail(ModelLoadError(log_message=f"Model load failed: {e}"))
                return False

            if self._closed:
                return False

            self._models_loaded = True
            ready = SessionState.CAMERA_READY if self.has_live_stream else SessionState.IDLE
            self._transition(ready)
            self._log(f"Face models loaded ({self._extractor.model_id})")
            return True

    async def start_camera(self) -> bool:
        """
        Acquire the camera stream, or re-attach the one already held.

        Returns:
            True if the session reached CAMERA_READY.
        """
        async with self._lock:
            if self._closed:
                self._log("Start camera ignored: session closed")
                return False

            self._transition(SessionState.CAMERA_PERMISSION, **self._clear_result_fields())
            self._log("Requesting camera access...")

            if self.has_live_stream:
                self._transition(SessionState.CAMERA_READY)
                self._log("Re-attached existing camera stream")
                return True

            # A handle that stopped delivering frames is replaced
            await self._release_stream()

            try:
                stream = await asyncio.to_thread(self._camera.acquire, self._constraints)
            except FaceAuthError as e:
                if self._closed:
                    return False
                self._fail(e if isinstance(e, CameraAccessError) else CameraAccessError(log_message=str(e)))
                return False
            except Exception as e:
                if self._closed:
                    return False
                logger.exception("Unexpected error while opening the camera")
                self._fail(CameraAccessError(log_message=f"Camera error: {e}"))
                return False

            if self._closed:
                await asyncio.to_thread(stream.release)
                return False

            self._stream = stream
            self._transition(SessionState.CAMERA_READY)
            self._log("Camera ready")
            return True

    async def capture_and_register(self) -> Optional[EnrollmentRecord]:
        """
        Capture a face and store it as the enrolled reference.

        Overwrites any previous enrollment. On success the session returns to
        CAMERA_READY with a confirmation in ``notice``; on "no face" it returns
        to CAMERA_READY with an error so the user can retry.

        Returns:
            The stored EnrollmentRecord, or None if nothing was stored.
        """
        if not self._capture_allowed("Register"):
            return None

        async with self._lock:
            loop = asyncio.get_running_loop()
            started = loop.time()
            self._transition(SessionState.SCANNING, **self._clear_result_fields())
            self._log("Scanning face for registration...")

            try:
                face = await self._capture_face(REGISTER_NO_FACE_MESSAGE)
                record = await asyncio.to_thread(
                    self._store.put, face.embedding, extractor_id=self._extractor.model_id
                )
            except NoFaceDetected as e:
                await self._pace(started, self.register_delay_sec)
                if self._closed:
                    return None
                self._fail(e, state=SessionState.CAMERA_READY)
                return None
            except FaceAuthError as e:
                await self._pace(started, self.register_delay_sec)
                if self._closed:
                    return None
                if e.kind is ErrorKind.CAMERA_ACCESS_ERROR:
                    await self._release_stream()
                self._fail(e)
                return None
            except Exception as e:
                logger.exception("Registration failed")
                await self._pace(started, self.register_delay_sec)
                if self._closed:
                    return None
                self._fail(FaceAuthError(REGISTER_FAILED_MESSAGE, log_message=f"Registration failed: {e}"))
                return None

            await self._pace(started, self.register_delay_sec)
            if self._closed:
                return None

            self._transition(
                SessionState.CAMERA_READY,
                notice=REGISTERED_NOTICE,
                detection_box=face.bbox,
            )
            self._log(f"Face registered ({record.embedding_dim}-d embedding)")
            return record

    async def capture_and_login(self) -> Optional[AttemptResult]:
        """
        Capture a face and compare it against the enrolled reference.

        Returns:
            The AttemptResult of this scanning cycle, or None if the capture
            did not run (models not loaded, camera not ready, busy, closed).
        """
        if not self._capture_allowed("Login"):
            return None

        async with self._lock:
            loop = asyncio.get_running_loop()
            started = loop.time()
            self._transition(SessionState.SCANNING, **self._clear_result_fields())
            self._log("Scanning face for login...")

            try:
                record = await asyncio.to_thread(self._store.get)
                if record is None:
                    raise NoRegisteredTemplate()
                face = await self._capture_face()
                match = self._policy.compare(face.embedding, record.embedding)
            except FaceAuthError as e:
                await self._pace(started, self.login_delay_sec)
                if self._closed:
                    return None
                if e.kind is ErrorKind.CAMERA_ACCESS_ERROR:
                    await self._release_stream()
                result = AttemptResult(outcome=MatchOutcome.REJECT, reason=e.kind)
                self._fail(e, last_result=result)
                return result
            except Exception as e:
                logger.exception("Login verification failed")
                await self._pace(started, self.login_delay_sec)
                if self._closed:
                    return None
                result = AttemptResult(
                    outcome=MatchOutcome.REJECT,
                    reason=ErrorKind.VERIFICATION_ERROR,
                )
                self._fail(
                    FaceAuthError(LOGIN_FAILED_MESSAGE, log_message=f"Login failed: {e}"),
                    last_result=result,
                )
                return result

            await self._pace(started, self.login_delay_sec)
            if self._closed:
                return None

            if match.is_match:
                result = AttemptResult(outcome=MatchOutcome.ACCEPT, distance=match.distance)
                self._transition(
                    SessionState.SUCCESS,
                    distance=match.distance,
                    detection_box=face.bbox,
                    last_result=result,
                )
                self._log(f"Face verified (distance {match.distance:.3f})")
                return result

            result = AttemptResult(
                outcome=MatchOutcome.REJECT,
                distance=match.distance,
                reason=ErrorKind.MATCH_REJECTED,
            )
            message = f"Face mismatch (Distance: {match.distance:.3f})"
            self._log(f"Error: {message}", logging.WARNING)
            self._transition(
                SessionState.FAILURE,
                error=message,
                error_kind=ErrorKind.MATCH_REJECTED,
                distance=match.distance,
                detection_box=face.bbox,
                last_result=result,
            )
            return result

    def reset(self) -> bool:
        """
        Clear the last result and go back to CAMERA_READY.

        Callable from SUCCESS, FAILURE and CAMERA_READY. Clears error,
        distance, notice and the detection box. Keeps the camera stream.
        Without a live stream the session goes to IDLE instead, since
        CAMERA_READY would claim a camera that isn't there.

        Returns:
            True if the session was reset.
        """
        if self._closed:
            self._log("Reset ignored: session closed")
            return False
        if self._lock.locked():
            self._log("Reset ignored: an operation is in progress", logging.WARNING)
            return False
        if self._state not in (
            SessionState.SUCCESS,
            SessionState.FAILURE,
            SessionState.CAMERA_READY,
        ):
            self._log(f"Reset ignored in state {self._state.value}")
            return False

        target = SessionState.CAMERA_READY if self.has_live_stream else SessionState.IDLE
        self._transition(target, **self._clear_result_fields())
        self._log("Session reset")
        return True

    async def read_preview_frame(self) -> Optional[np.ndarray]:
        """
        Read the current camera frame for display.

        The stream itself is never handed out; callers get a frame copy.

        Returns:
            BGR frame, or None when no live stream is attached.
        """
        if self._closed or not self.has_live_stream:
            return None
        async with self._frame_lock:
            stream = self._stream
            if stream is None:
                return None
            return await asyncio.to_thread(stream.read_frame)

    async def close(self) -> None:
        """Tear the session down and release the camera stream."""
        if self._closed:
            return
        self._closed = True
        async with self._frame_lock:
            await self._release_stream()
        self._transition(SessionState.IDLE, **self._clear_result_fields())
        self._log("Session closed")

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Capture pipeline
    # ------------------------------------------------------------------

    async def _capture_face(self, no_face_message: Optional[str] = None) -> FaceEmbedding:
        """
        Read one frame from the live stream and extract its face embedding.

        Raises:
            CameraAccessError: If the stream delivers no frame.
            NoFaceDetected: If no face is found or the extractor fails.
        """
        async with self._frame_lock:
            stream = self._stream
            frame = await asyncio.to_thread(stream.read_frame) if stream is not None else None

        if frame is None:
            raise CameraAccessError(
                "Camera stopped delivering frames. Please restart the camera.",
                log_message="Stream returned no frame",
            )

        try:
            face = await asyncio.to_thread(self._extractor.detect, frame)
        except Exception as e:
            raise NoFaceDetected(no_face_message, log_message=f"Face detection error: {e}") from e

        if face is None:
            raise NoFaceDetected(no_face_message)
        return face


def build_session_controller(
    config: Optional[Dict[str, Any]] = None,
    extractor: Optional[EmbeddingExtractor] = None,
    camera: Optional[CameraCapability] = None,
    store: Optional[EnrollmentStore] = None,
) -> SessionController:
    """
    Create a SessionController from configuration.

    Args:
        config: Full configuration dict. If None, uses core.config.get_config().
        extractor: Override for the embedding extractor (default FaceEmbedder).
        camera: Override for the camera capability (default OpenCVCamera).
        store: Override for the enrollment store (default shared EnrollmentStore).

    Returns:
        A new SessionController.
    """
    if config is None:
        from core.config import get_config
        config = get_config()

    session_config = config.get("session", {})

    if extractor is None:
        from core.face_embedder import FaceEmbedder
        extractor = FaceEmbedder(config.get("extractor", {}))

    if camera is None:
        from core.camera import OpenCVCamera
        camera = OpenCVCamera()

    if store is None:
        from core.enrollment_store import get_enrollment_store
        store = get_enrollment_store(
            expected_dim=extractor.embedding_dim,
            extractor_id=extractor.model_id,
        )

    return SessionController(
        extractor=extractor,
        camera=camera,
        store=store,
        policy=EuclideanMatchPolicy(config.get("matching", {}), model_id=extractor.model_id),
        constraints=CameraConstraints.from_config(config.get("camera", {})),
        register_delay_sec=session_config.get("register_delay_sec", 0.5),
        login_delay_sec=session_config.get("login_delay_sec", 1.5),
        max_log_entries=session_config.get("max_log_entries", 200),
        subscriber_queue_size=session_config.get("subscriber_queue_size", 64),
    )
