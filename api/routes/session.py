"""
Session API Routes

This module exposes the face login session to the presentation layer:
- REST endpoints for every session operation (initialize, camera, register,
  login, reset) and for reading the observables
- GET /session/frame: the current camera frame as JPEG, with the detection
  box drawn on it
- WebSocket /ws/session: ordered stream of session snapshots

Session failures are never HTTP errors. They are part of the session state
returned in every response.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from api.schemas import (
    ActionResponse,
    AttemptResultSchema,
    EnrollmentInfo,
    EventLogResponse,
    LoginResponse,
    RegisterResponse,
    SessionStatusResponse,
)
from core.camera import encode_jpeg
from core.session_controller import SessionController
from core.session_state import SessionState
from core.ui_overlay import draw_detection_box

# Setup logging
logger = logging.getLogger(__name__)

# Create routers
router = APIRouter(prefix="/session", tags=["session"])
ws_router = APIRouter(prefix="/ws", tags=["session"])


def get_controller(request: Request) -> SessionController:
    """Return the session controller owned by the application."""
    return request.app.state.controller


def _action(controller: SessionController, accepted: bool) -> ActionResponse:
    return ActionResponse(
        accepted=accepted,
        session=SessionStatusResponse.from_controller(controller),
    )


@router.get("", response_model=SessionStatusResponse)
async def get_session(request: Request):
    """Current session state and observables."""
    return SessionStatusResponse.from_controller(get_controller(request))


@router.post("/initialize", response_model=ActionResponse)
async def initialize(request: Request):
    """Load the face models."""
    controller = get_controller(request)
    loaded = await controller.initialize()
    return _action(controller, loaded)


@router.post("/camera", response_model=ActionResponse)
async def start_camera(request: Request):
    """Acquire the camera, or re-attach the stream already held."""
    controller = get_controller(request)
    started = await controller.start_camera()
    return _action(controller, started)


@router.post("/register", response_model=RegisterResponse)
async def register(request: Request):
    """
    Capture the current frame and enroll the face in it.

    Any previous enrollment is overwritten.
    """
    controller = get_controller(request)
    record = await controller.capture_and_register()

    enrollment = None
    if record is not None:
        enrollment = EnrollmentInfo(enrolled=True, **record.to_summary())

    return RegisterResponse(
        accepted=record is not None,
        session=SessionStatusResponse.from_controller(controller),
        enrollment=enrollment,
    )


@router.post("/login", response_model=LoginResponse)
async def login(request: Request):
    """Capture the current frame and compare it against the enrolled face."""
    controller = get_controller(request)
    result = await controller.capture_and_login()

    result_schema = None
    if result is not None:
        result_schema = AttemptResultSchema(
            outcome=result.outcome.value,
            distance=result.distance,
            reason=result.reason.value if result.reason else None,
        )

    return LoginResponse(
        accepted=result is not None,
        session=SessionStatusResponse.from_controller(controller),
        result=result_schema,
    )


@router.post("/reset", response_model=ActionResponse)
async def reset(request: Request):
    """Clear the last result and return to the ready state."""
    controller = get_controller(request)
    done = controller.reset()
    return _action(controller, done)


@router.get("/log", response_model=EventLogResponse)
async def get_event_log(request: Request, limit: int = 0):
    """
    Session event log, oldest first.

    Args:
        limit: If positive, return only the most recent ``limit`` entries.
    """
    entries = get_controller(request).event_log
    if limit > 0:
        entries = entries[-limit:]
    return EventLogResponse(entries=entries, total=len(entries))


@router.get(
    "/frame",
    responses={200: {"content": {"image/jpeg": {}}}},
    response_class=Response,
)
async def get_frame(request: Request, annotate: bool = True):
    """
    Current camera frame as JPEG.

    Raises:
        404: If no live camera stream is attached.
        503: If the stream delivered no frame.
    """
    controller = get_controller(request)
    if not controller.has_live_stream:
        raise HTTPException(status_code=404, detail="Camera is not active")

    frame = await controller.read_preview_frame()
    if frame is None:
        raise HTTPException(status_code=503, detail="No frame available")

    box = controller.detection_box
    if annotate and box is not None:
        color = (0, 0, 220) if controller.state is SessionState.FAILURE else (0, 200, 0)
        draw_detection_box(frame, box, color=color)

    return Response(content=encode_jpeg(frame), media_type="image/jpeg")


@ws_router.websocket("/session")
async def websocket_session(websocket: WebSocket):
    """
    Stream session snapshots.

    Sends the current snapshot on connect, then one message per change, in
    the order the changes happen:
        {"type": "session", "data": {...SessionStatusResponse...}}
    """
    await websocket.accept()
    controller: SessionController = websocket.app.state.controller
    queue = controller.subscribe()

    try:
        while True:
            snapshot = await queue.get()
            data = snapshot.to_dict()
            data.update(
                busy=controller.is_busy,
                camera_live=controller.has_live_stream,
                threshold=controller.threshold,
            )
            await websocket.send_json({"type": "session", "data": data})
    except WebSocketDisconnect:
        logger.info("Session WebSocket client disconnected")
    finally:
        controller.unsubscribe(queue)
