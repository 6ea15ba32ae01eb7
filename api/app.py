"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the face
login session API.

The application provides:
- REST endpoints for the session operations and observables
- WebSocket endpoint streaming session state changes
- REST endpoints for the enrollment slot
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes.enrollment import describe_enrollment
from api.routes.enrollment import router as enrollment_router
from api.routes.session import router as session_router
from api.routes.session import ws_router as session_ws_router
from api.schemas import HealthResponse
from core.config import get_logging_config
from core.enrollment_store import EnrollmentStore
from core.session_controller import SessionController, build_session_controller


# Configure logging
logging.basicConfig(
    level=get_logging_config().get("level", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    controller: Optional[SessionController] = None,
    store: Optional[EnrollmentStore] = None,
    autostart: Optional[bool] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        controller: Session controller to serve. If None, one is built from
                    config.yaml at startup.
        store: Enrollment store used by the controller. Required when
               ``controller`` is given.
        autostart: Whether to load models and open the camera at startup.
                   If None, follows ``session.auto_initialize`` and
                   ``session.auto_start_camera`` from config.

    Returns:
        Configured FastAPI application.
    """
    if controller is not None and store is None:
        raise ValueError("store is required when a controller is provided")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Runs on startup:
        - Build the session controller (if not injected)
        - Optionally load the face models and open the camera

        Runs on shutdown:
        - Tear down the session (releases the camera)
        - Close the enrollment store
        """
        logger.info("=" * 60)
        logger.info("Starting Face Login API")
        logger.info("=" * 60)

        auto_initialize = auto_camera = bool(autostart)
        built_here = app.state.controller is None
        if built_here:
            from core.config import get_config
            from core.enrollment_store import get_enrollment_store
            from core.face_embedder import FaceEmbedder

            config = get_config()
            extractor = FaceEmbedder(config.get("extractor", {}))
            app.state.store = get_enrollment_store(
                expected_dim=extractor.embedding_dim,
                extractor_id=extractor.model_id,
            )
            app.state.controller = build_session_controller(
                config, extractor=extractor, store=app.state.store
            )

            if autostart is None:
                session_config = config.get("session", {})
                auto_initialize = session_config.get("auto_initialize", True)
                auto_camera = session_config.get("auto_start_camera", True)

        session: SessionController = app.state.controller

        if auto_initialize:
            logger.info("Loading face models...")
            await session.initialize()
        if auto_camera:
            logger.info("Opening camera...")
            await session.start_camera()

        logger.info(f"API startup complete (session state: {session.state.value})")
        logger.info("=" * 60)

        yield

        logger.info("Shutting down API...")
        await session.close()
        app.state.store.close()
        if built_here:
            app.state.controller = None
            app.state.store = None
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Face Login API",
        description="""
API for face login against a single enrolled face.

## Features
- **Session**: Load models, open the camera, register and log in
- **Live updates**: Session state stream over WebSocket
- **Enrollment**: Inspect or remove the enrolled face

## WebSocket
Connect to `/ws/session` to receive `{"type": "session", "data": {...}}`
messages for every session state change, in order.
        """,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.store = store

    # Configure CORS for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(session_router)
    app.include_router(session_ws_router)
    app.include_router(enrollment_router)

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health_check():
        """
        Check the health of the API and the session.

        Status is "healthy" when the models are loaded and the camera is
        live, "degraded" otherwise.
        """
        session: SessionController = app.state.controller
        enrollment = describe_enrollment(app.state.store)
        healthy = session.models_loaded and session.has_live_stream

        return HealthResponse(
            status="healthy" if healthy else "degraded",
            models_loaded=session.models_loaded,
            camera_live=session.has_live_stream,
            state=session.state.value,
            enrolled=enrollment.enrolled and enrollment.compatible,
        )

    @app.get("/", tags=["system"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Face Login API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    from core.config import get_server_config

    server = get_server_config()

    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "api.app:app",
        host=server["host"],
        port=server["port"],
        log_level="info",
    )
