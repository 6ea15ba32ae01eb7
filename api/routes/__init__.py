"""
API Routes Package

This package contains route handlers organized by feature:
- session.py: REST and WebSocket endpoints for the login session
- enrollment.py: REST endpoints for the enrollment slot
"""

from api.routes.session import router as session_router
from api.routes.session import ws_router as session_ws_router
from api.routes.enrollment import router as enrollment_router

__all__ = [
    "session_router",
    "session_ws_router",
    "enrollment_router",
]
