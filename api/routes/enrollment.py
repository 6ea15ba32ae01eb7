"""
Enrollment API Routes

This module provides REST endpoints for the single enrollment slot:
- GET /enrollment: Metadata about the enrolled face (never the embedding)
- DELETE /enrollment: Remove the enrolled face

Registration itself happens through the session (POST /session/register),
since it needs the live camera.
"""

import logging

from fastapi import APIRouter, Request

from api.schemas import ClearEnrollmentResponse, EnrollmentInfo
from core.enrollment_store import EnrollmentStore
from core.errors import IncompatibleTemplateError

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/enrollment", tags=["enrollment"])


def get_store(request: Request) -> EnrollmentStore:
    """Return the enrollment store owned by the application."""
    return request.app.state.store


def describe_enrollment(store: EnrollmentStore) -> EnrollmentInfo:
    """Build EnrollmentInfo for the store's current record."""
    try:
        record = store.get()
    except IncompatibleTemplateError as e:
        return EnrollmentInfo(enrolled=True, compatible=False, message=e.user_message)

    if record is None:
        return EnrollmentInfo(enrolled=False)
    return EnrollmentInfo(enrolled=True, **record.to_summary())


@router.get("", response_model=EnrollmentInfo)
async def get_enrollment(request: Request):
    """Metadata about the enrolled face."""
    return describe_enrollment(get_store(request))


@router.delete("", response_model=ClearEnrollmentResponse)
async def clear_enrollment(request: Request):
    """
    Remove the enrolled face.

    Subsequent logins fail with "no registered face" until a new
    registration.
    """
    removed = get_store(request).clear()
    return ClearEnrollmentResponse(
        success=removed,
        message="Enrollment removed" if removed else "No enrollment to remove",
    )
