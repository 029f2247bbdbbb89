"""Recognition Router - capture-to-disposition sessions.

A session lives on the server between requests. The client uploads each still
image with ``/capture``; every endpoint answers with the session snapshot so
the UI can render the current state.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import (
    get_current_user,
    get_matcher,
    get_session,
    get_settings,
    get_store,
    open_session,
)
from face_recall.contacts import ContactStore
from face_recall.recognition import CapturedImage, Matcher

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class CaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image: str = Field(..., description="Base64 image or data: URL")
    self_report: bool = Field(
        False,
        alias="selfReport",
        description="User does not recognize the face; skip automatic matching",
    )


class RememberedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contact_id: str = Field(..., alias="contactId")


class SaveRequest(BaseModel):
    location: Optional[str] = None


# =============================================================================
# Session Endpoints
# =============================================================================

@router.post("/sessions", status_code=status.HTTP_201_CREATED)
def create_session(
    user: str = Depends(get_current_user),
    store: ContactStore = Depends(get_store),
    matcher: Matcher = Depends(get_matcher),
) -> dict:
    session = open_session(user, store, matcher, get_settings().default_location)
    logger.info(f"[Recognition] Opened session {session.id} for {user}")
    return {"session": session.snapshot().to_api_dict()}


@router.get("/sessions/{session_id}")
def read_session(session_id: str, user: str = Depends(get_current_user)) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.snapshot().to_api_dict()}


@router.post("/sessions/{session_id}/capture")
def capture(
    session_id: str,
    request: CaptureRequest,
    user: str = Depends(get_current_user),
) -> dict:
    session, device = get_session(session_id, user)
    device.submit(CapturedImage.from_base64(request.image))
    view = session.capture(self_report=request.self_report)
    return {"session": view.to_api_dict()}


@router.post("/sessions/{session_id}/remembered")
def remembered(
    session_id: str,
    request: RememberedRequest,
    user: str = Depends(get_current_user),
) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.remembered(request.contact_id).to_api_dict()}


@router.post("/sessions/{session_id}/not-remembered")
def not_remembered(session_id: str, user: str = Depends(get_current_user)) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.not_remembered().to_api_dict()}


@router.post("/sessions/{session_id}/add-new")
def add_new(session_id: str, user: str = Depends(get_current_user)) -> dict:
    """End the session and hand the captured photo to the add-contact form."""
    session, _ = get_session(session_id, user)
    image = session.add_new()
    return {
        "session": session.snapshot().to_api_dict(),
        "prefill": {"avatar": image.data_url if image else None},
    }


@router.post("/sessions/{session_id}/recapture")
def recapture(session_id: str, user: str = Depends(get_current_user)) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.recapture().to_api_dict()}


@router.post("/sessions/{session_id}/discard")
def discard(session_id: str, user: str = Depends(get_current_user)) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.discard().to_api_dict()}


@router.post("/sessions/{session_id}/save")
def save(
    session_id: str,
    request: SaveRequest,
    user: str = Depends(get_current_user),
    store: ContactStore = Depends(get_store),
) -> dict:
    session, _ = get_session(session_id, user)
    sighting = session.save(request.location)
    return {
        "session": session.snapshot().to_api_dict(),
        "sighting": sighting.to_api_dict(),
        "contact": store.get(sighting.contact_id).to_api_dict(),
    }


@router.delete("/sessions/{session_id}")
def cancel(session_id: str, user: str = Depends(get_current_user)) -> dict:
    session, _ = get_session(session_id, user)
    return {"session": session.cancel().to_api_dict()}
