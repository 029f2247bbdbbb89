"""Shared dependencies and helper functions for API routers.

Usage in routers:
    from api.dependencies import get_current_user, get_store, get_matcher
"""
from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException, status

from face_recall.api.auth import get_current_user  # noqa: F401 - re-export
from face_recall.config import Settings, load_settings
from face_recall.contacts import ContactStore, get_backend
from face_recall.errors import (
    AuthError,
    DeviceError,
    FaceRecallError,
    FlowError,
    NetworkError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from face_recall.recognition import (
    Matcher,
    RecognitionSession,
    UploadedImageDevice,
    build_matcher,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Error Mapping
# =============================================================================

ERROR_STATUS: List[Tuple[type, int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (FlowError, status.HTTP_409_CONFLICT),
    (DeviceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NetworkError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: FaceRecallError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# =============================================================================
# Cached Functions
# =============================================================================

@lru_cache
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return load_settings()


@lru_cache
def _cached_matcher() -> Matcher:
    matcher, warning = build_matcher(get_settings(), source="auto")
    if warning:
        logger.warning(f"[Recognition] {warning}")
    return matcher


def get_matcher() -> Matcher:
    return _cached_matcher()


# =============================================================================
# Per-user Stores and Sessions
# =============================================================================

_registry_lock = threading.Lock()
_stores: Dict[str, ContactStore] = {}
_sessions: Dict[str, Tuple[str, RecognitionSession, UploadedImageDevice]] = {}


def get_store(user: str = Depends(get_current_user)) -> ContactStore:
    """Return the user's contact store, loading (or seeding) it on first use."""
    with _registry_lock:
        store = _stores.get(user)
        if store is None:
            store = ContactStore(user, get_backend(get_settings().contacts_dir))
            _stores[user] = store
        return store


def open_session(
    user: str,
    store: ContactStore,
    matcher: Matcher,
    default_location: Optional[str] = None,
) -> RecognitionSession:
    """Create and open a recognition session fed by client uploads."""
    device = UploadedImageDevice()
    session = RecognitionSession(
        store,
        device,
        matcher,
        user_provider=lambda: user,
        default_location=default_location,
    )
    session.open()
    # One capture session per user: a new session replaces any earlier one.
    with _registry_lock:
        replaced = [
            _sessions.pop(session_id)[1]
            for session_id, (owner, _, _) in list(_sessions.items())
            if owner == user
        ]
        _sessions[session.id] = (user, session, device)
    for previous in replaced:
        if previous.outcome is None:
            logger.info(f"[Recognition] Cancelling abandoned session {previous.id} for {user}")
        previous.close()
    return session


def get_session(session_id: str, user: str) -> Tuple[RecognitionSession, UploadedImageDevice]:
    with _registry_lock:
        entry = _sessions.get(session_id)
    if entry is None or entry[0] != user:
        raise HTTPException(status_code=404, detail="Recognition session not found.")
    return entry[1], entry[2]


def reset_state() -> None:
    """Drop cached stores, sessions and settings (used by tests)."""
    with _registry_lock:
        for _, session, _ in _sessions.values():
            session.close()
        _sessions.clear()
        _stores.clear()
    get_settings.cache_clear()
    _cached_matcher.cache_clear()
