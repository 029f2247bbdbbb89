"""FastAPI service for Face Recall."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_settings, status_for
from api.routers import contacts_router, recognition_router
from face_recall import __version__
from face_recall.contacts.backends import storage_kind
from face_recall.errors import FaceRecallError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Face Recall API",
    version=__version__,
    description="Contacts, sightings and face recognition sessions.",
)

ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    os.getenv("FR_ALLOWED_FRONTEND", "").strip(),
]
origins = [origin for origin in ALLOWED_ORIGINS if origin]

if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(contacts_router, prefix="/contacts", tags=["contacts"])
app.include_router(recognition_router, prefix="/recognition", tags=["recognition"])


@app.exception_handler(FaceRecallError)
async def handle_face_recall_error(request: Request, exc: FaceRecallError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.warning(f"[API] {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint with service configuration status."""
    settings = get_settings()
    return {
        "status": "ok",
        "time": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "services": {
            "matcher": "configured" if settings.matcher_configured else "stub",
            "storage": storage_kind(),
        },
    }
