"""Request authentication for the Face Recall API.

The roster is keyed by the caller's email. In production that email comes from
a Google ID token; locally ``FR_DEV_AUTH_BYPASS=1`` trusts ``X-User-Email``.
``FR_ALLOWED_EMAILS`` (comma separated) optionally restricts who may sign in.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict

from fastapi import Header, HTTPException, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

logger = logging.getLogger(__name__)

DEV_BYPASS_ENV = "FR_DEV_AUTH_BYPASS"
CLIENT_ID_ENV = "GOOGLE_OAUTH_CLIENT_ID"
ALLOWED_AUDIENCE_ENV = "GOOGLE_OAUTH_AUDIENCE"
ALLOWED_EMAILS_ENV = "FR_ALLOWED_EMAILS"


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str, code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(status_code=code, detail=detail)


def _split_env(var: str) -> tuple[str, ...]:
    raw = os.getenv(var, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@lru_cache
def _audiences() -> tuple[str, ...]:
    return _split_env(ALLOWED_AUDIENCE_ENV) or _split_env(CLIENT_ID_ENV)


@lru_cache
def _allowed_emails() -> frozenset[str]:
    return frozenset(email.lower() for email in _split_env(ALLOWED_EMAILS_ENV))


def verify_google_token(token: str) -> Dict[str, Any]:
    """Return the claims of a Google ID token valid for any configured audience."""
    audiences = _audiences()
    if not audiences:
        raise UnauthorizedError("Server missing GOOGLE_OAUTH_CLIENT_ID or audience config.")

    request = google_requests.Request()
    errors = []
    for audience in audiences:
        try:
            return id_token.verify_oauth2_token(token, request, audience)
        except ValueError as exc:
            errors.append(str(exc))
    raise UnauthorizedError(f"Invalid token: {errors[-1]}")


def _check_allowed(email: str) -> str:
    allowed = _allowed_emails()
    if allowed and email not in allowed:
        logger.warning(f"[Auth] Rejected sign-in for {email}")
        raise UnauthorizedError("This account is not allowed.", status.HTTP_403_FORBIDDEN)
    return email


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    dev_user: str | None = Header(default=None, alias="X-User-Email"),
) -> str:
    """Return the signed-in user's email, lowercased."""

    if os.getenv(DEV_BYPASS_ENV) == "1":
        if not dev_user or not dev_user.strip():
            raise UnauthorizedError("Auth bypass enabled but X-User-Email header missing.")
        return _check_allowed(dev_user.strip().lower())

    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise UnauthorizedError("Missing Bearer token.")

    claims = verify_google_token(token.strip())
    email = claims.get("email")
    if not email:
        raise UnauthorizedError("Token missing email claim.")
    return _check_allowed(email.lower())
