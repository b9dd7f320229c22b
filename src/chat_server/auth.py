"""Request identity resolution."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from .config import Settings, get_settings
from .firebase import verify_id_token

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_identity(request: Request, settings: Settings = Depends(get_settings)) -> Optional[str]:
    """Resolve the requesting user's id, or None when the request is anonymous."""
    if settings.auth_backend == "header":
        return request.headers.get(USER_ID_HEADER) or None

    token = _bearer_token(request)
    if not token:
        return None
    return verify_id_token(token, settings)


def require_user(user_id: Optional[str] = Depends(get_identity)) -> str:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
