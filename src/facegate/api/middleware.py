"""Middleware: Bearer key authentication for checkpoints and the enrollment desk."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from facegate.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)

Credentials = Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)]


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _require_key(credentials: HTTPAuthorizationCredentials | None, *accepted: str) -> None:
    if credentials is not None:
        presented = credentials.credentials.encode()
        if any(secrets.compare_digest(presented, key.encode()) for key in accepted):
            return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_api_key(request: Request, credentials: Credentials) -> None:
    """Check the Bearer token used by checkpoint terminals.

    If no API key is configured (FACEGATE_API_KEY not set), all requests pass.
    The admin key is accepted wherever the checkpoint key is.
    """
    settings = _get_settings_from_request(request)
    if settings.api_key is None:
        return
    accepted = [settings.api_key]
    if settings.admin_api_key is not None:
        accepted.append(settings.admin_api_key)
    _require_key(credentials, *accepted)


async def verify_admin_key(request: Request, credentials: Credentials) -> None:
    """Check the Bearer token for gallery writes (enroll, re-enroll, remove).

    Falls back to the checkpoint key when FACEGATE_ADMIN_API_KEY is not set.
    """
    settings = _get_settings_from_request(request)
    key = settings.admin_api_key or settings.api_key
    if key is None:
        return
    _require_key(credentials, key)
