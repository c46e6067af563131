"""FastAPI dependency injection for admin auth and the media processor."""

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import get_settings
from app.media_processor import MediaProcessor

_bearer_scheme = HTTPBearer(auto_error=True)


def require_admin(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> None:
    """Check the bearer token against ADMIN_TOKEN.

    An empty ADMIN_TOKEN disables the admin API entirely.
    """
    expected = get_settings().admin_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin token")


def get_media_processor(request: Request) -> MediaProcessor:
    """Inject the MediaProcessor created at startup."""
    processor = getattr(request.app.state, "media_processor", None)
    if processor is None:
        raise HTTPException(status_code=503, detail="Media processor is not running")
    return processor
