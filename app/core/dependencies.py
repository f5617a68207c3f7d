# app/core/dependencies.py
from __future__ import annotations

"""
FastAPI dependencies:
- Admin guard via shared X-Admin-Key header
- Public origin of the request (for back URLs / order links)
- Pagination
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Query, Request

from app.core.config import settings
from app.core.exceptions import AuthenticationError, ConfigurationError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def require_admin(x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key")) -> None:
    """Rejects requests whose X-Admin-Key does not match ADMIN_API_KEY."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise ConfigurationError("ADMIN_API_KEY is not configured", "ADMIN_NOT_CONFIGURED")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        logger.warning("admin_key_rejected", provided=bool(x_admin_key))
        raise AuthenticationError("Invalid admin key", "INVALID_ADMIN_KEY")


def request_origin(request: Request) -> str:
    """``scheme://host`` the client used; PUBLIC_BASE_URL wins when set."""
    if settings.PUBLIC_BASE_URL:
        return settings.PUBLIC_BASE_URL
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


@dataclass
class Pagination:
    limit: int
    offset: int


def pagination(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> Pagination:
    return Pagination(limit=limit, offset=offset)


__all__ = ["require_admin", "request_origin", "Pagination", "pagination"]
