"""API key dependencies for the service and admin surfaces."""
from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, status

from billing.config import get_settings
from billing.utils.errors import error_response

logger = logging.getLogger(__name__)


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _matches(token: str, expected: str | None) -> bool:
    return bool(expected) and hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def _missing_key() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_response("NO_API_KEY", "API key required."),
    )


def require_api_key(token: str | None = Depends(_extract_key)) -> str:
    """Accept the service key or the admin key; returns the actor name."""

    if not token:
        raise _missing_key()
    settings = get_settings()
    if _matches(token, settings.ADMIN_API_KEY):
        return "admin"
    if _matches(token, settings.API_KEY):
        return "service"
    logger.warning("Rejected API key")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_response("UNAUTHORIZED", "Invalid API key."),
    )


def require_admin_key(token: str | None = Depends(_extract_key)) -> str:
    if not token:
        raise _missing_key()
    if not _matches(token, get_settings().ADMIN_API_KEY):
        logger.warning("Admin endpoint called without admin key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("INSUFFICIENT_SCOPE", "Admin API key required."),
        )
    return "admin"


__all__ = ["require_admin_key", "require_api_key"]
