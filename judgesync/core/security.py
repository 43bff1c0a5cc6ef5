"""
JudgeSync - Security Layer

API-key dependencies for the trigger and admin endpoints. Every failure path
raises the same AuthError so a caller cannot tell a wrong key from a missing
one, or from a deployment with no key configured.
"""

import secrets

from fastapi import Header
from loguru import logger

from ..config import get_settings
from .errors import AuthError


def _keys_match(provided: str | None, configured: str | None) -> bool:
    if not provided or not configured:
        return False
    return secrets.compare_digest(provided.encode(), configured.encode())


async def require_sync_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """
    FastAPI dependency guarding the sync trigger endpoints (operators, cron).

    Usage:
        @router.post("/courts", dependencies=[Depends(require_sync_key)])
    """
    settings = get_settings()
    if not _keys_match(x_api_key, settings.SYNC_API_KEY):
        if settings.SYNC_API_KEY is None and settings.is_production:
            logger.warning("SYNC_API_KEY not set in production - sync triggers will fail")
        logger.warning("Rejected sync trigger request")
        raise AuthError()


async def require_admin_key(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """FastAPI dependency guarding status snapshot and admin actions."""
    settings = get_settings()
    if not _keys_match(x_admin_key, settings.ADMIN_API_KEY):
        logger.warning("Rejected admin request")
        raise AuthError()
