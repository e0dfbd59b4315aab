"""
API key check for the admin diagnostic endpoints.

Usage:
    @router.get("/debug/circuit-breakers")
    async def circuit_breakers(
        _: None = Depends(require_admin_api_key),
    ):
        ...
"""
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from insureme.core.config import settings
from insureme.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    401 when the key is missing, 403 when it does not match.
    With ADMIN_API_KEY unset the endpoints are closed entirely.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint access denied: ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key - X-Admin-API-Key header required",
        )

    if not secrets.compare_digest(api_key, settings.ADMIN_API_KEY):
        logger.warning("Admin endpoint access denied: wrong API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
