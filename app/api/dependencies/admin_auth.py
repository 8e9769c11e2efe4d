"""
Administrator identity for the escrow admin endpoints.

Usage:
    @router.post("/{booking_id}/release")
    async def release(
        booking_id: int,
        admin_id: str = Depends(get_admin_id),
    ):
        ...
"""
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    Check X-Admin-API-Key when ADMIN_API_KEY is configured.

    401 if the key is missing, 403 if it does not match. With no key
    configured the check is skipped.
    """
    if not settings.ADMIN_API_KEY:
        return

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key: X-Admin-API-Key header is required",
        )

    if api_key != settings.ADMIN_API_KEY:
        logger.warning("Admin request rejected: invalid API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )


async def get_admin_id(
    x_admin_id: str | None = Header(default=None, alias="X-Admin-Id"),
    _: None = Depends(require_admin_api_key),
) -> str:
    """Opaque id of the administrator performing the action"""
    if not x_admin_id or not x_admin_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing administrator id: X-Admin-Id header is required",
        )
    return x_admin_id.strip()
