"""Request authentication and tenant resolution dependencies."""

import secrets
import uuid

from fastapi import Header, HTTPException, status

from app.config import settings


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str:
    """Validate the X-API-Key header against the configured key.

    Returns:
        The validated API key.

    Raises:
        HTTPException: 401 if the key is missing or does not match.
    """
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    if not secrets.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return x_api_key


async def get_tenant_id(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> uuid.UUID:
    """Resolve the tenant for the request from the X-Tenant-ID header.

    Every query downstream is filtered on this value.

    Raises:
        HTTPException: 400 if the header is missing, 422 if it is not a UUID.
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant",
        )
    try:
        return uuid.UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid tenant id",
        )


async def get_actor(
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> str:
    """Identity recorded in audit events; defaults to the API client."""
    return x_actor or "api-client"
