"""Audit trail API routes."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.audit import AuditEventResponse, AuditListResponse
from app.services.audit import AuditLogger

router = APIRouter(prefix="/audit", tags=["audit"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@router.get("", response_model=AuditListResponse)
async def list_audit_events(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    action: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> AuditListResponse:
    """List the tenant's audit events, newest first.

    Args:
        action: Filter by action, e.g. "hl7.message.received".
        skip: Number of records to skip.
        limit: Maximum number of records to return.
    """
    events, total = await AuditLogger(db, tenant_id).list_events(action=action, limit=limit, offset=skip)
    return AuditListResponse(
        items=[AuditEventResponse.model_validate(e) for e in events],
        total=total,
        skip=skip,
        limit=limit,
    )
