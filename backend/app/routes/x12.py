"""X12 997 Functional Acknowledgment API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.x12 import (
    AckProcessingResult,
    AcknowledgmentDetailResponse,
    AcknowledgmentResponse,
    LinkClaimsRequest,
    Process997Request,
    X12Statistics,
)
from app.services.x12_997 import X12ParseError
from app.services.x12_acknowledgments import X12AcknowledgmentService

router = APIRouter(prefix="/x12", tags=["x12"])


@router.post("/997", response_model=AckProcessingResult, status_code=status.HTTP_201_CREATED)
async def process_997(
    body: Process997Request,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> AckProcessingResult:
    """Parse and store a 997 returned by a clearinghouse.

    Raises:
        HTTPException: 422 if the content is not a valid 997.
    """
    service = X12AcknowledgmentService(db, tenant_id, actor)
    try:
        return await service.process_acknowledgment(
            body.content,
            clearinghouse=body.clearinghouse,
            original_transaction_type=body.original_transaction_type,
            claim_ids=body.claim_ids,
        )
    except X12ParseError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )


@router.get("/acknowledgments", response_model=list[AcknowledgmentResponse])
async def list_acknowledgments(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    limit: int = Query(50, ge=1, le=200),
    status: str | None = Query(None, pattern="^[AEMPRWX]$"),
    claim_id: str | None = None,
) -> list[AcknowledgmentResponse]:
    """List recent acknowledgments, optionally by AK9 status or linked claim."""
    service = X12AcknowledgmentService(db, tenant_id)
    if claim_id:
        acks = await service.list_for_claim(claim_id)
    else:
        acks = await service.list_recent(limit=limit, status=status)
    return [AcknowledgmentResponse.model_validate(ack) for ack in acks]


@router.get("/acknowledgments/rejected", response_model=list[AcknowledgmentResponse])
async def list_rejected(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    days: int = Query(30, ge=1, le=365),
) -> list[AcknowledgmentResponse]:
    acks = await X12AcknowledgmentService(db, tenant_id).list_rejected(since_days=days)
    return [AcknowledgmentResponse.model_validate(ack) for ack in acks]


@router.get("/acknowledgments/{ack_id}", response_model=AcknowledgmentDetailResponse)
async def get_acknowledgment(
    ack_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> AcknowledgmentDetailResponse:
    """Get one acknowledgment with its transaction sets and errors.

    Raises:
        HTTPException: 404 if not found.
    """
    ack = await X12AcknowledgmentService(db, tenant_id).get_acknowledgment(ack_id)
    if ack is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Acknowledgment not found",
        )
    return AcknowledgmentDetailResponse.model_validate(ack)


@router.post("/acknowledgments/{ack_id}/claims", response_model=AcknowledgmentResponse)
async def link_claims(
    ack_id: uuid.UUID,
    body: LinkClaimsRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> AcknowledgmentResponse:
    ack = await X12AcknowledgmentService(db, tenant_id, actor).link_claims(ack_id, body.claim_ids)
    if ack is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Acknowledgment not found",
        )
    return AcknowledgmentResponse.model_validate(ack)


@router.get("/statistics", response_model=X12Statistics)
async def statistics(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    days: int = Query(30, ge=1, le=365),
) -> X12Statistics:
    return await X12AcknowledgmentService(db, tenant_id).statistics(days=days)
