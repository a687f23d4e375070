"""Passive SDOH detection API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.sdoh import (
    AnalyzeRequest,
    DetectionListResponse,
    DetectionResponse,
    ReviewDetectionRequest,
)
from app.services.sdoh_detection import SDOHDetectionService

router = APIRouter(prefix="/sdoh", tags=["sdoh"])


@router.post("/analyze", response_model=DetectionListResponse, status_code=status.HTTP_201_CREATED)
async def analyze(
    body: AnalyzeRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> DetectionListResponse:
    """Scan patient text for SDOH indicators and queue them for review."""
    records = await SDOHDetectionService(db, tenant_id, actor).analyze_and_store(
        body.patient_id, body.text, body.source_type, body.source_id
    )
    return DetectionListResponse(
        items=[DetectionResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.get("/patients/{patient_id}/detections", response_model=DetectionListResponse)
async def list_unreviewed(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> DetectionListResponse:
    """Detections for a patient still awaiting review."""
    records = await SDOHDetectionService(db, tenant_id).list_unreviewed(patient_id)
    return DetectionListResponse(
        items=[DetectionResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.post("/detections/{detection_id}/review", response_model=DetectionResponse)
async def review_detection(
    detection_id: uuid.UUID,
    body: ReviewDetectionRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> DetectionResponse:
    """Confirm or dismiss a detection; confirmed ones become FHIR Observations.

    Raises:
        HTTPException: 404 if the detection does not exist.
    """
    record = await SDOHDetectionService(db, tenant_id, actor).review_detection(
        detection_id, body.confirmed, body.notes, actor
    )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Detection not found",
        )
    return DetectionResponse.model_validate(record)
