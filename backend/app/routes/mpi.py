"""Master Patient Index API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.models.mpi import MatchCandidateStatus, MatchPriority
from app.schemas.mpi import (
    CandidateListResponse,
    CandidateResponse,
    CandidateStats,
    DuplicateScanResponse,
    IdentityResponse,
    MatchingConfig,
    MatchRequest,
    MatchResponse,
    RegisterIdentityRequest,
    ReviewRequest,
)
from app.services.mpi_matching import CandidateAlreadyReviewedError, MPIMatchingService

router = APIRouter(prefix="/mpi", tags=["mpi"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@router.post("/identities", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
async def register_identity(
    body: RegisterIdentityRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> IdentityResponse:
    """Create or refresh a patient's identity record."""
    record = await MPIMatchingService(db, tenant_id, actor).register_identity(body.demographics, body.patient_id)
    return IdentityResponse.model_validate(record)


@router.post(
    "/identities/from-fhir/{patient_fhir_id}",
    response_model=IdentityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_fhir_patient(
    patient_fhir_id: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> IdentityResponse:
    """Register the identity of a Patient already in the FHIR store."""
    record = await MPIMatchingService(db, tenant_id, actor).register_fhir_patient(patient_fhir_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        )
    return IdentityResponse.model_validate(record)


@router.post("/match", response_model=MatchResponse)
async def find_matches(
    body: MatchRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> MatchResponse:
    """Score demographics against the tenant's identities.

    Returns:
        Matches at or above the threshold, best first.
    """
    matches = await MPIMatchingService(db, tenant_id).find_matches(
        body.demographics,
        min_score=body.min_score,
        exclude_patient_id=body.exclude_patient_id,
    )
    return MatchResponse(matches=matches, total=len(matches))


@router.post("/duplicates/scan", response_model=DuplicateScanResponse)
async def scan_duplicates(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
    limit: int = Query(500, ge=1, le=5000),
) -> DuplicateScanResponse:
    """Batch duplicate detection across the tenant's identities."""
    created = await MPIMatchingService(db, tenant_id, actor).run_duplicate_detection(limit=limit)
    return DuplicateScanResponse(candidates_created=created)


@router.get("/candidates", response_model=CandidateListResponse)
async def list_candidates(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    status: MatchCandidateStatus | None = MatchCandidateStatus.PENDING,
    priority: MatchPriority | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> CandidateListResponse:
    candidates, total = await MPIMatchingService(db, tenant_id).list_candidates(
        status=status, priority=priority, limit=limit, offset=skip
    )
    return CandidateListResponse(
        items=[CandidateResponse.model_validate(c) for c in candidates],
        total=total,
    )


@router.post("/candidates/{candidate_id}/review", response_model=CandidateResponse)
async def review_candidate(
    candidate_id: uuid.UUID,
    body: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> CandidateResponse:
    """Record a review decision on a candidate pair.

    Raises:
        HTTPException: 404 if not found, 409 if the candidate was already decided.
    """
    service = MPIMatchingService(db, tenant_id, actor)
    try:
        candidate = await service.review_candidate(candidate_id, body.decision, actor, body.notes)
    except CandidateAlreadyReviewedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    if candidate is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Match candidate not found",
        )
    return CandidateResponse.model_validate(candidate)


@router.get("/stats", response_model=CandidateStats)
async def candidate_stats(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> CandidateStats:
    return await MPIMatchingService(db, tenant_id).candidate_stats()


@router.get("/config", response_model=MatchingConfig)
async def matching_config(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> MatchingConfig:
    return MPIMatchingService(db, tenant_id).get_config()
