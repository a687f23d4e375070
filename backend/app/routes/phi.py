"""PHI de-identification API routes.

Request and response bodies carry text; only counts reach the logs and
the audit trail.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.phi import DeidentifyRequest, ValidateRequest
from app.services.audit import AuditLogger
from app.services.phi_deidentifier import (
    DeidentificationResult,
    ValidationReport,
    deidentify,
    validate_deidentification,
)

router = APIRouter(prefix="/phi", tags=["phi"])


@router.post("/deidentify", response_model=DeidentificationResult)
async def deidentify_text(
    body: DeidentifyRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> DeidentificationResult:
    """Redact Safe Harbor identifiers from free text.

    Returns:
        Redacted text with per-pattern counts, confidence and warnings.
    """
    result = deidentify(body.text, body.to_options())
    await AuditLogger(db, tenant_id, actor).log(
        "phi.deidentified",
        details={
            "level": body.level.value,
            "redacted_count": result.redacted_count,
            "confidence": result.confidence,
        },
    )
    return result


@router.post("/validate", response_model=ValidationReport)
async def validate_text(
    body: ValidateRequest,
    _api_key: str = Depends(verify_api_key),
) -> ValidationReport:
    """Score the residual PHI risk of supposedly de-identified text."""
    return validate_deidentification(body.text)
