"""Readmission risk API routes: rule-based explanation and LLM prediction."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.readmission import (
    ExplainResponse,
    PredictRequest,
    ReadmissionFeatures,
    ReadmissionPrediction,
    TenantReadmissionSettings,
)
from app.services.accuracy_tracking import AccuracyTrackingService
from app.services.audit import AuditLogger
from app.services.readmission_explainability import (
    generate_patient_summary,
    generate_risk_summary,
    get_ruca_weight_display,
)
from app.services.readmission_predictor import ReadmissionPredictor
from app.services.readmission_settings import get_tenant_settings, save_tenant_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/readmission", tags=["readmission"])


@router.post("/explain", response_model=ExplainResponse)
async def explain_risk(
    features: ReadmissionFeatures,
    _api_key: str = Depends(verify_api_key),
) -> ExplainResponse:
    """Explain the drivers of readmission risk for a set of features.

    Deterministic; no model call is made.
    """
    return ExplainResponse(
        summary=generate_risk_summary(features),
        patient_summary=generate_patient_summary(features),
        ruca_weight=get_ruca_weight_display(features.social_determinants.ruca_category),
    )


@router.get("/settings", response_model=TenantReadmissionSettings)
async def get_settings(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> TenantReadmissionSettings:
    return await get_tenant_settings(db, tenant_id)


@router.put("/settings", response_model=TenantReadmissionSettings)
async def update_settings(
    body: TenantReadmissionSettings,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> TenantReadmissionSettings:
    """Replace the tenant's predictor switches."""
    saved = await save_tenant_settings(db, tenant_id, body, actor)
    await AuditLogger(db, tenant_id, actor).log(
        "readmission.settings_updated",
        details=saved.model_dump(),
    )
    return saved


@router.post("/predict", response_model=ReadmissionPrediction)
async def predict_risk(
    body: PredictRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> ReadmissionPrediction:
    """Predict 7, 30 and 90 day readmission risk with the LLM.

    Raises:
        HTTPException: 403 if the predictor is disabled for the tenant,
            503 if no model is configured, 502 if the model output is unusable.
    """
    tenant_config = await get_tenant_settings(db, tenant_id)
    if not tenant_config.predictor_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Readmission predictor is not enabled for this tenant",
        )

    try:
        predictor = ReadmissionPredictor(tracker=AccuracyTrackingService(db, tenant_id))
    except ValueError:
        logger.error("Readmission predictor unavailable: OpenAI is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Prediction model is not configured",
        )

    try:
        prediction = await predictor.predict(body.context, body.features, tenant_config)
    except RuntimeError:
        logger.error("Readmission prediction parsing failed", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate prediction. Please try again.",
        )

    await AuditLogger(db, tenant_id, actor).log(
        "readmission.predicted",
        resource_type="Patient",
        resource_id=body.context.patient_id,
        details={
            "risk_category": prediction.risk_category,
            "prediction_id": prediction.prediction_id,
            "requires_care_plan": prediction.requires_care_plan,
        },
    )
    return prediction
