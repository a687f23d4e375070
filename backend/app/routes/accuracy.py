"""AI accuracy tracking and prompt experiment API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.schemas.accuracy import (
    AccuracyMetrics,
    BillingCodeReview,
    ExperimentConfig,
    ExperimentResponse,
    ExperimentResults,
    OutcomeRequest,
    PredictionCreated,
    PredictionRecord,
    PromptType,
    PromptVersionCreate,
    PromptVersionResponse,
    SDOHDetectionReview,
    VariantAssignment,
)
from app.services.accuracy_tracking import AccuracyTrackingService

router = APIRouter(prefix="/ai", tags=["ai-accuracy"])


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


@router.post("/predictions", response_model=PredictionCreated, status_code=status.HTTP_201_CREATED)
async def record_prediction(
    body: PredictionRecord,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> PredictionCreated:
    prediction_id = await AccuracyTrackingService(db, tenant_id).record_prediction(body)
    return PredictionCreated(prediction_id=prediction_id)


@router.post("/predictions/{prediction_id}/outcome", status_code=status.HTTP_204_NO_CONTENT)
async def record_outcome(
    prediction_id: uuid.UUID,
    body: OutcomeRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> None:
    """Attach the real-world outcome to a prediction.

    Raises:
        HTTPException: 404 if the prediction does not exist.
    """
    try:
        await AccuracyTrackingService(db, tenant_id).record_outcome(
            prediction_id, body.actual_outcome, body.is_accurate, body.outcome_source, body.notes
        )
    except ValueError as e:
        raise _not_found(str(e))


@router.post("/predictions/{prediction_id}/billing-review", status_code=status.HTTP_204_NO_CONTENT)
async def review_billing_codes(
    prediction_id: uuid.UUID,
    body: BillingCodeReview,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> None:
    """Score suggested billing codes against the provider's final codes."""
    try:
        await AccuracyTrackingService(db, tenant_id).record_billing_code_accuracy(
            prediction_id, body.suggested_codes, body.final_codes, actor
        )
    except ValueError as e:
        raise _not_found(str(e))


@router.post("/predictions/{prediction_id}/sdoh-review", status_code=status.HTTP_204_NO_CONTENT)
async def review_sdoh_detection(
    prediction_id: uuid.UUID,
    body: SDOHDetectionReview,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> None:
    try:
        await AccuracyTrackingService(db, tenant_id).record_sdoh_detection_accuracy(
            prediction_id, body.was_confirmed, body.was_false_positive, actor
        )
    except ValueError as e:
        raise _not_found(str(e))


@router.get("/accuracy", response_model=list[AccuracyMetrics])
async def accuracy_dashboard(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    days: int = Query(30, ge=1, le=365),
) -> list[AccuracyMetrics]:
    """Accuracy, confidence, cost and latency per AI skill."""
    return await AccuracyTrackingService(db, tenant_id).accuracy_dashboard(days)


@router.get("/accuracy/{skill_name}", response_model=AccuracyMetrics)
async def skill_accuracy(
    skill_name: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    days: int = Query(30, ge=1, le=365),
) -> AccuracyMetrics:
    return await AccuracyTrackingService(db, tenant_id).skill_accuracy(skill_name, days)


@router.post("/prompts", response_model=PromptVersionResponse, status_code=status.HTTP_201_CREATED)
async def create_prompt_version(
    body: PromptVersionCreate,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> PromptVersionResponse:
    version = await AccuracyTrackingService(db, tenant_id).create_prompt_version(
        body.skill_name, body.prompt_type, body.prompt_content, body.description, body.change_notes
    )
    return PromptVersionResponse.model_validate(version)


@router.post("/prompts/{prompt_id}/activate", response_model=PromptVersionResponse)
async def activate_prompt_version(
    prompt_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> PromptVersionResponse:
    try:
        version = await AccuracyTrackingService(db, tenant_id).activate_prompt_version(prompt_id)
    except ValueError as e:
        raise _not_found(str(e))
    return PromptVersionResponse.model_validate(version)


@router.get("/prompts/{skill_name}/active", response_model=PromptVersionResponse)
async def active_prompt(
    skill_name: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    prompt_type: PromptType = "system",
) -> PromptVersionResponse:
    version = await AccuracyTrackingService(db, tenant_id).get_active_prompt(skill_name, prompt_type)
    if version is None:
        raise _not_found("No active prompt version")
    return PromptVersionResponse.model_validate(version)


@router.get("/prompts/{skill_name}", response_model=list[PromptVersionResponse])
async def prompt_history(
    skill_name: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    prompt_type: PromptType = "system",
) -> list[PromptVersionResponse]:
    """All versions of a skill's prompt, newest first."""
    versions = await AccuracyTrackingService(db, tenant_id).prompt_history(skill_name, prompt_type)
    return [PromptVersionResponse.model_validate(v) for v in versions]


@router.post("/experiments", response_model=ExperimentResponse, status_code=status.HTTP_201_CREATED)
async def create_experiment(
    body: ExperimentConfig,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> ExperimentResponse:
    experiment = await AccuracyTrackingService(db, tenant_id).create_experiment(body)
    return ExperimentResponse.model_validate(experiment)


@router.post("/experiments/{experiment_id}/start", response_model=ExperimentResponse)
async def start_experiment(
    experiment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> ExperimentResponse:
    """Start a draft experiment.

    Raises:
        HTTPException: 404 if missing, 409 if the experiment is not a draft.
    """
    service = AccuracyTrackingService(db, tenant_id)
    if await service.get_experiment(experiment_id) is None:
        raise _not_found("Experiment not found")
    try:
        experiment = await service.start_experiment(experiment_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ExperimentResponse.model_validate(experiment)


@router.get("/experiments/{experiment_id}/results", response_model=ExperimentResults)
async def experiment_results(
    experiment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> ExperimentResults:
    """Two-proportion z-test of treatment vs control accuracy."""
    results = await AccuracyTrackingService(db, tenant_id).experiment_results(experiment_id)
    if results is None:
        raise _not_found("Experiment not found")
    return results


@router.get("/experiments/{experiment_name}/variant", response_model=VariantAssignment)
async def choose_variant(
    experiment_name: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> VariantAssignment:
    """Assign one call of a running experiment to control or treatment.

    Raises:
        HTTPException: 404 if no experiment by that name is running.
    """
    assignment = await AccuracyTrackingService(db, tenant_id).choose_variant(experiment_name)
    if assignment is None:
        raise _not_found("No running experiment with that name")
    return assignment
