"""Pydantic schemas for AI accuracy tracking and prompt experiments."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PredictionType = Literal["classification", "score", "code", "text", "structured"]
OutcomeSource = Literal["provider_review", "system_event", "manual_audit", "automated"]
PromptType = Literal["system", "user", "template"]
Variant = Literal["control", "treatment"]


class PredictionRecord(BaseModel):
    skill_name: str = Field(..., min_length=1, max_length=100)
    prediction_type: PredictionType
    prediction_value: dict[str, Any]
    confidence: float | None = Field(default=None, ge=0, le=1)
    patient_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None
    latency_ms: int | None = None
    prompt_version_id: uuid.UUID | None = None
    experiment_id: uuid.UUID | None = None
    experiment_variant: Variant | None = None


class PredictionCreated(BaseModel):
    prediction_id: uuid.UUID


class OutcomeRequest(BaseModel):
    actual_outcome: dict[str, Any]
    is_accurate: bool
    outcome_source: OutcomeSource
    notes: str | None = None


class AccuracyMetrics(BaseModel):
    skill_name: str
    total_predictions: int = 0
    predictions_with_outcome: int = 0
    accurate_count: int = 0
    inaccurate_count: int = 0
    accuracy_rate: float | None = None
    avg_confidence: float | None = None
    total_cost_usd: float = 0.0
    avg_latency_ms: int | None = None


class PromptVersionCreate(BaseModel):
    skill_name: str = Field(..., min_length=1, max_length=100)
    prompt_type: PromptType = "system"
    prompt_content: str = Field(..., min_length=1)
    description: str | None = None
    change_notes: str | None = None


class PromptVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    skill_name: str
    prompt_type: str
    version_number: int
    prompt_content: str
    description: str | None = None
    is_active: bool
    total_uses: int = 0
    total_outcomes: int = 0
    total_accurate: int = 0
    accuracy_rate: float | None = None
    activated_at: datetime | None = None


class ExperimentConfig(BaseModel):
    experiment_name: str = Field(..., min_length=1, max_length=100)
    skill_name: str
    hypothesis: str
    control_prompt_id: uuid.UUID
    treatment_prompt_id: uuid.UUID
    traffic_split: float = Field(default=0.5, ge=0, le=1)
    min_sample_size: int = Field(default=100, ge=1)


class ExperimentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    experiment_name: str
    skill_name: str
    status: str
    traffic_split: float
    start_at: datetime | None = None


class ExperimentResults(BaseModel):
    experiment_name: str
    control_predictions: int
    control_accurate: int
    treatment_predictions: int
    treatment_accurate: int
    p_value: float | None = None
    is_significant: bool = False
    winner: Literal["control", "treatment", "no_difference"]
    min_sample_size_reached: bool = False


class VariantAssignment(BaseModel):
    experiment_id: uuid.UUID
    prompt_id: uuid.UUID
    variant: Variant


class CodeRef(BaseModel):
    code: str
    type: str


class BillingCodeReview(BaseModel):
    suggested_codes: list[CodeRef]
    final_codes: list[CodeRef]


class SDOHDetectionReview(BaseModel):
    was_confirmed: bool
    was_false_positive: bool = False
