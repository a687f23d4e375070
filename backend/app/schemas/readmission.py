"""Pydantic schemas for readmission risk explainability and prediction."""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.readmission_model import TENANT_CONFIG_DEFAULTS

# === Features ===


class ClinicalFeatures(BaseModel):
    prior_admissions_30_day: int | None = None
    prior_admissions_90_day: int = 0
    ed_visits_6_month: int = 0
    comorbidity_count: int | None = None
    has_chf: bool = False
    has_copd: bool = False
    has_diabetes: bool = False
    has_renal_failure: bool = False
    is_high_risk_diagnosis: bool = False
    length_of_stay_category: str | None = None
    systolic_bp_at_discharge: float | None = None
    diastolic_bp_at_discharge: float | None = None
    oxygen_saturation_at_discharge: float | None = None
    vital_signs_stable_at_discharge: bool = False
    labs_within_normal_limits: bool | None = None
    lab_trends_concerning: bool = False


class MedicationFeatures(BaseModel):
    active_medication_count: int | None = None
    is_polypharmacy: bool = False
    has_high_risk_medications: bool = False
    high_risk_medication_list: list[str] = Field(default_factory=list)
    significant_medication_changes: bool = False
    prescription_filled_within_3_days: bool | None = None
    no_prescription_filled: bool = False


class PostDischargeFeatures(BaseModel):
    follow_up_scheduled: bool | None = None
    no_follow_up_scheduled: bool = False
    days_until_follow_up: int | None = None
    follow_up_within_7_days: bool = False
    has_pcp_assigned: bool = False
    discharge_destination: str | None = None
    discharge_to_home_alone: bool = False
    pending_test_results: list[str] = Field(default_factory=list)


class SocialDeterminantFeatures(BaseModel):
    lives_alone: bool | None = None
    has_caregiver: bool = False
    has_transportation_barrier: bool = False
    distance_to_nearest_hospital_miles: float | None = None
    is_rural_location: bool = False
    ruca_category: str | None = None
    rural_isolation_score: int | None = None
    insurance_type: str | None = None
    low_health_literacy: bool = False
    health_literacy_level: str | None = None
    socially_isolated: bool = False


class FunctionalStatusFeatures(BaseModel):
    adl_dependencies: int = 0
    has_recent_falls: bool = False
    falls_in_past_90_days: int = 0
    fall_risk_score: int | None = None
    has_cognitive_impairment: bool = False
    cognitive_impairment_severity: str | None = None
    mobility_level: str | None = None


class EngagementFeatures(BaseModel):
    check_in_completion_rate_30_day: float | None = None
    check_in_completion_rate_7_day: float | None = None
    consecutive_missed_check_ins: int = 0
    has_engagement_drop: bool = False
    engagement_change_percent: float = 0.0
    stopped_responding: bool = False
    is_disengaging: bool = False
    days_with_zero_activity: int = 0
    red_flag_symptoms: list[str] = Field(default_factory=list)
    negative_mood_trend: bool = False
    concerning_patterns: list[str] = Field(default_factory=list)


class ReadmissionFeatures(BaseModel):
    """Evidence-based readmission risk features for one discharge."""

    clinical: ClinicalFeatures = Field(default_factory=ClinicalFeatures)
    medication: MedicationFeatures = Field(default_factory=MedicationFeatures)
    post_discharge: PostDischargeFeatures = Field(default_factory=PostDischargeFeatures)
    social_determinants: SocialDeterminantFeatures = Field(default_factory=SocialDeterminantFeatures)
    functional_status: FunctionalStatusFeatures = Field(default_factory=FunctionalStatusFeatures)
    engagement: EngagementFeatures = Field(default_factory=EngagementFeatures)
    data_completeness_score: float = Field(default=100.0, ge=0, le=100)


# === Explainability ===

FactorCategory = Literal["clinical", "medication", "post_discharge", "social", "functional", "engagement"]


class RiskFactor(BaseModel):
    name: str
    category: FactorCategory
    value: Any = None
    weight: float
    explanation: str
    evidence: str | None = None
    is_protective: bool = False


class DataQuality(BaseModel):
    completeness: int
    missing_fields: list[str] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"]


class RiskSummary(BaseModel):
    top_risk_factors: list[RiskFactor]
    protective_factors: list[RiskFactor]
    data_quality: DataQuality
    recommendations: list[str]


class ExplainResponse(BaseModel):
    summary: RiskSummary
    patient_summary: str
    ruca_weight: str


# === Prediction ===


class DischargeDisposition(str, Enum):
    HOME = "home"
    HOME_HEALTH = "home_health"
    SNF = "snf"
    LTAC = "ltac"
    REHAB = "rehab"
    HOSPICE = "hospice"


_UNSAFE_CHARS = re.compile(r"[<>'\";]")


def sanitize_text(value: str | None, max_length: int) -> str | None:
    """Strip markup and SQL metacharacters and truncate."""
    if not value:
        return value
    cleaned = _UNSAFE_CHARS.sub("", value).replace("--", "")
    return cleaned[:max_length].strip()


class DischargeContext(BaseModel):
    patient_id: str = Field(..., min_length=1)
    discharge_date: datetime
    discharge_facility: str | None = None
    discharge_disposition: DischargeDisposition
    primary_diagnosis_code: str | None = None
    primary_diagnosis_description: str | None = None
    secondary_diagnoses: list[str] = Field(default_factory=list)
    length_of_stay: int | None = Field(default=None, ge=0)

    @field_validator("discharge_facility")
    @classmethod
    def _clean_facility(cls, v: str | None) -> str | None:
        return sanitize_text(v, 200)

    @field_validator("primary_diagnosis_description")
    @classmethod
    def _clean_description(cls, v: str | None) -> str | None:
        return sanitize_text(v, 300)


class LLMRiskFactor(BaseModel):
    factor: str
    weight: float
    category: str
    evidence: str | None = None


class ProtectiveFactor(BaseModel):
    factor: str
    impact: str
    category: str


class RecommendedIntervention(BaseModel):
    intervention: str
    priority: Literal["low", "medium", "high", "critical"]
    estimated_impact: float
    timeframe: str
    responsible: str


class LLMReadmissionAssessment(BaseModel):
    """Structured output requested from the model."""

    readmission_risk_30_day: float
    readmission_risk_7_day: float
    readmission_risk_90_day: float
    risk_category: Literal["low", "moderate", "high", "critical"]
    risk_factors: list[LLMRiskFactor]
    protective_factors: list[ProtectiveFactor]
    recommended_interventions: list[RecommendedIntervention]
    predicted_readmission_date: date | None = None
    prediction_confidence: float


class DataSourcesAnalyzed(BaseModel):
    readmission_history: bool = False
    sdoh_indicators: bool = False
    checkin_patterns: bool = False
    medication_adherence: bool = False
    care_plan_adherence: bool = False


class ReadmissionPrediction(BaseModel):
    patient_id: str
    discharge_date: datetime
    readmission_risk_30_day: float
    readmission_risk_7_day: float
    readmission_risk_90_day: float
    risk_category: str
    risk_factors: list[LLMRiskFactor]
    protective_factors: list[ProtectiveFactor]
    recommended_interventions: list[RecommendedIntervention]
    predicted_readmission_date: date | None = None
    prediction_confidence: float
    data_sources_analyzed: DataSourcesAnalyzed
    requires_care_plan: bool = False
    model: str
    risk_model_version: str
    latency_ms: int
    prediction_id: str | None = None


class TenantReadmissionSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    predictor_enabled: bool = TENANT_CONFIG_DEFAULTS.predictor_enabled
    auto_create_care_plan: bool = TENANT_CONFIG_DEFAULTS.auto_create_care_plan
    high_risk_threshold: float = Field(default=TENANT_CONFIG_DEFAULTS.high_risk_threshold, ge=0, le=1)


class PredictRequest(BaseModel):
    context: DischargeContext
    features: ReadmissionFeatures
