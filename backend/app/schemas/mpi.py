"""Pydantic schemas for the Master Patient Index."""

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PatientDemographics(BaseModel):
    """Identity attributes used for matching."""

    first_name: str | None = None
    last_name: str | None = None
    middle_name: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    ssn_last_four: str | None = Field(default=None, pattern=r"^\d{4}$")
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    mrn: str | None = None


class MatchScore(BaseModel):
    overall: float
    field_scores: dict[str, float] = Field(default_factory=dict)
    matched_fields: list[str] = Field(default_factory=list)
    blocking_key: str | None = None


class MatchResult(BaseModel):
    patient_id: str
    identity_record_id: uuid.UUID
    overall_score: float
    field_scores: dict[str, float]
    matched_fields: list[str]
    blocking_key: str | None = None
    is_auto_match_eligible: bool = False


class RegisterIdentityRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    demographics: PatientDemographics


class IdentityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id: str
    last_name_soundex: str | None = None
    date_of_birth: date | None = None
    merged_into: str | None = None
    created_at: datetime | None = None


class MatchRequest(BaseModel):
    demographics: PatientDemographics
    min_score: float | None = Field(default=None, ge=0, le=100)
    exclude_patient_id: str | None = None


class MatchResponse(BaseModel):
    matches: list[MatchResult]
    total: int


class DuplicateScanResponse(BaseModel):
    candidates_created: int


class ReviewDecision(str, Enum):
    MERGE = "merge"
    NOT_MATCH = "not_match"
    DEFER = "defer"


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    notes: str | None = Field(default=None, max_length=2000)


class CandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id_a: str
    patient_id_b: str
    overall_score: float
    field_scores: dict[str, float]
    matched_fields: list[str]
    blocking_key: str | None = None
    algorithm_version: str
    status: str
    priority: str
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    created_at: datetime | None = None


class CandidateListResponse(BaseModel):
    items: list[CandidateResponse]
    total: int


class CandidateStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    pending_by_priority: dict[str, int] = Field(default_factory=dict)


class MatchingConfig(BaseModel):
    match_threshold: float
    auto_merge_threshold: float
    field_weights: dict[str, int]
    algorithm_version: str
