"""Pydantic schemas for passive SDOH detection."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SourceType = Literal[
    "check_in_text",
    "self_report_note",
    "meal_photo",
    "engagement_gap",
    "message_content",
    "community_post",
]
RiskLevel = Literal["low", "moderate", "high", "critical"]


class SDOHDetection(BaseModel):
    """One SDOH category found in a piece of free text."""

    category: str
    confidence: int = Field(..., ge=0, le=100)
    matched_keywords: list[str]
    context_snippet: str
    risk_level: RiskLevel
    suggested_z_code: str
    source_type: SourceType
    source_id: str
    is_critical: bool = False


class AnalyzeRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    text: str = Field(..., max_length=20000)
    source_type: SourceType
    source_id: str = Field(..., min_length=1)


class DetectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id: str
    category: str
    confidence: int
    matched_keywords: list[str]
    context_snippet: str
    risk_level: str
    suggested_z_code: str
    source_type: str
    source_id: str
    reviewed: bool
    confirmed: bool | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    observation_fhir_id: str | None = None
    detected_at: datetime | None = None


class DetectionListResponse(BaseModel):
    items: list[DetectionResponse]
    total: int


class ReviewDetectionRequest(BaseModel):
    confirmed: bool
    notes: str | None = None
