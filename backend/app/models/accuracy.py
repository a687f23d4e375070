"""SQLAlchemy models for AI prediction accuracy tracking and prompt experiments."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AIPrediction(Base):
    """One AI prediction and, once known, its outcome."""

    __tablename__ = "ai_predictions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    skill_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prediction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    prediction_value: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    patient_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    model: Mapped[str] = mapped_column(String(100), nullable=False)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    prompt_version_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    # Set when the prediction was produced under a running experiment
    experiment_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    experiment_variant: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Outcome
    actual_outcome: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    is_accurate: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    outcome_source: Mapped[str | None] = mapped_column(String(30), nullable=True)
    outcome_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome_recorded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    predicted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    __table_args__ = (
        Index("idx_ai_pred_skill_time", "tenant_id", "skill_name", "predicted_at"),
    )


class AIPromptVersion(Base):
    """Versioned prompt text for a skill; at most one active per (skill, type)."""

    __tablename__ = "ai_prompt_versions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    skill_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt_type: Mapped[str] = mapped_column(String(20), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt_content: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_outcomes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_accurate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accuracy_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "skill_name", "prompt_type", "version_number",
            name="uq_prompt_version",
        ),
    )


class AIPromptExperiment(Base):
    """A/B test between two prompt versions."""

    __tablename__ = "ai_prompt_experiments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    experiment_name: Mapped[str] = mapped_column(String(100), nullable=False)
    skill_name: Mapped[str] = mapped_column(String(100), nullable=False)
    hypothesis: Mapped[str] = mapped_column(Text, nullable=False)

    control_prompt_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    treatment_prompt_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    traffic_split: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    min_sample_size: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    control_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    control_accurate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    treatment_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    treatment_accurate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "experiment_name", name="uq_experiment_name"),
    )
