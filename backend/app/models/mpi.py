"""SQLAlchemy models for the Master Patient Index."""

import enum
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import Date, DateTime, Enum, Float, Index, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class MatchCandidateStatus(str, enum.Enum):
    """Review lifecycle of a potential duplicate pair."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    CONFIRMED_MATCH = "confirmed_match"
    CONFIRMED_NOT_MATCH = "confirmed_not_match"
    MERGED = "merged"
    DEFERRED = "deferred"


class MatchPriority(str, enum.Enum):
    """Review queue priority, derived from the match score."""

    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MPIIdentityRecord(Base):
    """Normalised demographics plus blocking keys for one patient."""

    __tablename__ = "mpi_identity_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Demographics kept as submitted (used for scoring)
    demographics: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    # Blocking keys
    last_name_soundex: Mapped[str | None] = mapped_column(String(4), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone_normalized: Mapped[str | None] = mapped_column(String(20), nullable=True)
    mrn: Mapped[str | None] = mapped_column(String(100), nullable=True)

    merged_into: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "patient_id", name="uq_mpi_tenant_patient"),
        Index("idx_mpi_block_soundex", "tenant_id", "last_name_soundex"),
        Index("idx_mpi_block_dob", "tenant_id", "date_of_birth"),
        Index("idx_mpi_block_phone", "tenant_id", "phone_normalized"),
        Index("idx_mpi_block_mrn", "tenant_id", "mrn"),
    )


class MPIMatchCandidate(Base):
    """A scored potential duplicate awaiting human review.

    Patient ids are stored ordered (a < b) so a pair has one row.
    """

    __tablename__ = "mpi_match_candidates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    patient_id_a: Mapped[str] = mapped_column(String(255), nullable=False)
    patient_id_b: Mapped[str] = mapped_column(String(255), nullable=False)

    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    field_scores: Mapped[dict[str, float]] = mapped_column(JSONB, nullable=False)
    matched_fields: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    blocking_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    algorithm_version: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[MatchCandidateStatus] = mapped_column(
        Enum(
            MatchCandidateStatus,
            name="mpi_candidate_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=MatchCandidateStatus.PENDING,
        index=True,
    )
    priority: Mapped[MatchPriority] = mapped_column(
        Enum(
            MatchPriority,
            name="mpi_candidate_priority",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=MatchPriority.NORMAL,
    )

    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "patient_id_a", "patient_id_b", name="uq_mpi_candidate_pair"),
    )
