"""SQLAlchemy models for FHIR resources."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class FhirResource(Base):
    """FHIR R4 resource stored as raw JSON, scoped to a tenant.

    `fhir_id` is the logical id exposed on the FHIR API and is unique per
    (tenant, resource type). `patient_fhir_id` is denormalised from the
    resource's subject/patient reference to make compartment searches cheap.
    """

    __tablename__ = "fhir_resources"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    # Identifiers
    fhir_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    patient_fhir_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Provenance, e.g. "HL7v2#MSG00001"
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)

    data: Mapped[dict] = mapped_column(JSONB, nullable=False)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "resource_type", "fhir_id", name="uq_fhir_tenant_type_id"),
        Index("idx_fhir_tenant_type_patient", "tenant_id", "resource_type", "patient_fhir_id"),
        Index("idx_fhir_data_gin", "data", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<FhirResource(id={self.id}, type={self.resource_type}, fhir_id={self.fhir_id})>"
