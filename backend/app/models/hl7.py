"""SQLAlchemy model for the HL7 v2 message log.

Only non-PHI metadata is stored: the MRN is kept as a SHA-256 hash and
the raw message body is never persisted.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class HL7MessageStatus(str, enum.Enum):
    """Processing states of an inbound HL7 message."""

    RECEIVED = "received"
    PARSED = "parsed"
    TRANSLATED = "translated"
    PROCESSED = "processed"
    ERROR = "error"


class HL7MessageLog(Base):
    """One row per HL7 message received over HTTP or MLLP."""

    __tablename__ = "hl7_message_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    message_control_id: Mapped[str] = mapped_column(String(100), nullable=False)
    message_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    message_structure: Mapped[str | None] = mapped_column(String(20), nullable=True)

    direction: Mapped[str] = mapped_column(String(10), nullable=False, default="inbound")
    transport: Mapped[str] = mapped_column(String(10), nullable=False, default="http")
    status: Mapped[HL7MessageStatus] = mapped_column(
        Enum(
            HL7MessageStatus,
            name="hl7_message_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=HL7MessageStatus.RECEIVED,
    )

    message_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sending_application: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sending_facility: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiving_application: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiving_facility: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hl7_version: Mapped[str | None] = mapped_column(String(10), nullable=True)
    mrn_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    fhir_bundle_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fhir_resources_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    ack_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    ack_message_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    errors: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    warnings: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_hl7_log_tenant_received", "tenant_id", "received_at"),
        Index("idx_hl7_log_type", "message_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<HL7MessageLog(id={self.id}, control_id={self.message_control_id}, "
            f"status={self.status})>"
        )
