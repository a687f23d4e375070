"""SQLAlchemy models for X12 997 functional acknowledgments."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class X12Acknowledgment(Base):
    """A received 997 for one functional group (AK1/AK9)."""

    __tablename__ = "x12_acknowledgments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    # Envelope
    interchange_control_number: Mapped[str] = mapped_column(String(20), nullable=False)
    group_control_number: Mapped[str] = mapped_column(String(20), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(50), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(50), nullable=False)
    clearinghouse: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # What this acknowledges
    original_transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    functional_identifier_code: Mapped[str] = mapped_column(String(5), nullable=False)
    acknowledged_group_control_number: Mapped[str] = mapped_column(String(20), nullable=False)

    # AK9
    status: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    transaction_sets_included: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_sets_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_sets_accepted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_sets_rejected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    group_error_codes: Mapped[list[str]] = mapped_column(ARRAY(String(5)), nullable=False, default=list)

    claim_ids: Mapped[list[str]] = mapped_column(ARRAY(String(100)), nullable=False, default=list)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    transaction_sets: Mapped[list["X12TransactionSetAck"]] = relationship(
        back_populates="acknowledgment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (Index("idx_x12_ack_tenant_received", "tenant_id", "received_at"),)

    def __repr__(self) -> str:
        return f"<X12Acknowledgment(id={self.id}, status={self.status})>"


class X12TransactionSetAck(Base):
    """AK2/AK5 response for one acknowledged transaction set."""

    __tablename__ = "x12_transaction_set_acks"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    acknowledgment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("x12_acknowledgments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_set_identifier: Mapped[str] = mapped_column(String(5), nullable=False)
    transaction_set_control_number: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(2), nullable=False)
    error_codes: Mapped[list[str]] = mapped_column(ARRAY(String(5)), nullable=False, default=list)

    acknowledgment: Mapped[X12Acknowledgment] = relationship(back_populates="transaction_sets")
    segment_errors: Mapped[list["X12SegmentError"]] = relationship(
        back_populates="transaction_set",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class X12SegmentError(Base):
    """AK3 segment-level error within a transaction set."""

    __tablename__ = "x12_segment_errors"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_set_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("x12_transaction_set_acks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    segment_id: Mapped[str] = mapped_column(String(5), nullable=False)
    segment_position: Mapped[int] = mapped_column(Integer, nullable=False)
    loop_identifier: Mapped[str | None] = mapped_column(String(10), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(5), nullable=True)

    transaction_set: Mapped[X12TransactionSetAck] = relationship(back_populates="segment_errors")
    element_errors: Mapped[list["X12ElementError"]] = relationship(
        back_populates="segment_error",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class X12ElementError(Base):
    """AK4 element-level error under a segment error."""

    __tablename__ = "x12_element_errors"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    segment_error_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("x12_segment_errors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    element_position: Mapped[int] = mapped_column(Integer, nullable=False)
    component_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_element_reference: Mapped[str | None] = mapped_column(String(10), nullable=True)
    error_code: Mapped[str] = mapped_column(String(5), nullable=False)
    bad_data: Mapped[str | None] = mapped_column(String(255), nullable=True)

    segment_error: Mapped[X12SegmentError] = relationship(back_populates="element_errors")
