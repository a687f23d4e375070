"""Pydantic models for X12 997 Functional Acknowledgments."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# === Parsed 997 ===


class X12Delimiters(BaseModel):
    element: str = "*"
    component: str = ":"
    segment: str = "~"


class ISAEnvelope(BaseModel):
    """Interchange control header."""

    authorization_info_qualifier: str = ""
    authorization_info: str = ""
    security_info_qualifier: str = ""
    security_info: str = ""
    sender_id_qualifier: str
    sender_id: str
    receiver_id_qualifier: str
    receiver_id: str
    date: str
    time: str
    repetition_separator: str = ""
    version: str
    control_number: str
    acknowledgment_requested: str = ""
    usage_indicator: str
    component_separator: str = ""


class GSEnvelope(BaseModel):
    """Functional group header."""

    functional_id_code: str
    sender_code: str
    receiver_code: str
    date: str
    time: str
    control_number: str
    responsible_agency_code: str = ""
    version: str


class AK1Response(BaseModel):
    """Functional group being acknowledged."""

    functional_id_code: str
    group_control_number: str
    version: str | None = None


class AK4ElementError(BaseModel):
    position_in_segment: int
    component_position: int | None = None
    data_element_reference: str | None = None
    error_code: str
    bad_data: str | None = None


class AK3SegmentError(BaseModel):
    segment_id: str
    segment_position: int
    loop_identifier: str | None = None
    error_code: str | None = None
    element_errors: list[AK4ElementError] = Field(default_factory=list)


class AK2TransactionResponse(BaseModel):
    transaction_set_identifier: str
    control_number: str
    implementation_reference: str | None = None


class AK5TransactionStatus(BaseModel):
    ack_code: str = "R"
    syntax_error_codes: list[str] = Field(default_factory=list)


class TransactionSetAcknowledgment(BaseModel):
    """One AK2..AK5 loop."""

    ak2: AK2TransactionResponse
    segment_errors: list[AK3SegmentError] = Field(default_factory=list)
    ak5: AK5TransactionStatus


class AK9GroupStatus(BaseModel):
    ack_code: str
    transaction_sets_included: int
    transaction_sets_received: int
    transaction_sets_accepted: int
    syntax_error_codes: list[str] = Field(default_factory=list)


class Parsed997(BaseModel):
    isa: ISAEnvelope
    gs: GSEnvelope
    st_control_number: str
    ak1: AK1Response
    transaction_sets: list[TransactionSetAcknowledgment] = Field(default_factory=list)
    ak9: AK9GroupStatus
    raw_segments: list[str] = Field(default_factory=list)


class X12ParseResult(BaseModel):
    success: bool
    data: Parsed997 | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class Summary997(BaseModel):
    """Totals across the transaction sets of one 997."""

    total_transaction_sets: int = 0
    accepted: int = 0
    accepted_with_errors: int = 0
    rejected: int = 0
    segment_errors: int = 0
    element_errors: int = 0


# === API ===


class Process997Request(BaseModel):
    content: str = Field(..., min_length=1)
    clearinghouse: str | None = None
    original_transaction_type: str = "837P"
    claim_ids: list[str] | None = None


class AckProcessingResult(BaseModel):
    ack_id: uuid.UUID
    status: str
    status_description: str
    processed: bool = True
    errors_found: int = 0
    summary: Summary997


class LinkClaimsRequest(BaseModel):
    claim_ids: list[str] = Field(..., min_length=1)


class ElementErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    element_position: int
    component_position: int | None = None
    data_element_reference: str | None = None
    error_code: str
    bad_data: str | None = None


class SegmentErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    segment_id: str
    segment_position: int
    loop_identifier: str | None = None
    error_code: str | None = None
    element_errors: list[ElementErrorResponse] = Field(default_factory=list)


class TransactionSetAckResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_set_identifier: str
    transaction_set_control_number: str
    status: str
    error_codes: list[str] | None = None
    segment_errors: list[SegmentErrorResponse] = Field(default_factory=list)


class AcknowledgmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    interchange_control_number: str
    group_control_number: str
    acknowledged_group_control_number: str
    clearinghouse: str | None = None
    original_transaction_type: str | None = None
    status: str
    transaction_sets_included: int
    transaction_sets_received: int
    transaction_sets_accepted: int
    transaction_sets_rejected: int
    claim_ids: list[str] | None = None
    summary: dict[str, Any] | None = None
    received_at: datetime | None = None


class AcknowledgmentDetailResponse(AcknowledgmentResponse):
    transaction_sets: list[TransactionSetAckResponse] = Field(default_factory=list)


class X12Statistics(BaseModel):
    period_days: int
    total: int
    by_status: dict[str, int]
    acceptance_rate: float | None = None
    common_segment_errors: list[dict[str, Any]] = Field(default_factory=list)
    common_element_errors: list[dict[str, Any]] = Field(default_factory=list)
