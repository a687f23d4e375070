"""Pydantic models for parsed HL7 v2.x messages.

Field names follow the HL7 v2.5.1 element names in snake_case. Optional
elements are None when absent; repeating elements are lists (possibly empty).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# === Encoding ===


class HL7Delimiters(BaseModel):
    """Encoding characters declared in MSH-1 and MSH-2."""

    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"


# === Composite data types ===


class CodedElement(BaseModel):
    """CE / CWE coded element."""

    identifier: str | None = None
    text: str | None = None
    coding_system: str | None = None
    alternate_identifier: str | None = None
    alternate_text: str | None = None
    alternate_coding_system: str | None = None
    coding_system_version: str | None = None
    alternate_coding_system_version: str | None = None
    original_text: str | None = None


class ExtendedPerson(BaseModel):
    """XCN extended composite id and name for persons (providers)."""

    id: str | None = None
    family_name: str | None = None
    given_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    prefix: str | None = None
    degree: str | None = None


class PatientIdentifier(BaseModel):
    """CX extended composite identifier (PID-3)."""

    id: str
    check_digit: str | None = None
    check_digit_scheme: str | None = None
    assigning_authority: str | None = None
    identifier_type_code: str | None = None
    assigning_facility: str | None = None


class PersonName(BaseModel):
    """XPN extended person name."""

    family_name: str | None = None
    given_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    prefix: str | None = None
    degree: str | None = None
    name_type_code: str | None = None


class Address(BaseModel):
    """XAD extended address."""

    street: str | None = None
    other_designation: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None
    address_type: str | None = None
    other_geographic: str | None = None
    county: str | None = None


class Telecom(BaseModel):
    """XTN extended telecommunication number."""

    number: str | None = None
    use_code: str | None = None
    equipment_type: str | None = None
    communication_address: str | None = None


class PersonLocation(BaseModel):
    """PL person location (PV1-3)."""

    point_of_care: str | None = None
    room: str | None = None
    bed: str | None = None
    facility: str | None = None
    location_status: str | None = None
    person_location_type: str | None = None
    building: str | None = None
    floor: str | None = None


class MessageType(BaseModel):
    """MSG message type (MSH-9)."""

    message_code: str
    trigger_event: str | None = None
    message_structure: str | None = None


# === Segments ===


class MSHSegment(BaseModel):
    segment_type: str = "MSH"
    encoding_characters: str
    sending_application: str | None = None
    sending_facility: str | None = None
    receiving_application: str | None = None
    receiving_facility: str | None = None
    datetime: str | None = None
    security: str | None = None
    message_type: MessageType
    message_control_id: str = ""
    processing_id: str = "P"
    version_id: str = "2.5.1"


class PIDSegment(BaseModel):
    segment_type: str = "PID"
    set_id: str | None = None
    patient_identifiers: list[PatientIdentifier] = Field(default_factory=list)
    patient_names: list[PersonName] = Field(default_factory=list)
    mother_maiden_name: str | None = None
    date_of_birth: str | None = None
    administrative_sex: str | None = None
    race: list[CodedElement] = Field(default_factory=list)
    addresses: list[Address] = Field(default_factory=list)
    home_phones: list[Telecom] = Field(default_factory=list)
    business_phones: list[Telecom] = Field(default_factory=list)
    primary_language: CodedElement | None = None
    marital_status: CodedElement | None = None
    account_number: str | None = None
    ssn: str | None = None
    ethnic_group: list[CodedElement] = Field(default_factory=list)
    multiple_birth_indicator: str | None = None
    birth_order: str | None = None
    death_datetime: str | None = None
    death_indicator: str | None = None


class PV1Segment(BaseModel):
    segment_type: str = "PV1"
    set_id: str | None = None
    patient_class: str = "U"
    assigned_location: PersonLocation | None = None
    admission_type: str | None = None
    preadmit_number: str | None = None
    attending_doctors: list[ExtendedPerson] = Field(default_factory=list)
    referring_doctors: list[ExtendedPerson] = Field(default_factory=list)
    consulting_doctors: list[ExtendedPerson] = Field(default_factory=list)
    hospital_service: str | None = None
    readmission_indicator: str | None = None
    admit_source: str | None = None
    admitting_doctors: list[ExtendedPerson] = Field(default_factory=list)
    visit_number: str | None = None
    discharge_disposition: str | None = None
    admit_datetime: str | None = None
    discharge_datetime: str | None = None


class PV2Segment(BaseModel):
    segment_type: str = "PV2"
    admit_reason: CodedElement | None = None


class OBRSegment(BaseModel):
    segment_type: str = "OBR"
    set_id: str | None = None
    placer_order_number: str | None = None
    filler_order_number: str | None = None
    universal_service_id: CodedElement
    priority: str | None = None
    observation_datetime: str | None = None
    observation_end_datetime: str | None = None
    relevant_clinical_info: str | None = None
    ordering_provider: list[ExtendedPerson] = Field(default_factory=list)
    results_status_change_datetime: str | None = None
    diagnostic_service_section: str | None = None
    result_status: str | None = None
    reason_for_study: list[CodedElement] = Field(default_factory=list)
    principal_result_interpreter: str | None = None


class OBXSegment(BaseModel):
    segment_type: str = "OBX"
    set_id: str | None = None
    value_type: str | None = None
    observation_identifier: CodedElement
    observation_sub_id: str | None = None
    observation_values: list[str] = Field(default_factory=list)
    units: CodedElement | None = None
    reference_range: str | None = None
    abnormal_flags: list[str] = Field(default_factory=list)
    observation_result_status: str = "F"
    observation_datetime: str | None = None
    responsible_observer: list[ExtendedPerson] = Field(default_factory=list)
    analysis_datetime: str | None = None


class ORCSegment(BaseModel):
    segment_type: str = "ORC"
    order_control: str
    placer_order_number: str | None = None
    filler_order_number: str | None = None
    order_status: str | None = None
    transaction_datetime: str | None = None
    ordering_provider: list[ExtendedPerson] = Field(default_factory=list)


class DG1Segment(BaseModel):
    segment_type: str = "DG1"
    set_id: str = "1"
    diagnosis_coding_method: str | None = None
    diagnosis_code: CodedElement | None = None
    diagnosis_description: str | None = None
    diagnosis_datetime: str | None = None
    diagnosis_type: str | None = None
    diagnosing_clinician: list[ExtendedPerson] = Field(default_factory=list)
    attestation_datetime: str | None = None


class AL1Segment(BaseModel):
    segment_type: str = "AL1"
    set_id: str | None = None
    allergen_type: CodedElement | None = None
    allergen: CodedElement
    severity: str | None = None
    reactions: list[str] = Field(default_factory=list)
    identification_date: str | None = None


class IN1Segment(BaseModel):
    segment_type: str = "IN1"
    set_id: str | None = None
    insurance_plan_id: CodedElement | None = None
    insurance_company_id: str | None = None
    insurance_company_name: list[str] = Field(default_factory=list)
    group_number: str | None = None
    group_name: str | None = None
    plan_effective_date: str | None = None
    plan_expiration_date: str | None = None
    plan_type: str | None = None
    insured_relationship: CodedElement | None = None
    policy_number: str | None = None
    insured_id_number: list[str] = Field(default_factory=list)


class NTESegment(BaseModel):
    segment_type: str = "NTE"
    set_id: str | None = None
    source: str | None = None
    comments: list[str] = Field(default_factory=list)


class MSASegment(BaseModel):
    segment_type: str = "MSA"
    acknowledgment_code: str = "AA"
    message_control_id: str = ""
    text_message: str | None = None


class ERRSegment(BaseModel):
    segment_type: str = "ERR"
    error_location: str | None = None
    error_code: CodedElement | None = None
    severity: str | None = None
    diagnostic_information: str | None = None


class GenericSegment(BaseModel):
    """Any segment without a typed model; fields are kept as raw strings."""

    segment_type: str
    fields: list[str] = Field(default_factory=list)


HL7Segment = (
    MSHSegment
    | PIDSegment
    | PV1Segment
    | PV2Segment
    | OBRSegment
    | OBXSegment
    | ORCSegment
    | DG1Segment
    | AL1Segment
    | IN1Segment
    | NTESegment
    | MSASegment
    | ERRSegment
    | GenericSegment
)


# === Messages ===


class HL7Message(BaseModel):
    """A parsed message with convenient access to the common segments."""

    raw: str
    delimiters: HL7Delimiters
    header: MSHSegment
    segments: list[HL7Segment] = Field(default_factory=list)

    patient: PIDSegment | None = None
    visit: PV1Segment | None = None
    visit_additional: PV2Segment | None = None
    observation_requests: list[OBRSegment] = Field(default_factory=list)
    observations: list[OBXSegment] = Field(default_factory=list)
    orders: list[ORCSegment] = Field(default_factory=list)
    diagnoses: list[DG1Segment] = Field(default_factory=list)
    allergies: list[AL1Segment] = Field(default_factory=list)
    insurance: list[IN1Segment] = Field(default_factory=list)
    notes: list[NTESegment] = Field(default_factory=list)
    acknowledgment: MSASegment | None = None
    errors: list[ERRSegment] = Field(default_factory=list)

    @property
    def message_code(self) -> str:
        return self.header.message_type.message_code

    @property
    def trigger_event(self) -> str | None:
        return self.header.message_type.trigger_event

    @property
    def type_label(self) -> str:
        """Message type as displayed in logs, e.g. "ADT^A01"."""
        trigger = self.trigger_event
        return f"{self.message_code}^{trigger}" if trigger else self.message_code


class ADTMessage(HL7Message):
    """Admit / discharge / transfer."""


class ORUResultGroup(BaseModel):
    """One OBR with the OBX and NTE segments that follow it."""

    request: OBRSegment
    observations: list[OBXSegment] = Field(default_factory=list)
    notes: list[NTESegment] = Field(default_factory=list)


class ORUMessage(HL7Message):
    """Unsolicited observation result."""

    result_groups: list[ORUResultGroup] = Field(default_factory=list)


class ORMOrderGroup(BaseModel):
    """One ORC with the OBR and OBX segments that follow it."""

    order: ORCSegment
    requests: list[OBRSegment] = Field(default_factory=list)
    observations: list[OBXSegment] = Field(default_factory=list)


class ORMMessage(HL7Message):
    """General order."""

    order_groups: list[ORMOrderGroup] = Field(default_factory=list)


class ParseResult(BaseModel):
    """Outcome of parsing: a message on success, otherwise errors."""

    success: bool
    message: HL7Message | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# === API ===


class HL7MessageRequest(BaseModel):
    """JSON envelope for an HL7 message posted over HTTP."""

    message: str = Field(..., min_length=1)


class MessageLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    message_control_id: str
    message_type: str | None = None
    event_type: str | None = None
    transport: str
    status: str
    message_size: int
    sending_application: str | None = None
    sending_facility: str | None = None
    fhir_bundle_id: str | None = None
    fhir_resources_created: int = 0
    ack_code: str | None = None
    errors: list[str] | None = None
    warnings: list[str] | None = None
    received_at: datetime | None = None
    processing_duration_ms: int | None = None
