"""HL7 v2.x message parser and acknowledgment builder.

Parses pipe-delimited HL7 v2 messages (ADT, ORU, ORM and anything else with a
valid MSH) into typed pydantic models. Encoding characters are taken from the
MSH segment of each message, so non-default delimiters work transparently.

parse_message() never raises: failures are reported in ParseResult.errors so
the caller can still produce an AR/AE acknowledgment.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from app.schemas.hl7 import (
    ADTMessage,
    AL1Segment,
    Address,
    CodedElement,
    DG1Segment,
    ERRSegment,
    ExtendedPerson,
    GenericSegment,
    HL7Delimiters,
    HL7Message,
    HL7Segment,
    IN1Segment,
    MessageType,
    MSASegment,
    MSHSegment,
    NTESegment,
    OBRSegment,
    OBXSegment,
    ORCSegment,
    ORMMessage,
    ORMOrderGroup,
    ORUMessage,
    ORUResultGroup,
    ParseResult,
    PatientIdentifier,
    PersonLocation,
    PersonName,
    PIDSegment,
    PV1Segment,
    PV2Segment,
    Telecom,
)

logger = logging.getLogger(__name__)

# MLLP block framing
MLLP_START = "\x0b"
MLLP_END = "\x1c"
MLLP_TRAILER = "\x1c\r"

DEFAULT_VERSION = "2.5.1"
SEGMENT_TERMINATOR = "\r"


class HL7ParseError(ValueError):
    """Raised for structurally invalid HL7 input."""


# =============================================================================
# Framing and escaping
# =============================================================================


def strip_mllp(raw: str) -> str:
    """Remove MLLP start block and end block characters if present."""
    message = raw
    if message.startswith(MLLP_START):
        message = message[1:]
    if message.endswith(MLLP_TRAILER):
        message = message[:-2]
    elif message.endswith(MLLP_END):
        message = message[:-1]
    return message


def frame_mllp(message: str) -> str:
    """Wrap a message in MLLP framing for transmission."""
    return f"{MLLP_START}{message}{MLLP_TRAILER}"


def escape(value: str, delimiters: HL7Delimiters | None = None) -> str:
    """Encode delimiter characters as HL7 escape sequences."""
    d = delimiters or HL7Delimiters()
    e = d.escape
    out = value.replace(e, f"{e}E{e}")
    out = out.replace(d.field, f"{e}F{e}")
    out = out.replace(d.component, f"{e}S{e}")
    out = out.replace(d.subcomponent, f"{e}T{e}")
    out = out.replace(d.repetition, f"{e}R{e}")
    out = out.replace("\r", f"{e}X0D{e}")
    out = out.replace("\n", f"{e}X0A{e}")
    return out


def unescape(value: str, delimiters: HL7Delimiters | None = None) -> str:
    """Decode HL7 escape sequences (\\F\\, \\S\\, \\T\\, \\R\\, \\E\\, \\Xhh\\, \\.br\\)."""
    d = delimiters or HL7Delimiters()
    e = d.escape
    if e not in value:
        return value

    simple = {
        "F": d.field,
        "S": d.component,
        "T": d.subcomponent,
        "R": d.repetition,
        "E": e,
        ".br": "\r",
    }
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != e:
            out.append(ch)
            i += 1
            continue
        end = value.find(e, i + 1)
        if end == -1:
            out.append(value[i:])
            break
        code = value[i + 1 : end]
        if code in simple:
            out.append(simple[code])
        elif code.startswith("X") and len(code) > 1 and len(code) % 2 == 1:
            try:
                out.append(bytes.fromhex(code[1:]).decode("latin-1"))
            except ValueError:
                out.append(value[i : end + 1])
        else:
            # Unknown sequence (e.g. highlighting \H\ \N\) is dropped
            pass
        i = end + 1
    return "".join(out)


# =============================================================================
# Field access
# =============================================================================


class _Reader:
    """Splits fields into repetitions/components using a message's delimiters."""

    def __init__(self, delimiters: HL7Delimiters):
        self.d = delimiters

    @staticmethod
    def field(fields: list[str], index: int) -> str:
        return fields[index] if index < len(fields) else ""

    def text(self, raw: str) -> str | None:
        return unescape(raw, self.d) if raw else None

    def components(self, raw: str) -> list[str]:
        return raw.split(self.d.component) if raw else []

    def component(self, raw: str, index: int) -> str | None:
        parts = self.components(raw)
        if index < len(parts) and parts[index]:
            # Sub-components are flattened to their first value
            return unescape(parts[index].split(self.d.subcomponent)[0], self.d)
        return None

    def repetitions(self, raw: str) -> list[str]:
        if not raw:
            return []
        return [rep for rep in raw.split(self.d.repetition) if rep]

    def text_list(self, raw: str) -> list[str]:
        return [unescape(rep, self.d) for rep in self.repetitions(raw)]

    def coded(self, raw: str) -> CodedElement | None:
        if not raw:
            return None
        c = self.component
        return CodedElement(
            identifier=c(raw, 0),
            text=c(raw, 1),
            coding_system=c(raw, 2),
            alternate_identifier=c(raw, 3),
            alternate_text=c(raw, 4),
            alternate_coding_system=c(raw, 5),
            coding_system_version=c(raw, 6),
            alternate_coding_system_version=c(raw, 7),
            original_text=c(raw, 8),
        )

    def coded_list(self, raw: str) -> list[CodedElement]:
        return [ce for ce in (self.coded(rep) for rep in self.repetitions(raw)) if ce]

    def person(self, raw: str) -> ExtendedPerson:
        c = self.component
        return ExtendedPerson(
            id=c(raw, 0),
            family_name=c(raw, 1),
            given_name=c(raw, 2),
            middle_name=c(raw, 3),
            suffix=c(raw, 4),
            prefix=c(raw, 5),
            degree=c(raw, 6),
        )

    def persons(self, raw: str) -> list[ExtendedPerson]:
        return [self.person(rep) for rep in self.repetitions(raw)]


# =============================================================================
# Segment builders
# =============================================================================


def _parse_msh(segment: str, delimiters: HL7Delimiters) -> MSHSegment:
    r = _Reader(delimiters)
    fields = segment.split(delimiters.field)
    f = r.field

    type_field = f(fields, 8)
    if not type_field:
        raise HL7ParseError("MSH-9 message type is required")

    return MSHSegment(
        encoding_characters=f(fields, 1),
        sending_application=r.component(f(fields, 2), 0),
        sending_facility=r.component(f(fields, 3), 0),
        receiving_application=r.component(f(fields, 4), 0),
        receiving_facility=r.component(f(fields, 5), 0),
        datetime=r.component(f(fields, 6), 0),
        security=r.text(f(fields, 7)),
        message_type=MessageType(
            message_code=r.component(type_field, 0) or "",
            trigger_event=r.component(type_field, 1),
            message_structure=r.component(type_field, 2),
        ),
        message_control_id=r.text(f(fields, 9)) or "",
        processing_id=r.component(f(fields, 10), 0) or "P",
        version_id=r.component(f(fields, 11), 0) or DEFAULT_VERSION,
    )


def _parse_pid(fields: list[str], r: _Reader) -> PIDSegment:
    f = r.field
    c = r.component

    identifiers = [
        PatientIdentifier(
            id=c(rep, 0) or "",
            check_digit=c(rep, 1),
            check_digit_scheme=c(rep, 2),
            assigning_authority=c(rep, 3),
            identifier_type_code=c(rep, 4),
            assigning_facility=c(rep, 5),
        )
        for rep in r.repetitions(f(fields, 3))
        if c(rep, 0)
    ]
    names = [
        PersonName(
            family_name=c(rep, 0),
            given_name=c(rep, 1),
            middle_name=c(rep, 2),
            suffix=c(rep, 3),
            prefix=c(rep, 4),
            degree=c(rep, 5),
            name_type_code=c(rep, 6),
        )
        for rep in r.repetitions(f(fields, 5))
    ]
    addresses = [
        Address(
            street=c(rep, 0),
            other_designation=c(rep, 1),
            city=c(rep, 2),
            state=c(rep, 3),
            zip=c(rep, 4),
            country=c(rep, 5),
            address_type=c(rep, 6),
            other_geographic=c(rep, 7),
            county=c(rep, 8),
        )
        for rep in r.repetitions(f(fields, 11))
    ]

    def phones(raw: str) -> list[Telecom]:
        return [
            Telecom(
                number=c(rep, 0),
                use_code=c(rep, 1),
                equipment_type=c(rep, 2),
                communication_address=c(rep, 3),
            )
            for rep in r.repetitions(raw)
        ]

    return PIDSegment(
        set_id=r.text(f(fields, 1)),
        patient_identifiers=identifiers,
        patient_names=names,
        mother_maiden_name=c(f(fields, 6), 0),
        date_of_birth=c(f(fields, 7), 0),
        administrative_sex=r.text(f(fields, 8)),
        race=r.coded_list(f(fields, 10)),
        addresses=addresses,
        home_phones=phones(f(fields, 13)),
        business_phones=phones(f(fields, 14)),
        primary_language=r.coded(f(fields, 15)),
        marital_status=r.coded(f(fields, 16)),
        account_number=c(f(fields, 18), 0),
        ssn=r.text(f(fields, 19)),
        ethnic_group=r.coded_list(f(fields, 22)),
        multiple_birth_indicator=r.text(f(fields, 24)),
        birth_order=r.text(f(fields, 25)),
        death_datetime=c(f(fields, 29), 0),
        death_indicator=r.text(f(fields, 30)),
    )


def _parse_pv1(fields: list[str], r: _Reader) -> PV1Segment:
    f = r.field
    c = r.component

    location_raw = f(fields, 3)
    location = None
    if location_raw:
        location = PersonLocation(
            point_of_care=c(location_raw, 0),
            room=c(location_raw, 1),
            bed=c(location_raw, 2),
            facility=c(location_raw, 3),
            location_status=c(location_raw, 4),
            person_location_type=c(location_raw, 5),
            building=c(location_raw, 6),
            floor=c(location_raw, 7),
        )

    return PV1Segment(
        set_id=r.text(f(fields, 1)),
        patient_class=r.text(f(fields, 2)) or "U",
        assigned_location=location,
        admission_type=r.text(f(fields, 4)),
        preadmit_number=c(f(fields, 5), 0),
        attending_doctors=r.persons(f(fields, 7)),
        referring_doctors=r.persons(f(fields, 8)),
        consulting_doctors=r.persons(f(fields, 9)),
        hospital_service=r.text(f(fields, 10)),
        readmission_indicator=r.text(f(fields, 13)),
        admit_source=r.text(f(fields, 14)),
        admitting_doctors=r.persons(f(fields, 17)),
        visit_number=c(f(fields, 19), 0),
        discharge_disposition=r.text(f(fields, 36)),
        admit_datetime=c(f(fields, 44), 0),
        discharge_datetime=c(f(fields, 45), 0),
    )


def _parse_pv2(fields: list[str], r: _Reader) -> PV2Segment:
    return PV2Segment(admit_reason=r.coded(r.field(fields, 3)))


def _parse_obr(fields: list[str], r: _Reader) -> OBRSegment:
    f = r.field
    c = r.component
    return OBRSegment(
        set_id=r.text(f(fields, 1)),
        placer_order_number=c(f(fields, 2), 0),
        filler_order_number=c(f(fields, 3), 0),
        universal_service_id=r.coded(f(fields, 4)) or CodedElement(),
        priority=r.text(f(fields, 5)),
        observation_datetime=c(f(fields, 7), 0),
        observation_end_datetime=c(f(fields, 8), 0),
        relevant_clinical_info=r.text(f(fields, 13)),
        ordering_provider=r.persons(f(fields, 16)),
        results_status_change_datetime=c(f(fields, 22), 0),
        diagnostic_service_section=r.text(f(fields, 24)),
        result_status=r.text(f(fields, 25)),
        reason_for_study=r.coded_list(f(fields, 31)),
        principal_result_interpreter=c(f(fields, 32), 0),
    )


def _parse_obx(fields: list[str], r: _Reader) -> OBXSegment:
    f = r.field
    c = r.component
    return OBXSegment(
        set_id=r.text(f(fields, 1)),
        value_type=r.text(f(fields, 2)),
        observation_identifier=r.coded(f(fields, 3)) or CodedElement(),
        observation_sub_id=r.text(f(fields, 4)),
        # Values keep their component structure; the translator interprets them by value type
        observation_values=r.repetitions(f(fields, 5)),
        units=r.coded(f(fields, 6)),
        reference_range=r.text(f(fields, 7)),
        abnormal_flags=r.text_list(f(fields, 8)),
        observation_result_status=r.text(f(fields, 11)) or "F",
        observation_datetime=c(f(fields, 14), 0),
        responsible_observer=r.persons(f(fields, 16)),
        analysis_datetime=c(f(fields, 19), 0),
    )


def _parse_orc(fields: list[str], r: _Reader) -> ORCSegment:
    f = r.field
    c = r.component
    return ORCSegment(
        order_control=r.text(f(fields, 1)) or "",
        placer_order_number=c(f(fields, 2), 0),
        filler_order_number=c(f(fields, 3), 0),
        order_status=r.text(f(fields, 5)),
        transaction_datetime=c(f(fields, 9), 0),
        ordering_provider=r.persons(f(fields, 12)),
    )


def _parse_dg1(fields: list[str], r: _Reader) -> DG1Segment:
    f = r.field
    c = r.component
    return DG1Segment(
        set_id=r.text(f(fields, 1)) or "1",
        diagnosis_coding_method=r.text(f(fields, 2)),
        diagnosis_code=r.coded(f(fields, 3)),
        diagnosis_description=r.text(f(fields, 4)),
        diagnosis_datetime=c(f(fields, 5), 0),
        diagnosis_type=r.text(f(fields, 6)),
        diagnosing_clinician=r.persons(f(fields, 16)),
        attestation_datetime=c(f(fields, 19), 0),
    )


def _parse_al1(fields: list[str], r: _Reader) -> AL1Segment:
    f = r.field
    return AL1Segment(
        set_id=r.text(f(fields, 1)),
        allergen_type=r.coded(f(fields, 2)),
        allergen=r.coded(f(fields, 3)) or CodedElement(),
        severity=r.component(f(fields, 4), 0),
        reactions=r.text_list(f(fields, 5)),
        identification_date=r.component(f(fields, 6), 0),
    )


def _parse_in1(fields: list[str], r: _Reader) -> IN1Segment:
    f = r.field
    c = r.component
    return IN1Segment(
        set_id=r.text(f(fields, 1)),
        insurance_plan_id=r.coded(f(fields, 2)),
        insurance_company_id=c(f(fields, 3), 0),
        # XON: organization name is the first component
        insurance_company_name=[
            name for name in (c(rep, 0) for rep in r.repetitions(f(fields, 4))) if name
        ],
        group_number=r.text(f(fields, 8)),
        group_name=c(f(fields, 9), 0),
        plan_effective_date=c(f(fields, 12), 0),
        plan_expiration_date=c(f(fields, 13), 0),
        plan_type=r.text(f(fields, 15)),
        insured_relationship=r.coded(f(fields, 17)),
        policy_number=r.text(f(fields, 36)),
        insured_id_number=[
            value for value in (c(rep, 0) for rep in r.repetitions(f(fields, 49))) if value
        ],
    )


def _parse_nte(fields: list[str], r: _Reader) -> NTESegment:
    f = r.field
    return NTESegment(
        set_id=r.text(f(fields, 1)),
        source=r.text(f(fields, 2)),
        comments=r.text_list(f(fields, 3)),
    )


def _parse_msa(fields: list[str], r: _Reader) -> MSASegment:
    f = r.field
    return MSASegment(
        acknowledgment_code=r.text(f(fields, 1)) or "AA",
        message_control_id=r.text(f(fields, 2)) or "",
        text_message=r.text(f(fields, 3)),
    )


def _parse_err(fields: list[str], r: _Reader) -> ERRSegment:
    f = r.field
    return ERRSegment(
        error_location=r.text(f(fields, 2)),
        error_code=r.coded(f(fields, 3)),
        severity=r.text(f(fields, 4)),
        diagnostic_information=r.text(f(fields, 7)),
    )


_SEGMENT_BUILDERS: dict[str, Callable[[list[str], _Reader], HL7Segment]] = {
    "PID": _parse_pid,
    "PV1": _parse_pv1,
    "PV2": _parse_pv2,
    "OBR": _parse_obr,
    "OBX": _parse_obx,
    "ORC": _parse_orc,
    "DG1": _parse_dg1,
    "AL1": _parse_al1,
    "IN1": _parse_in1,
    "NTE": _parse_nte,
    "MSA": _parse_msa,
    "ERR": _parse_err,
}


# =============================================================================
# Message parsing
# =============================================================================


def split_segments(raw: str) -> list[str]:
    """Strip framing, normalise line endings to CR and split into segments."""
    message = strip_mllp(raw).replace("\r\n", "\r").replace("\n", "\r")
    return [line for line in message.split("\r") if line.strip()]


def extract_delimiters(msh: str) -> HL7Delimiters:
    """Read encoding characters from the first eight characters of MSH."""
    if len(msh) < 8:
        raise HL7ParseError("MSH segment too short to contain encoding characters")
    return HL7Delimiters(
        field=msh[3],
        component=msh[4],
        repetition=msh[5],
        escape=msh[6],
        subcomponent=msh[7],
    )


def parse_message(raw: str) -> ParseResult:
    """Parse an HL7 v2 message of any type.

    Args:
        raw: Message text, optionally MLLP framed, with CR, LF or CRLF
            segment terminators.

    Returns:
        ParseResult with the message on success, or errors on failure.
    """
    start = time.perf_counter()
    warnings: list[str] = []

    segments = split_segments(raw or "")
    if not segments:
        return ParseResult(success=False, errors=["Empty message"])
    if not segments[0].startswith("MSH"):
        return ParseResult(success=False, errors=["Message must start with MSH segment"])

    try:
        delimiters = extract_delimiters(segments[0])
        header = _parse_msh(segments[0], delimiters)
        reader = _Reader(delimiters)

        message = HL7Message(
            raw=SEGMENT_TERMINATOR.join(segments),
            delimiters=delimiters,
            header=header,
            segments=[header],
        )

        for line in segments[1:]:
            fields = line.split(delimiters.field)
            segment_type = fields[0]
            builder = _SEGMENT_BUILDERS.get(segment_type)
            segment = builder(fields, reader) if builder else GenericSegment(
                segment_type=segment_type,
                fields=fields[1:],
            )
            message.segments.append(segment)
            _attach(message, segment)
    except HL7ParseError as e:
        return ParseResult(success=False, errors=[str(e)], warnings=warnings)
    except Exception as e:
        logger.warning("Unexpected HL7 parse failure: %s", type(e).__name__)
        return ParseResult(success=False, errors=[f"Parse error: {e}"], warnings=warnings)

    if not header.message_control_id:
        warnings.append("MSH-10 message control id is empty")

    logger.info(
        "Parsed HL7 %s with %d segments in %.1fms",
        message.type_label,
        len(message.segments),
        (time.perf_counter() - start) * 1000,
    )
    return ParseResult(success=True, message=message, warnings=warnings)


def _attach(message: HL7Message, segment: HL7Segment) -> None:
    """Populate the convenience slots on the message for a typed segment."""
    if isinstance(segment, PIDSegment):
        if message.patient is None:
            message.patient = segment
    elif isinstance(segment, PV1Segment):
        message.visit = segment
    elif isinstance(segment, PV2Segment):
        message.visit_additional = segment
    elif isinstance(segment, OBRSegment):
        message.observation_requests.append(segment)
    elif isinstance(segment, OBXSegment):
        message.observations.append(segment)
    elif isinstance(segment, ORCSegment):
        message.orders.append(segment)
    elif isinstance(segment, DG1Segment):
        message.diagnoses.append(segment)
    elif isinstance(segment, AL1Segment):
        message.allergies.append(segment)
    elif isinstance(segment, IN1Segment):
        message.insurance.append(segment)
    elif isinstance(segment, NTESegment):
        message.notes.append(segment)
    elif isinstance(segment, MSASegment):
        message.acknowledgment = segment
    elif isinstance(segment, ERRSegment):
        message.errors.append(segment)


def _base_fields(message: HL7Message) -> dict:
    return {name: getattr(message, name) for name in HL7Message.model_fields}


def _expect(raw: str, code: str) -> tuple[ParseResult, HL7Message | None]:
    result = parse_message(raw)
    if not result.success or result.message is None:
        return result, None
    if result.message.message_code != code:
        return ParseResult(
            success=False,
            errors=[f"Expected {code} message, got {result.message.message_code}"],
            warnings=result.warnings,
        ), None
    return result, result.message


def parse_adt(raw: str) -> ParseResult:
    """Parse an ADT message; fails if MSH-9.1 is not ADT."""
    result, message = _expect(raw, "ADT")
    if message is None:
        return result
    return ParseResult(
        success=True,
        message=ADTMessage(**_base_fields(message)),
        warnings=result.warnings,
    )


def parse_oru(raw: str) -> ParseResult:
    """Parse an ORU message, grouping OBX/NTE under the preceding OBR."""
    result, message = _expect(raw, "ORU")
    if message is None:
        return result

    groups: list[ORUResultGroup] = []
    warnings = list(result.warnings)
    for segment in message.segments:
        if isinstance(segment, OBRSegment):
            groups.append(ORUResultGroup(request=segment))
        elif isinstance(segment, OBXSegment):
            if groups:
                groups[-1].observations.append(segment)
            else:
                warnings.append("OBX segment before any OBR was not grouped")
        elif isinstance(segment, NTESegment) and groups:
            groups[-1].notes.append(segment)

    return ParseResult(
        success=True,
        message=ORUMessage(**_base_fields(message), result_groups=groups),
        warnings=warnings,
    )


def parse_orm(raw: str) -> ParseResult:
    """Parse an ORM message, grouping OBR/OBX under the preceding ORC."""
    result, message = _expect(raw, "ORM")
    if message is None:
        return result

    groups: list[ORMOrderGroup] = []
    for segment in message.segments:
        if isinstance(segment, ORCSegment):
            groups.append(ORMOrderGroup(order=segment))
        elif isinstance(segment, OBRSegment) and groups:
            groups[-1].requests.append(segment)
        elif isinstance(segment, OBXSegment) and groups:
            groups[-1].observations.append(segment)

    return ParseResult(
        success=True,
        message=ORMMessage(**_base_fields(message), order_groups=groups),
        warnings=result.warnings,
    )


def parse_typed(raw: str) -> ParseResult:
    """Parse using the typed parser matching MSH-9.1, falling back to generic."""
    result = parse_message(raw)
    if not result.success or result.message is None:
        return result
    typed = {"ADT": parse_adt, "ORU": parse_oru, "ORM": parse_orm}.get(result.message.message_code)
    return typed(raw) if typed else result


# =============================================================================
# Acknowledgments
# =============================================================================


def _timestamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")


def generate_ack(
    original: HL7Message,
    ack_code: str = "AA",
    text: str | None = None,
    now: datetime | None = None,
) -> str:
    """Build an ACK for a parsed message.

    Sender and receiver are swapped relative to the original. For AE/AR
    codes with text, an ERR segment (HL70357 code 207) is appended.

    Args:
        original: The message being acknowledged.
        ack_code: AA (accept), AE (error) or AR (reject).
        text: Optional human-readable text for MSA-3 / ERR-8.
        now: Timestamp override, for deterministic output.
    """
    h = original.header
    d = original.delimiters
    ts = _timestamp(now)
    encoding = f"{d.component}{d.repetition}{d.escape}{d.subcomponent}"
    fs = d.field

    msh = fs.join([
        "MSH",
        encoding,
        h.receiving_application or "",
        h.receiving_facility or "",
        h.sending_application or "",
        h.sending_facility or "",
        ts,
        "",
        f"ACK{d.component}{h.message_type.trigger_event or ''}{d.component}ACK",
        f"ACK{ts}",
        "P",
        h.version_id,
    ])

    msa_parts = ["MSA", ack_code, h.message_control_id]
    if text:
        msa_parts.append(escape(text, d))
    segments = [msh, fs.join(msa_parts)]

    if ack_code != "AA" and text:
        error_code = d.component.join(["207", "Application internal error", "HL70357"])
        segments.append(fs.join(["ERR", "", "", error_code, "E", "", "", escape(text, d)]))

    return SEGMENT_TERMINATOR.join(segments) + SEGMENT_TERMINATOR


def generate_nak(
    ack_code: str,
    text: str,
    control_id: str = "UNKNOWN",
    now: datetime | None = None,
) -> str:
    """Build a negative ACK when the inbound header could not be parsed."""
    ts = _timestamp(now)
    segments = [
        f"MSH|^~\\&|WELLFIT|WELLFIT|UNKNOWN|UNKNOWN|{ts}||ACK|ACK{ts}|P|{DEFAULT_VERSION}",
        f"MSA|{ack_code}|{control_id}|{escape(text)}",
        f"ERR|||207^Application internal error^HL70357|E|||{escape(text)}",
    ]
    return SEGMENT_TERMINATOR.join(segments) + SEGMENT_TERMINATOR
