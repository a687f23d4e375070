"""X12 997 Functional Acknowledgment parser (005010X231A1).

Delimiters are read from the fixed-width ISA segment: the element
separator at position 3, the component separator at 104 and the segment
terminator at 105.
"""

import logging

from app.schemas.x12 import (
    AK1Response,
    AK2TransactionResponse,
    AK3SegmentError,
    AK4ElementError,
    AK5TransactionStatus,
    AK9GroupStatus,
    GSEnvelope,
    ISAEnvelope,
    Parsed997,
    Summary997,
    TransactionSetAcknowledgment,
    X12Delimiters,
    X12ParseResult,
)

logger = logging.getLogger(__name__)

ISA_LENGTH = 106

# AK304
SEGMENT_ERROR_CODES = {
    "1": "Unrecognized segment ID",
    "2": "Unexpected segment",
    "3": "Mandatory segment missing",
    "4": "Loop occurs over maximum times",
    "5": "Segment exceeds maximum use",
    "6": "Segment not in defined transaction set",
    "7": "Segment not in proper sequence",
    "8": "Segment has data element errors",
}

# AK403
ELEMENT_ERROR_CODES = {
    "1": "Mandatory data element missing",
    "2": "Conditional required data element missing",
    "3": "Too many data elements",
    "4": "Data element too short",
    "5": "Data element too long",
    "6": "Invalid character in data element",
    "7": "Invalid code value",
    "8": "Invalid date",
    "9": "Invalid time",
    "10": "Exclusion condition violated",
    "12": "Too many repetitions",
    "13": "Too many components",
}

# AK501
TRANSACTION_ACK_CODES = {
    "A": "Accepted",
    "E": "Accepted, but errors were noted",
    "M": "Rejected, message authentication code failed",
    "R": "Rejected",
    "W": "Rejected, assurance failed",
    "X": "Rejected, content decryption failed",
}

# AK901
GROUP_ACK_CODES = {
    **TRANSACTION_ACK_CODES,
    "P": "Partially accepted, at least one transaction set was rejected",
}

# AK502-AK506
TRANSACTION_SYNTAX_ERROR_CODES = {
    "1": "Transaction set not supported",
    "2": "Transaction set trailer missing",
    "3": "Transaction set control number mismatch",
    "4": "Number of included segments does not match actual count",
    "5": "One or more segments in error",
    "6": "Missing or invalid transaction set identifier",
    "7": "Missing or invalid transaction set control number",
    "8": "Missing or invalid transaction set control number in header",
    "9": "Unknown transaction set trailer",
    "10": "Missing or invalid transaction set header",
    "11": "Missing or invalid transaction set header control number",
    "12": "Missing or invalid transaction set trailer control number",
    "13": "Invalid transaction set identifier code",
    "15": "Transaction set trailer control number mismatch",
    "16": "Duplicate transaction set control number in group",
    "17": "S3E security end segment missing for S3S security start segment",
    "18": "S3S security start segment missing for S3E security end segment",
    "19": "S4E security end segment missing for S4S security start segment",
    "20": "S4S security start segment missing for S4E security end segment",
    "23": "Transaction set control number not unique within group",
    "24": "S3E security end segment not valid for position",
    "25": "S3S security start segment not valid for position",
    "26": "S4E security end segment not valid for position",
    "27": "S4S security start segment not valid for position",
}

ACCEPTED_CODES = frozenset({"A", "E"})
REJECTED_CODES = frozenset({"R", "M", "W", "X"})


class X12ParseError(ValueError):
    """Raised when X12 content cannot be parsed as a 997."""


# =============================================================================
# Helpers
# =============================================================================


def is_accepted(code: str) -> bool:
    return code in ACCEPTED_CODES


def is_rejected(code: str) -> bool:
    return code in REJECTED_CODES


def segment_error_description(code: str) -> str:
    return SEGMENT_ERROR_CODES.get(code, f"Unknown segment error code: {code}")


def element_error_description(code: str) -> str:
    return ELEMENT_ERROR_CODES.get(code, f"Unknown element error code: {code}")


def transaction_ack_description(code: str) -> str:
    return TRANSACTION_ACK_CODES.get(code, f"Unknown transaction acknowledgment code: {code}")


def group_ack_description(code: str) -> str:
    return GROUP_ACK_CODES.get(code, f"Unknown group acknowledgment code: {code}")


def transaction_syntax_error_description(code: str) -> str:
    return TRANSACTION_SYNTAX_ERROR_CODES.get(code, f"Unknown syntax error code: {code}")


def format_x12_date(value: str) -> str:
    """YYMMDD or CCYYMMDD -> YYYY-MM-DD. Two-digit years above 50 are 19xx."""
    if not value:
        return ""
    if len(value) == 6:
        year = int(value[0:2])
        full_year = 1900 + year if year > 50 else 2000 + year
        return f"{full_year}-{value[2:4]}-{value[4:6]}"
    if len(value) == 8:
        return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"
    return value


def format_x12_time(value: str) -> str:
    """HHMM[SS] -> HH:MM:SS."""
    if not value:
        return ""
    if len(value) >= 4:
        seconds = value[4:6] if len(value) >= 6 else "00"
        return f"{value[0:2]}:{value[2:4]}:{seconds}"
    return value


def _int(value: str | None) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


def _opt(elements: list[str], index: int) -> str | None:
    return elements[index] if index < len(elements) and elements[index] else None


def _codes(elements: list[str], start: int, stop: int) -> list[str]:
    return [e for e in elements[start:stop] if e]


# =============================================================================
# Parsing
# =============================================================================


def detect_delimiters(content: str) -> X12Delimiters:
    if len(content) < ISA_LENGTH:
        return X12Delimiters()
    return X12Delimiters(element=content[3], component=content[104], segment=content[105])


def parse_997(content: str) -> X12ParseResult:
    """Parse raw 997 EDI into structured data.

    Never raises; failures are reported in X12ParseResult.errors.
    """
    clean = (content or "").replace("\r", "").replace("\n", "").strip()
    if not clean:
        return X12ParseResult(success=False, errors=["Empty or invalid X12 content"])
    if not clean.startswith("ISA"):
        return X12ParseResult(success=False, errors=["Could not detect X12 delimiters from ISA segment"])

    d = detect_delimiters(clean)
    segments = [s.strip() for s in clean.split(d.segment) if s.strip()]
    if len(segments) < 6:
        return X12ParseResult(success=False, errors=["Invalid 997: too few segments"])

    by_id: dict[str, list[str]] = {}
    for segment in segments:
        elements = segment.split(d.element)
        by_id.setdefault(elements[0], elements)

    try:
        isa = _parse_isa(by_id.get("ISA"))
        gs = _parse_gs(by_id.get("GS"))

        st = by_id.get("ST")
        if st is None:
            raise X12ParseError("ST segment not found")
        if _opt(st, 1) != "997":
            raise X12ParseError(f"Not a 997 transaction: {_opt(st, 1) or ''}")

        ak1 = _parse_ak1(by_id.get("AK1"))
        transaction_sets = _parse_transaction_sets(segments, d)
        ak9 = _parse_ak9(by_id.get("AK9"))
    except X12ParseError as e:
        return X12ParseResult(success=False, errors=[str(e)])

    warnings = []
    if ak9.transaction_sets_received != len(transaction_sets):
        warnings.append(
            f"AK9 reports {ak9.transaction_sets_received} received transaction sets, "
            f"found {len(transaction_sets)} AK2 loops"
        )

    data = Parsed997(
        isa=isa,
        gs=gs,
        st_control_number=_opt(st, 2) or "",
        ak1=ak1,
        transaction_sets=transaction_sets,
        ak9=ak9,
        raw_segments=segments,
    )
    logger.info(
        "Parsed 997 ICN=%s group=%s status=%s with %d transaction sets",
        isa.control_number,
        ak1.group_control_number,
        ak9.ack_code,
        len(transaction_sets),
    )
    return X12ParseResult(success=True, data=data, warnings=warnings)


def _parse_isa(elements: list[str] | None) -> ISAEnvelope:
    if elements is None:
        raise X12ParseError("ISA segment not found")
    if len(elements) < 17:
        raise X12ParseError(f"ISA segment has {len(elements)} elements, expected 17")
    return ISAEnvelope(
        authorization_info_qualifier=elements[1],
        authorization_info=elements[2],
        security_info_qualifier=elements[3],
        security_info=elements[4],
        sender_id_qualifier=elements[5],
        sender_id=elements[6].strip(),
        receiver_id_qualifier=elements[7],
        receiver_id=elements[8].strip(),
        date=elements[9],
        time=elements[10],
        repetition_separator=elements[11],
        version=elements[12],
        control_number=elements[13],
        acknowledgment_requested=elements[14],
        usage_indicator=elements[15],
        component_separator=elements[16],
    )


def _parse_gs(elements: list[str] | None) -> GSEnvelope:
    if elements is None:
        raise X12ParseError("GS segment not found")
    if len(elements) < 9:
        raise X12ParseError(f"GS segment has {len(elements)} elements, expected 9")
    return GSEnvelope(
        functional_id_code=elements[1],
        sender_code=elements[2],
        receiver_code=elements[3],
        date=elements[4],
        time=elements[5],
        control_number=elements[6],
        responsible_agency_code=elements[7],
        version=elements[8],
    )


def _parse_ak1(elements: list[str] | None) -> AK1Response:
    if elements is None:
        raise X12ParseError("AK1 segment not found")
    if len(elements) < 3:
        raise X12ParseError(f"AK1 segment has {len(elements)} elements, expected at least 3")
    return AK1Response(
        functional_id_code=elements[1],
        group_control_number=elements[2],
        version=_opt(elements, 3),
    )


def _parse_ak9(elements: list[str] | None) -> AK9GroupStatus:
    if elements is None:
        raise X12ParseError("Missing AK9 segment")
    if len(elements) < 5:
        raise X12ParseError(f"AK9 segment has {len(elements)} elements, expected at least 5")
    return AK9GroupStatus(
        ack_code=elements[1] or "R",
        transaction_sets_included=_int(elements[2]),
        transaction_sets_received=_int(elements[3]),
        transaction_sets_accepted=_int(elements[4]),
        syntax_error_codes=_codes(elements, 5, 10),
    )


def _parse_transaction_sets(segments: list[str], d: X12Delimiters) -> list[TransactionSetAcknowledgment]:
    """Walk AK2/AK3/AK4/AK5 loops in order."""
    results: list[TransactionSetAcknowledgment] = []
    current_ak2: AK2TransactionResponse | None = None
    current_errors: list[AK3SegmentError] = []

    for segment in segments:
        elements = segment.split(d.element)
        segment_id = elements[0]

        if segment_id == "AK2":
            current_ak2 = AK2TransactionResponse(
                transaction_set_identifier=_opt(elements, 1) or "",
                control_number=_opt(elements, 2) or "",
                implementation_reference=_opt(elements, 3),
            )
            current_errors = []
        elif segment_id == "AK3":
            current_errors.append(AK3SegmentError(
                segment_id=_opt(elements, 1) or "",
                segment_position=_int(_opt(elements, 2)),
                loop_identifier=_opt(elements, 3),
                error_code=_opt(elements, 4),
            ))
        elif segment_id == "AK4" and current_errors:
            # AK401 is a composite: position:component:reference
            position = (_opt(elements, 1) or "0").split(d.component)
            current_errors[-1].element_errors.append(AK4ElementError(
                position_in_segment=_int(position[0]),
                component_position=_int(position[1]) if len(position) > 1 and position[1] else None,
                data_element_reference=(position[2] if len(position) > 2 and position[2] else None)
                or _opt(elements, 2),
                error_code=_opt(elements, 3) or "",
                bad_data=_opt(elements, 4),
            ))
        elif segment_id == "AK5" and current_ak2 is not None:
            results.append(TransactionSetAcknowledgment(
                ak2=current_ak2,
                segment_errors=current_errors,
                ak5=AK5TransactionStatus(
                    ack_code=_opt(elements, 1) or "R",
                    syntax_error_codes=_codes(elements, 2, 7),
                ),
            ))
            current_ak2 = None
            current_errors = []

    return results


def summarize_997(parsed: Parsed997) -> Summary997:
    """Count accepted/rejected transaction sets and errors."""
    summary = Summary997(total_transaction_sets=len(parsed.transaction_sets))
    for tx in parsed.transaction_sets:
        code = tx.ak5.ack_code
        if code == "A":
            summary.accepted += 1
        elif code == "E":
            summary.accepted_with_errors += 1
        elif is_rejected(code):
            summary.rejected += 1
        summary.segment_errors += len(tx.segment_errors)
        summary.element_errors += sum(len(se.element_errors) for se in tx.segment_errors)
    return summary
