"""PHI de-identification (HIPAA Safe Harbor, 45 CFR 164.514(b)(2)).

Removes protected health information from free text before it leaves the
system (e.g. in an LLM prompt). Detection runs in layers:

  1. Pattern pass: regexes for the 18 Safe Harbor identifier categories.
  2. Dictionary pass (strict/paranoid): common first and last names.
  3. Contextual pass (paranoid): address context, ages over 89, affiliations.
  4. Caller-supplied custom patterns.

Never log the input or output text, only lengths, counts and timings.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DeidentificationLevel(str, Enum):
    STANDARD = "standard"
    STRICT = "strict"
    PARANOID = "paranoid"


@dataclass(frozen=True, slots=True)
class DeidentificationOptions:
    level: DeidentificationLevel = DeidentificationLevel.STANDARD
    preserve_structure: bool = False
    hash_identifiers: bool = False
    custom_patterns: tuple[re.Pattern[str], ...] = ()
    allowed_terms: tuple[str, ...] = field(default_factory=tuple)


class DeidentificationResult(BaseModel):
    text: str
    redacted_count: int = 0
    redaction_types: dict[str, int] = Field(default_factory=dict)
    confidence: float
    warnings: list[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    risk_score: int = 0


_I = re.IGNORECASE

# =============================================================================
# Safe Harbor identifier patterns, applied in this order
# =============================================================================

PHI_PATTERNS: dict[str, dict[str, re.Pattern[str]]] = {
    "names": {
        "full_name": re.compile(r"\b(?:Mr\.?|Mrs\.?|Ms\.?|Dr\.?|Miss|Prof\.?)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b"),
        "labeled_name": re.compile(
            r"\b(?:patient|client|resident|member|provider|doctor|nurse|caregiver|guardian|mother|father"
            r"|parent|spouse|wife|husband|son|daughter|brother|sister|emergency\s*contact)"
            r"(?:\s*(?:name|is|:))?\s*[:\-]?\s*(?-i:([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*))",
            _I,
        ),
        "possessive_name": re.compile(
            r"\b[A-Z][a-z]{2,}(?:'s|')\s+(?:mother|father|wife|husband|son|daughter|doctor|nurse)", _I
        ),
    },
    "geographic": {
        # Words must be whitespace separated so the repetition cannot split a word
        "street_address": re.compile(
            r"\b\d{1,5}\s+(?:[A-Z][a-z]+\s+)+(?:Street|St\.?|Avenue|Ave\.?|Boulevard|Blvd\.?|Road|Rd\.?"
            r"|Drive|Dr\.?|Lane|Ln\.?|Way|Court|Ct\.?|Circle|Cir\.?|Place|Pl\.?)\b",
            _I,
        ),
        "po_box": re.compile(r"\b(?:P\.?\s*O\.?\s*Box|Post\s*Office\s*Box)\s*#?\s*\d+\b", _I),
        "zip_code": re.compile(r"\b\d{5}(?:-\d{4})?\b"),
        "city_state": re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*,\s*[A-Z]{2}\b"),
    },
    "dates": {
        "iso_date": re.compile(r"\b(?:19|20)\d{2}-(?:0[1-9]|1[0-2])-(?:0[1-9]|[12]\d|3[01])(?:T[\d:.]+Z?)?\b"),
        # HL7 v2 DT/DTM, optionally with time of day
        "hl7_date": re.compile(r"\b(?:19|20)\d{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12]\d|3[01])(?:\d{4,6})?\b"),
        "full_date": re.compile(r"\b(?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])[-/](?:19|20)?\d{2}\b"),
        "written_date": re.compile(
            r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December"
            r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s*(?:19|20)?\d{2,4}\b",
            _I,
        ),
        "dob_label": re.compile(r"\b(?:DOB|D\.O\.B\.?|Date\s*of\s*Birth|Birth\s*Date|Birthday)[:\s]+[^\n,]+", _I),
        "age_exact": re.compile(
            r"\b(?:age[d]?|is)\s*[:\s]?\s*(\d{1,3})\s*(?:years?|yrs?|y\.?o\.?|year[s]?\s*old)\b", _I
        ),
    },
    "phone": {
        "standard": re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
        "labeled": re.compile(r"\b(?:phone|tel|telephone|cell|mobile|fax|contact)[:\s#]+[\d\s\-().]+", _I),
        "extension": re.compile(r"\b(?:ext\.?|extension)\s*#?\s*\d{2,6}\b", _I),
    },
    "fax": {
        "labeled": re.compile(r"\b(?:fax|facsimile)[:\s#]+[\d\s\-().]+", _I),
    },
    "email": {
        "standard": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
        "labeled": re.compile(r"\b(?:email|e-mail)[:\s]+[^\s,]+", _I),
    },
    "ssn": {
        "standard": re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b"),
        "labeled": re.compile(r"\b(?:SSN|SS#|Social\s*Security)[:\s#]+[\d\s\-]+", _I),
        "partial": re.compile(r"\bXXX-XX-\d{4}\b"),
    },
    "mrn": {
        "labeled": re.compile(
            r"\b(?:MRN|MR#|Medical\s*Record|Chart\s*#?|Patient\s*ID|Patient\s*#|Account\s*#?|Acct\s*#?)[:\s#]+[\w\-]+",
            _I,
        ),
        "generic": re.compile(r"\b(?:ID|#)\s*:?\s*\d{6,12}\b"),
    },
    "insurance": {
        "member_id": re.compile(
            r"\b(?:Member\s*ID|Subscriber\s*ID|Policy\s*#?|Insurance\s*ID|Group\s*#?|Beneficiary\s*#?)[:\s#]+[\w\-]+",
            _I,
        ),
        "medicaid": re.compile(r"\b(?:Medicaid|Medicare)\s*(?:#|ID|Number)?[:\s]+[\w\-]+", _I),
    },
    "accounts": {
        "bank_account": re.compile(r"\b(?:Account|Acct)\.?\s*#?\s*:?\s*\d{8,17}\b", _I),
        "credit_card": re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
        "routing": re.compile(r"\b(?:routing|ABA)\s*#?\s*:?\s*\d{9}\b", _I),
    },
    "licenses": {
        "dea": re.compile(r"\b(?:DEA|DEA\s*#)[:\s]*[A-Z]{2}\d{7}\b", _I),
        "npi": re.compile(r"\b(?:NPI)[:\s#]*\d{10}\b", _I),
        "license": re.compile(r"\b(?:License|Lic)\s*#?\s*:?\s*[\w\-]+", _I),
        "driver_license": re.compile(r"\b(?:DL|Driver'?s?\s*License)[:\s#]+[\w\-]+", _I),
    },
    "vehicle": {
        "vin": re.compile(r"\b[A-HJ-NPR-Z0-9]{17}\b"),
        "plate": re.compile(r"\b(?:License\s*Plate|Plate\s*#?)[:\s]+[\w\-]+", _I),
    },
    "devices": {
        "serial": re.compile(r"\b(?:Serial\s*#?|S/N)[:\s]+[\w\-]+", _I),
        "imei": re.compile(r"\b\d{15,17}\b"),
    },
    "urls": {
        "standard": re.compile(
            r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)",
            _I,
        ),
        "labeled": re.compile(r"\b(?:website|url|link)[:\s]+[^\s,]+", _I),
    },
    "ip_addresses": {
        "ipv4": re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
        "ipv6": re.compile(r"\b(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b"),
    },
    "biometric": {
        "labeled": re.compile(r"\b(?:fingerprint|retina|iris|voice\s*print|facial\s*recognition)[:\s]+[^\n,]+", _I),
    },
    "photos": {
        "reference": re.compile(
            r"\b(?:photo|photograph|picture|image|selfie)\s*(?:attached|included|enclosed|of\s+patient)", _I
        ),
    },
    "unique_ids": {
        "uuid": re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", _I),
        "generic_id": re.compile(r"\b(?:unique\s*ID|identifier|case\s*#?)[:\s]+[\w\-]+", _I),
    },
}

PLACEHOLDERS = {
    "names": "[NAME]",
    "geographic": "[ADDRESS]",
    "dates": "[DATE]",
    "phone": "[PHONE]",
    "fax": "[FAX]",
    "email": "[EMAIL]",
    "ssn": "[SSN]",
    "mrn": "[MRN]",
    "insurance": "[INSURANCE_ID]",
    "accounts": "[ACCOUNT]",
    "licenses": "[LICENSE]",
    "vehicle": "[VEHICLE_ID]",
    "devices": "[DEVICE_ID]",
    "urls": "[URL]",
    "ip_addresses": "[IP]",
    "biometric": "[BIOMETRIC]",
    "photos": "[PHOTO_REF]",
    "unique_ids": "[ID]",
}

REDACTED = "[REDACTED]"

# =============================================================================
# Dictionaries
# =============================================================================

COMMON_FIRST_NAMES = frozenset({
    # male
    "james", "robert", "john", "michael", "david", "william", "richard", "joseph", "thomas", "charles",
    "christopher", "daniel", "matthew", "anthony", "mark", "donald", "steven", "paul", "andrew", "joshua",
    "kenneth", "kevin", "brian", "george", "timothy", "ronald", "edward", "jason", "jeffrey", "ryan",
    "jacob", "gary", "nicholas", "eric", "jonathan", "stephen", "larry", "justin", "scott", "brandon",
    "benjamin", "samuel", "raymond", "gregory", "frank", "alexander", "patrick", "jack", "dennis", "jerry",
    # female
    "mary", "patricia", "jennifer", "linda", "barbara", "elizabeth", "susan", "jessica", "sarah", "karen",
    "lisa", "nancy", "betty", "margaret", "sandra", "ashley", "kimberly", "emily", "donna", "michelle",
    "dorothy", "carol", "amanda", "melissa", "deborah", "stephanie", "rebecca", "sharon", "laura", "cynthia",
    "kathleen", "amy", "angela", "shirley", "anna", "brenda", "pamela", "emma", "nicole", "helen",
    "samantha", "katherine", "christine", "debra", "rachel", "carolyn", "janet", "catherine", "maria", "heather",
    # nicknames
    "mike", "bob", "bill", "jim", "joe", "tom", "dan", "dave", "steve", "matt", "chris", "nick", "tony",
    "kate", "liz", "beth", "sue", "jen", "jess", "sam", "meg", "kim", "pam", "deb", "barb", "cathy",
})

COMMON_LAST_NAMES = frozenset({
    "smith", "johnson", "williams", "brown", "jones", "garcia", "miller", "davis", "rodriguez", "martinez",
    "hernandez", "lopez", "gonzalez", "wilson", "anderson", "thomas", "taylor", "moore", "jackson", "martin",
    "lee", "perez", "thompson", "white", "harris", "sanchez", "clark", "ramirez", "lewis", "robinson",
    "walker", "young", "allen", "king", "wright", "scott", "torres", "nguyen", "hill", "flores",
    "green", "adams", "nelson", "baker", "hall", "rivera", "campbell", "mitchell", "carter", "roberts",
})

# Clinical vocabulary that can look like a name or identifier
MEDICAL_ALLOWLIST = frozenset({
    "normal", "patient", "positive", "negative", "chronic", "acute", "stable", "critical",
    "bilateral", "unilateral", "anterior", "posterior", "superior", "inferior", "medial", "lateral",
    "proximal", "distal", "dorsal", "ventral", "cranial", "caudal",
    "cancer", "tumor", "lesion", "mass", "nodule", "cyst", "polyp",
    "hypertension", "diabetes", "asthma", "copd", "chf", "cad", "cvd", "ckd",
    "metformin", "lisinopril", "amlodipine", "metoprolol", "atorvastatin", "omeprazole",
    "gabapentin", "losartan", "albuterol", "prednisone", "levothyroxine", "insulin",
    "heart", "lung", "liver", "kidney", "brain", "spine", "bone", "muscle", "nerve",
    "morning", "afternoon", "evening", "night", "daily", "weekly", "monthly",
    "bp", "hr", "rr", "temp", "spo2", "bmi", "wbc", "rbc", "hgb", "plt", "bun", "cr",
})

CAPITALIZED_WORD = re.compile(r"\b[A-Z][a-z]{2,15}\b")

ADDRESS_CONTEXT_PATTERNS = (
    re.compile(r"\b(?:lives?|resides?|located|staying|address)\s+(?:at|is|:)\s+([^,.\n]+)", _I),
    re.compile(r"\b(?:from|in)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*,?\s*[A-Z]{2})"),
)
AGE_PATTERNS = (
    re.compile(r"\b(\d{1,3})\s*(?:year[s]?\s*old|y\.?o\.?|yr[s]?)\b", _I),
    re.compile(r"\bage[d]?\s*:?\s*(\d{1,3})\b", _I),
)
AFFILIATION_PATTERNS = (
    re.compile(r"\b(?:works?\s+(?:at|for)|employed\s+(?:at|by)|attends?|student\s+at)\s+([A-Z][^\n,]+)", _I),
)
SAFE_HARBOR_MAX_AGE = 89

SUSPICIOUS_PATTERNS = (
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),  # phone-like
    re.compile(r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b"),  # SSN-like
    re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b"),  # name-like
    re.compile(r"@[a-z]+\.[a-z]+", _I),  # email-like
)

MISSED_PHI_INDICATORS = (
    (re.compile(r"\b(?:my|his|her|their)\s+(?:name|address|phone|email|ssn)\b", _I),
     "Possessive reference to identifier detected"),
    (re.compile(r"\b(?:contact|reach|call)\s+(?:me|him|her|them)\s+at\b", _I),
     "Contact information reference detected"),
    (re.compile(r"\blives?\s+(?:in|at|on)\b", _I), "Residence reference detected"),
    (re.compile(r"\bborn\s+(?:in|on)\b", _I), "Birth information reference detected"),
)

VALIDATION_CHECKS = (
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "Possible SSN detected", 30),
    (re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"), "Possible phone number detected", 15),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"), "Email address detected", 20),
    (re.compile(r"\b(?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])[-/](?:19|20)\d{2}\b"), "Full date detected", 15),
    (re.compile(r"\bMRN\s*[:#]?\s*\d+", _I), "Medical record number detected", 25),
)
POTENTIAL_NAME = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")

BASE_CONFIDENCE = {
    DeidentificationLevel.STANDARD: 0.85,
    DeidentificationLevel.STRICT: 0.92,
    DeidentificationLevel.PARANOID: 0.97,
}

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


# =============================================================================
# Helpers
# =============================================================================


def _unique_matches(pattern: re.Pattern[str], text: str) -> list[str]:
    """Distinct whole-match strings in order of first appearance."""
    return list(dict.fromkeys(m.group(0) for m in pattern.finditer(text) if m.group(0)))


def _is_allowlisted(term: str, allowed_terms: tuple[str, ...]) -> bool:
    normalized = term.lower().strip()
    if normalized in MEDICAL_ALLOWLIST:
        return True
    return any(allowed.lower() in normalized for allowed in allowed_terms)


def _string_hash(value: str) -> int:
    """31-multiplier string hash wrapped to a signed 32-bit integer."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def hashed_replacement(value: str, category: str, cache: dict[str, str]) -> str:
    """Stable `[CATEGORY_XXXXXX]` token; equal values map to the same token within one call."""
    key = f"{category}:{value.lower()}"
    if key not in cache:
        token = _base36(abs(_string_hash(value)))[:6].upper()
        cache[key] = f"[{category.upper()}_{token}]"
    return cache[key]


def placeholder(category: str, preserve_structure: bool) -> str:
    if not preserve_structure:
        return REDACTED
    return PLACEHOLDERS.get(category, REDACTED)


# =============================================================================
# Passes
# =============================================================================


def _redact_dictionary_names(text: str, options: DeidentificationOptions) -> tuple[str, int]:
    count = 0
    replacement = "[NAME]" if options.preserve_structure else REDACTED
    for word in _unique_matches(CAPITALIZED_WORD, text):
        lower = word.lower()
        if lower in MEDICAL_ALLOWLIST:
            continue
        if lower in COMMON_FIRST_NAMES or lower in COMMON_LAST_NAMES:
            count += 1
            text = re.sub(rf"\b{re.escape(word)}\b", replacement, text)
    return text, count


def _redact_contextual(
    text: str,
    options: DeidentificationOptions,
) -> tuple[str, int, list[str], dict[str, int]]:
    count = 0
    warnings: list[str] = []
    types: dict[str, int] = {}
    original = text

    address_replacement = "[ADDRESS]" if options.preserve_structure else REDACTED
    for pattern in ADDRESS_CONTEXT_PATTERNS:
        for match in (m.group(0) for m in pattern.finditer(original)):
            count += 1
            types["contextual.address"] = types.get("contextual.address", 0) + 1
            text = text.replace(match, address_replacement, 1)

    for pattern in AGE_PATTERNS:
        for m in pattern.finditer(original):
            if int(m.group(1)) > SAFE_HARBOR_MAX_AGE:
                count += 1
                types["contextual.age"] = types.get("contextual.age", 0) + 1
                text = text.replace(m.group(0), "[AGE_90+]", 1)

    affiliation_replacement = "[AFFILIATION]" if options.preserve_structure else REDACTED
    for pattern in AFFILIATION_PATTERNS:
        for match in (m.group(0) for m in pattern.finditer(original)):
            count += 1
            types["contextual.affiliation"] = types.get("contextual.affiliation", 0) + 1
            text = text.replace(match, affiliation_replacement, 1)
            warnings.append("Potential employer/school affiliation detected and redacted")

    return text, count, warnings, types


def _confidence(text: str, level: DeidentificationLevel, redacted_count: int) -> float:
    confidence = BASE_CONFIDENCE[level]
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(text):
            confidence -= 0.05
    if redacted_count > 10:
        confidence += 0.02
    if redacted_count > 20:
        confidence += 0.02
    return round(max(0.5, min(0.99, confidence)), 4)


def _missed_phi_warnings(text: str) -> list[str]:
    return [warning for pattern, warning in MISSED_PHI_INDICATORS if pattern.search(text)]


# =============================================================================
# Public API
# =============================================================================


def deidentify(text: str, options: DeidentificationOptions | None = None) -> DeidentificationResult:
    """Remove PHI from text.

    Args:
        text: Free text that may contain PHI.
        options: Level and replacement style; defaults to standard.

    Returns:
        DeidentificationResult with the redacted text, per-pattern counts and
        a 0-1 confidence that no PHI remains.
    """
    options = options or DeidentificationOptions()
    start = time.perf_counter()
    processed = text or ""
    redaction_types: dict[str, int] = {}
    redacted_count = 0
    warnings: list[str] = []
    hash_cache: dict[str, str] = {}

    for category, patterns in PHI_PATTERNS.items():
        for pattern_name, pattern in patterns.items():
            for match in _unique_matches(pattern, processed):
                if _is_allowlisted(match, options.allowed_terms):
                    continue
                key = f"{category}.{pattern_name}"
                redaction_types[key] = redaction_types.get(key, 0) + 1
                redacted_count += 1
                if options.hash_identifiers:
                    replacement = hashed_replacement(match, category, hash_cache)
                else:
                    replacement = placeholder(category, options.preserve_structure)
                processed = processed.replace(match, replacement)

    if options.level != DeidentificationLevel.STANDARD:
        processed, name_count = _redact_dictionary_names(processed, options)
        if name_count:
            redacted_count += name_count
            redaction_types["names.dictionary"] = name_count

    if options.level == DeidentificationLevel.PARANOID:
        processed, context_count, context_warnings, context_types = _redact_contextual(processed, options)
        redacted_count += context_count
        warnings.extend(context_warnings)
        for key, value in context_types.items():
            redaction_types[key] = redaction_types.get(key, 0) + value

    for index, pattern in enumerate(options.custom_patterns):
        for match in _unique_matches(pattern, processed):
            key = f"custom.pattern{index}"
            redaction_types[key] = redaction_types.get(key, 0) + 1
            redacted_count += 1
            processed = processed.replace(match, "[CUSTOM_REDACTED]")

    confidence = _confidence(processed, options.level, redacted_count)
    warnings.extend(_missed_phi_warnings(processed))

    logger.info(
        "De-identified %d chars (level=%s): %d redactions, confidence=%.2f, %d warnings in %.1fms",
        len(text or ""),
        options.level.value,
        redacted_count,
        confidence,
        len(warnings),
        (time.perf_counter() - start) * 1000,
    )
    return DeidentificationResult(
        text=processed,
        redacted_count=redacted_count,
        redaction_types=redaction_types,
        confidence=confidence,
        warnings=warnings,
    )


def quick_deidentify(text: str) -> str:
    """Standard-level de-identification returning only the text."""
    return deidentify(text).text


def strict_deidentify(text: str) -> DeidentificationResult:
    """Strict level with typed placeholders; used before any external LLM call."""
    return deidentify(text, DeidentificationOptions(level=DeidentificationLevel.STRICT, preserve_structure=True))


def paranoid_deidentify(text: str) -> DeidentificationResult:
    return deidentify(
        text,
        DeidentificationOptions(
            level=DeidentificationLevel.PARANOID,
            preserve_structure=True,
            hash_identifiers=True,
        ),
    )


def validate_deidentification(text: str) -> ValidationReport:
    """Score residual PHI risk in text that is supposed to be de-identified.

    Risk is 0-100; text is considered valid below 20.
    """
    issues: list[str] = []
    risk = 0
    for pattern, issue, weight in VALIDATION_CHECKS:
        if pattern.search(text):
            issues.append(issue)
            risk += weight

    names = POTENTIAL_NAME.findall(text)
    if len(names) > 2:
        issues.append(f"{len(names)} potential names detected")
        risk += len(names) * 5

    return ValidationReport(is_valid=risk < 20, issues=issues, risk_score=min(100, risk))
