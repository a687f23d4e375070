"""Passive social determinants of health (SDOH) detection.

Scans patient-authored free text (check-ins, messages, self reports) for
SDOH keywords. Detections are stored for clinician review; confirmed ones
become FHIR social-history Observations coded with the ICD-10 Z-code.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.sdoh import SDOHDetectionRecord
from app.repositories.fhir import FhirRepository
from app.schemas.sdoh import SDOHDetection
from app.services.audit import AuditLogger

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 2000
SNIPPET_RADIUS = 50
CRITICAL_CONFIDENCE = 90
MAX_KEYWORD_CONFIDENCE = 70
MAX_CONFIDENCE = 95


@dataclass(frozen=True, slots=True)
class SDOHPattern:
    keywords: tuple[str, ...]
    z_code: str
    display: str
    critical_keywords: tuple[str, ...] = ()


SDOH_PATTERNS: dict[str, SDOHPattern] = {
    "food_insecurity": SDOHPattern(
        ("hungry", "no food", "can't afford food", "food pantry", "skipping meals", "food stamps", "snap", "wic"),
        "Z59.4", "Lack of adequate food",
        ("no food",),
    ),
    "housing_instability": SDOHPattern(
        ("homeless", "couch surfing", "living in car", "unstable housing", "eviction", "no permanent address", "shelter"),
        "Z59.0", "Homelessness",
        ("homeless", "living in car", "eviction"),
    ),
    "transportation_barriers": SDOHPattern(
        ("no transportation", "can't get to appointments", "no car", "bus not running", "no ride",
         "transportation issues"),
        "Z59.82", "Transportation insecurity",
    ),
    "social_isolation": SDOHPattern(
        ("lonely", "no friends", "isolated", "alone all day", "no social contact", "nobody to talk to"),
        "Z60.2", "Problems related to living alone",
    ),
    "financial_strain": SDOHPattern(
        ("can't afford", "financial problems", "money troubles", "bills piling up", "debt", "broke", "bankruptcy"),
        "Z59.6", "Low income",
    ),
    "utilities_difficulty": SDOHPattern(
        ("electricity shut off", "no heat", "no water", "utility bill", "can't pay utilities"),
        "Z59.1", "Inadequate housing",
        ("no heat", "no water"),
    ),
    "employment_concerns": SDOHPattern(
        ("lost job", "unemployed", "laid off", "can't find work", "job problems", "fired"),
        "Z56.0", "Unemployment",
    ),
    "education_barriers": SDOHPattern(
        ("dropped out", "can't read", "literacy problems", "no education", "learning difficulty"),
        "Z55.0", "Illiteracy and low-level literacy",
    ),
    "health_literacy": SDOHPattern(
        ("don't understand", "confused about meds", "what does this mean", "too complicated"),
        "Z55.0", "Illiteracy and low-level literacy",
    ),
    "interpersonal_violence": SDOHPattern(
        ("domestic violence", "abuse", "hitting", "afraid of partner", "violent relationship", "assault"),
        "Z69.1", "Victim of abuse",
        ("domestic violence", "afraid of partner", "hitting", "assault"),
    ),
    "stress_anxiety": SDOHPattern(
        ("stressed", "anxious", "panic", "worried all the time", "can't sleep from worry", "overwhelmed"),
        "Z73.3", "Stress, not elsewhere classified",
    ),
    "depression_symptoms": SDOHPattern(
        ("depressed", "sad all the time", "no energy", "don't want to do anything", "hopeless", "suicidal thoughts"),
        "Z13.31", "Screening for depression",
        ("suicidal thoughts", "hopeless"),
    ),
    "substance_use": SDOHPattern(
        ("drinking too much", "using drugs", "addiction", "substance abuse", "can't stop using"),
        "Z72.89", "Other problems related to lifestyle",
    ),
    "medication_access": SDOHPattern(
        ("can't afford meds", "pharmacy too expensive", "ran out of medicine", "no prescription coverage"),
        "Z59.89", "Other problems related to economic circumstances",
        ("ran out of medicine",),
    ),
    "childcare_needs": SDOHPattern(
        ("no childcare", "can't afford daycare", "nobody to watch kids", "childcare issues"),
        "Z62.29", "Other upbringing away from parents",
    ),
    "elder_care_needs": SDOHPattern(
        ("caring for elderly parent", "caregiver burden", "elder care problems", "nursing home too expensive"),
        "Z63.6", "Dependent relative needing care at home",
    ),
    "language_barriers": SDOHPattern(
        ("don't speak english", "language barrier", "need translator", "can't understand"),
        "Z60.3", "Acculturation difficulty",
    ),
    "disability_support": SDOHPattern(
        ("disability", "wheelchair access", "mobility issues", "need assistance", "can't do daily tasks"),
        "Z74.09", "Other reduced mobility",
    ),
    "legal_concerns": SDOHPattern(
        ("legal problems", "court date", "lawyer", "visa issues"),
        "Z65.3", "Problems related to other legal circumstances",
    ),
    "immigration_status": SDOHPattern(
        ("undocumented", "immigration", "deportation", "visa expired", "no papers"),
        "Z60.3", "Acculturation difficulty",
    ),
    "incarceration_history": SDOHPattern(
        ("just released from jail", "probation", "parole", "criminal record", "incarceration"),
        "Z65.1", "Imprisonment and other incarceration",
    ),
    "digital_access": SDOHPattern(
        ("no internet", "no phone", "can't access online", "no computer", "technology problems"),
        "Z59.89", "Other problems related to economic circumstances",
    ),
    "environmental_hazards": SDOHPattern(
        ("mold", "lead paint", "pest infestation", "unsafe building", "air quality"),
        "Z77.9", "Exposure hazardous to health",
    ),
    "neighborhood_safety": SDOHPattern(
        ("unsafe neighborhood", "crime", "violence in area", "afraid to go outside", "dangerous area"),
        "Z60.9", "Problem related to social environment",
    ),
    "cultural_barriers": SDOHPattern(
        ("cultural differences", "discrimination", "prejudice", "don't understand my culture"),
        "Z60.3", "Acculturation difficulty",
    ),
    "other": SDOHPattern((), "Z59.9", "Problem related to housing and economic circumstances, unspecified"),
}


def keyword_confidence(keyword: str) -> int:
    """Longer phrases are more specific, so they score higher."""
    return min(30 + 2 * len(keyword), MAX_KEYWORD_CONFIDENCE)


def _risk_level(is_critical: bool, match_count: int) -> str:
    if is_critical:
        return "critical"
    if match_count >= 3:
        return "high"
    if match_count >= 2:
        return "moderate"
    return "low"


def _snippet(text: str, position: int, length: int) -> str:
    start = max(position - SNIPPET_RADIUS, 0)
    end = min(position + length + SNIPPET_RADIUS, len(text))
    return f"...{text[start:end].strip()}..."


_MARKUP = re.compile(r"[<>\";]")


def _clean_text(text: str) -> str:
    # apostrophes are kept, several keywords contain them
    return _MARKUP.sub("", text or "").replace("--", "")[:MAX_TEXT_LENGTH].strip()


def analyze_text(text: str, source_type: str, source_id: str) -> list[SDOHDetection]:
    """Keyword-scan text for every SDOH category.

    Args:
        text: Free text written by or about the patient.
        source_type: Where the text came from (check-in, message, ...).
        source_id: Id of the source record.

    Returns:
        One detection per category with at least one keyword match.
    """
    if not text or not text.strip():
        return []
    lowered = text.lower()

    detections = []
    for category, pattern in SDOH_PATTERNS.items():
        matched = [kw for kw in pattern.keywords if kw in lowered]
        if not matched:
            continue

        is_critical = any(kw in pattern.critical_keywords for kw in matched)
        best = CRITICAL_CONFIDENCE if is_critical else max(keyword_confidence(kw) for kw in matched)
        confidence = min(best + 10 * (len(matched) - 1), MAX_CONFIDENCE)

        first = matched[0]
        detections.append(SDOHDetection(
            category=category,
            confidence=confidence,
            matched_keywords=matched,
            context_snippet=_snippet(text, lowered.index(first), len(first)),
            risk_level=_risk_level(is_critical, len(matched)),
            suggested_z_code=pattern.z_code,
            source_type=source_type,
            source_id=source_id,
            is_critical=is_critical,
        ))
    return detections


def build_observation(record: SDOHDetectionRecord) -> dict:
    """FHIR social-history Observation for a confirmed detection."""
    pattern = SDOH_PATTERNS.get(record.category, SDOH_PATTERNS["other"])
    return {
        "resourceType": "Observation",
        "id": str(uuid.uuid4()),
        "status": "final",
        "category": [{
            "coding": [{
                "system": "http://terminology.hl7.org/CodeSystem/observation-category",
                "code": "social-history",
                "display": "Social History",
            }],
        }],
        "code": {
            "coding": [{
                "system": "http://hl7.org/fhir/sid/icd-10-cm",
                "code": record.suggested_z_code,
                "display": pattern.display,
            }],
            "text": record.category.replace("_", " "),
        },
        "subject": {"reference": f"Patient/{record.patient_id}"},
        "effectiveDateTime": (record.detected_at or datetime.now(timezone.utc)).isoformat(),
        "valueString": record.context_snippet,
        "note": [{"text": record.review_notes}] if record.review_notes else [],
    }


class SDOHDetectionService:
    """Stores detections and handles clinician review."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, actor: str = "system"):
        self.db = db
        self.tenant_id = tenant_id
        self.audit = AuditLogger(db, tenant_id, actor)

    async def analyze_and_store(
        self,
        patient_id: str,
        text: str,
        source_type: str,
        source_id: str,
    ) -> list[SDOHDetectionRecord]:
        cleaned = _clean_text(text)
        records = []
        for detection in analyze_text(cleaned, source_type, source_id):
            record = SDOHDetectionRecord(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                patient_id=patient_id,
                category=detection.category,
                confidence=detection.confidence,
                matched_keywords=detection.matched_keywords,
                context_snippet=detection.context_snippet,
                risk_level=detection.risk_level,
                suggested_z_code=detection.suggested_z_code,
                source_type=source_type,
                source_id=source_id,
                reviewed=False,
            )
            self.db.add(record)
            records.append(record)

        if records:
            await self.db.flush()
            await self.audit.log(
                "sdoh.detected",
                "Patient",
                patient_id,
                details={"categories": [r.category for r in records], "source_type": source_type},
            )
            logger.info("SDOH: %d detection(s) from %s %s", len(records), source_type, source_id)
        return records

    async def list_unreviewed(self, patient_id: str | None = None) -> list[SDOHDetectionRecord]:
        query = select(SDOHDetectionRecord).where(
            SDOHDetectionRecord.tenant_id == self.tenant_id,
            SDOHDetectionRecord.reviewed.is_(False),
        )
        if patient_id:
            query = query.where(SDOHDetectionRecord.patient_id == patient_id)
        result = await self.db.execute(query.order_by(SDOHDetectionRecord.confidence.desc()))
        return list(result.scalars().all())

    async def review_detection(
        self,
        detection_id: uuid.UUID,
        confirmed: bool,
        notes: str | None,
        reviewer: str,
    ) -> SDOHDetectionRecord | None:
        """Record a clinician's decision on a detection.

        Confirmed detections are written to the FHIR store as Observations.

        Returns:
            The updated detection, or None if it does not exist.
        """
        result = await self.db.execute(
            select(SDOHDetectionRecord).where(
                SDOHDetectionRecord.tenant_id == self.tenant_id,
                SDOHDetectionRecord.id == detection_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None

        record.reviewed = True
        record.confirmed = confirmed
        record.reviewed_by = reviewer
        record.reviewed_at = datetime.now(timezone.utc)
        record.review_notes = notes

        if confirmed:
            observation = build_observation(record)
            saved = await FhirRepository(self.db, self.tenant_id).save_from_data(
                observation, source=f"sdoh-detection#{record.id}"
            )
            record.observation_fhir_id = saved.fhir_id

        await self.db.flush()
        await self.audit.log(
            "sdoh.reviewed",
            "SDOHDetection",
            str(record.id),
            details={"confirmed": confirmed, "category": record.category},
        )
        return record
