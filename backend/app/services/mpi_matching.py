"""Master Patient Index matching.

Probabilistic patient matching: candidates are found with blocking keys
(last-name Soundex, date of birth, phone, MRN), then scored field by field
with Jaro-Winkler for names and exact comparison for identifiers. Pairs above
the review threshold go into a human review queue.
"""

import logging
import time
import unicodedata
import uuid
from datetime import datetime, timezone
from typing import Any

from rapidfuzz.distance import Jaro
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.mpi import (
    MatchCandidateStatus,
    MatchPriority,
    MPIIdentityRecord,
    MPIMatchCandidate,
)
from app.schemas.mpi import (
    CandidateStats,
    MatchingConfig,
    MatchResult,
    MatchScore,
    PatientDemographics,
    ReviewDecision,
)
from app.repositories.fhir import FhirRepository
from app.services.audit import AuditLogger
from app.utils.fhir_helpers import extract_patient_demographics

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 75.0
AUTO_MERGE_THRESHOLD = 98.0
HIGH_PRIORITY_THRESHOLD = 95.0
ALGORITHM_VERSION = "v1.0-jaro-soundex"

FIELD_WEIGHTS: dict[str, int] = {
    "first_name": 15,
    "last_name": 20,
    "date_of_birth": 25,
    "ssn_last_four": 15,
    "phone": 10,
    "address": 10,
    "mrn": 5,
}

NAME_MATCH_SCORE = 85.0
SOUNDEX_JW_FLOOR = 0.8
WINKLER_PREFIX = 4
WINKLER_SCALING = 0.1

DECISION_STATUS = {
    ReviewDecision.MERGE: MatchCandidateStatus.CONFIRMED_MATCH,
    ReviewDecision.NOT_MATCH: MatchCandidateStatus.CONFIRMED_NOT_MATCH,
    ReviewDecision.DEFER: MatchCandidateStatus.DEFERRED,
}

# Candidates in these states can still be reviewed
OPEN_STATUSES = frozenset({
    MatchCandidateStatus.PENDING,
    MatchCandidateStatus.UNDER_REVIEW,
    MatchCandidateStatus.DEFERRED,
})

_SOUNDEX_CODES = {
    **dict.fromkeys("BFPV", "1"),
    **dict.fromkeys("CGJKQSXZ", "2"),
    **dict.fromkeys("DT", "3"),
    "L": "4",
    **dict.fromkeys("MN", "5"),
    "R": "6",
}


class CandidateAlreadyReviewedError(ValueError):
    """Raised when a decision is submitted for a closed candidate."""


# =============================================================================
# String algorithms
# =============================================================================


def jaro_similarity(s1: str | None, s2: str | None) -> float:
    if not s1 or not s2:
        return 0.0
    return Jaro.similarity(s1.upper().strip(), s2.upper().strip())


def jaro_winkler_similarity(s1: str | None, s2: str | None) -> float:
    """Jaro similarity boosted by a shared prefix of up to four characters."""
    if not s1 or not s2:
        return 0.0
    jaro = jaro_similarity(s1, s2)
    # Boost applies at every Jaro score, with no 0.7 floor
    a = s1.upper().strip()
    b = s2.upper().strip()
    prefix = 0
    for ch_a, ch_b in zip(a[:WINKLER_PREFIX], b[:WINKLER_PREFIX]):
        if ch_a != ch_b:
            break
        prefix += 1
    return jaro + prefix * WINKLER_SCALING * (1 - jaro)


def soundex(value: str | None) -> str | None:
    """American Soundex code, padded or truncated to four characters."""
    if not value:
        return None
    letters = "".join(ch for ch in value.upper() if "A" <= ch <= "Z")
    if not letters:
        return None

    result = letters[0]
    previous = ""
    for ch in letters[1:]:
        if len(result) == 4:
            break
        code = _SOUNDEX_CODES.get(ch, "")
        if code and code != previous:
            result += code
        previous = code
    return result.ljust(4, "0")


def normalize_name(value: str | None) -> str | None:
    """Lowercase, strip diacritics, keep letters and single spaces."""
    if not value:
        return None
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    letters = "".join(ch for ch in stripped if ("a" <= ch <= "z") or ch == " ")
    return " ".join(letters.split()) or None


def normalize_phone(value: str | None) -> str | None:
    if not value:
        return None
    return "".join(ch for ch in value if ch.isdigit()) or None


def _address_key(demographics: PatientDemographics) -> str | None:
    line = normalize_name(demographics.address)
    if not line:
        return None
    return f"{line}|{(demographics.zip_code or '').strip()[:5]}"


def _blocking_key(a: PatientDemographics, b: PatientDemographics) -> str | None:
    """First blocking key the two records share."""
    soundex_a = soundex(a.last_name)
    if soundex_a and soundex_a == soundex(b.last_name):
        return f"soundex:{soundex_a}"
    if a.date_of_birth and a.date_of_birth == b.date_of_birth:
        return f"dob:{a.date_of_birth.isoformat()}"
    phone_a = normalize_phone(a.phone)
    if phone_a and phone_a == normalize_phone(b.phone):
        return "phone"
    if a.mrn and a.mrn == b.mrn:
        return "mrn"
    return None


def compare_demographics(a: PatientDemographics, b: PatientDemographics) -> MatchScore:
    """Weighted field-by-field comparison of two identities.

    Only fields present on both sides contribute; the overall score is the
    weighted average of the contributing field scores (0-100).
    """
    field_scores: dict[str, float] = {}
    matched: list[str] = []

    first_a, first_b = normalize_name(a.first_name), normalize_name(b.first_name)
    if first_a and first_b:
        score = jaro_winkler_similarity(first_a, first_b) * 100
        field_scores["first_name"] = score
        if score >= NAME_MATCH_SCORE:
            matched.append("first_name")

    last_a, last_b = normalize_name(a.last_name), normalize_name(b.last_name)
    if last_a and last_b:
        jw = jaro_winkler_similarity(last_a, last_b)
        score = jw * 100
        if jw >= SOUNDEX_JW_FLOOR and soundex(last_a) == soundex(last_b):
            score = 100.0
        field_scores["last_name"] = score
        if score >= NAME_MATCH_SCORE:
            matched.append("last_name")

    exact_pairs: list[tuple[str, Any, Any]] = [
        ("date_of_birth", a.date_of_birth, b.date_of_birth),
        ("ssn_last_four", a.ssn_last_four, b.ssn_last_four),
        ("phone", normalize_phone(a.phone), normalize_phone(b.phone)),
        ("address", _address_key(a), _address_key(b)),
        ("mrn", a.mrn, b.mrn),
    ]
    for field_name, value_a, value_b in exact_pairs:
        if value_a and value_b:
            score = 100.0 if value_a == value_b else 0.0
            field_scores[field_name] = score
            if score == 100.0:
                matched.append(field_name)

    total_weight = sum(FIELD_WEIGHTS[name] for name in field_scores)
    overall = (
        sum(score * FIELD_WEIGHTS[name] for name, score in field_scores.items()) / total_weight
        if total_weight
        else 0.0
    )
    return MatchScore(
        overall=round(overall, 2),
        field_scores={name: round(score, 2) for name, score in field_scores.items()},
        matched_fields=matched,
        blocking_key=_blocking_key(a, b),
    )


def priority_for_score(score: float) -> MatchPriority:
    if score >= AUTO_MERGE_THRESHOLD:
        return MatchPriority.URGENT
    if score >= HIGH_PRIORITY_THRESHOLD:
        return MatchPriority.HIGH
    return MatchPriority.NORMAL


# =============================================================================
# Service
# =============================================================================


class MPIMatchingService:
    """Identity registration, matching and duplicate review for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, actor: str = "system"):
        self.db = db
        self.tenant_id = tenant_id
        self.audit = AuditLogger(db, tenant_id, actor)
        self.match_threshold = settings.mpi_match_threshold
        self.auto_merge_threshold = settings.mpi_auto_merge_threshold

    async def _get_identity(self, patient_id: str) -> MPIIdentityRecord | None:
        result = await self.db.execute(
            select(MPIIdentityRecord).where(
                MPIIdentityRecord.tenant_id == self.tenant_id,
                MPIIdentityRecord.patient_id == patient_id,
            )
        )
        return result.scalar_one_or_none()

    async def register_identity(self, demographics: PatientDemographics, patient_id: str) -> MPIIdentityRecord:
        """Create or refresh the identity record and blocking keys for a patient."""
        record = await self._get_identity(patient_id)
        if record is None:
            record = MPIIdentityRecord(id=uuid.uuid4(), tenant_id=self.tenant_id, patient_id=patient_id)
            self.db.add(record)

        record.demographics = demographics.model_dump(mode="json", exclude_none=True)
        record.last_name_soundex = soundex(demographics.last_name)
        record.date_of_birth = demographics.date_of_birth
        record.phone_normalized = normalize_phone(demographics.phone)
        record.mrn = demographics.mrn
        await self.db.flush()

        await self.audit.log("mpi.identity.registered", resource_type="Patient", resource_id=patient_id)
        return record

    async def register_fhir_patient(self, patient_fhir_id: str) -> MPIIdentityRecord | None:
        """Register identity from a stored FHIR Patient. Returns None if no such Patient."""
        stored = await FhirRepository(self.db, self.tenant_id).get_by_fhir_id("Patient", patient_fhir_id)
        if stored is None:
            return None

        fields = extract_patient_demographics(stored.data)
        # Partial dates (YYYY, YYYY-MM) and malformed SSNs can't be compared
        if fields["date_of_birth"] and len(fields["date_of_birth"]) != 10:
            fields["date_of_birth"] = None
        if fields["ssn_last_four"] and not fields["ssn_last_four"].isdigit():
            fields["ssn_last_four"] = None
        return await self.register_identity(PatientDemographics(**fields), patient_fhir_id)

    async def find_matches(
        self,
        demographics: PatientDemographics,
        min_score: float | None = None,
        exclude_patient_id: str | None = None,
        limit: int = 100,
    ) -> list[MatchResult]:
        """Score identities sharing at least one blocking key with the input.

        Returns:
            Matches at or above min_score, best first.
        """
        start = time.perf_counter()
        min_score = self.match_threshold if min_score is None else min_score

        conditions = []
        last_soundex = soundex(demographics.last_name)
        if last_soundex:
            conditions.append(MPIIdentityRecord.last_name_soundex == last_soundex)
        if demographics.date_of_birth:
            conditions.append(MPIIdentityRecord.date_of_birth == demographics.date_of_birth)
        phone = normalize_phone(demographics.phone)
        if phone:
            conditions.append(MPIIdentityRecord.phone_normalized == phone)
        if demographics.mrn:
            conditions.append(MPIIdentityRecord.mrn == demographics.mrn)
        if not conditions:
            logger.info("MPI search skipped: no blocking keys in criteria")
            return []

        query = select(MPIIdentityRecord).where(
            MPIIdentityRecord.tenant_id == self.tenant_id,
            MPIIdentityRecord.merged_into.is_(None),
            or_(*conditions),
        )
        if exclude_patient_id:
            query = query.where(MPIIdentityRecord.patient_id != exclude_patient_id)
        result = await self.db.execute(query.limit(limit))
        candidates = list(result.scalars().all())

        matches: list[MatchResult] = []
        for candidate in candidates:
            score = compare_demographics(demographics, PatientDemographics.model_validate(candidate.demographics))
            if score.overall < min_score:
                continue
            matches.append(
                MatchResult(
                    patient_id=candidate.patient_id,
                    identity_record_id=candidate.id,
                    overall_score=score.overall,
                    field_scores=score.field_scores,
                    matched_fields=score.matched_fields,
                    blocking_key=score.blocking_key,
                    is_auto_match_eligible=score.overall >= self.auto_merge_threshold,
                )
            )
        matches.sort(key=lambda m: m.overall_score, reverse=True)

        logger.info(
            "MPI search scored %d candidates, %d matches >= %.0f in %.1fms",
            len(candidates),
            len(matches),
            min_score,
            (time.perf_counter() - start) * 1000,
        )
        return matches

    async def create_candidate(
        self,
        patient_id_a: str,
        patient_id_b: str,
        score: MatchScore,
    ) -> tuple[MPIMatchCandidate, bool]:
        """Queue a pair for review.

        Returns:
            Tuple of (candidate, created). An existing pair is returned unchanged.
        """
        first, second = sorted((patient_id_a, patient_id_b))
        result = await self.db.execute(
            select(MPIMatchCandidate).where(
                MPIMatchCandidate.tenant_id == self.tenant_id,
                MPIMatchCandidate.patient_id_a == first,
                MPIMatchCandidate.patient_id_b == second,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing, False

        candidate = MPIMatchCandidate(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            patient_id_a=first,
            patient_id_b=second,
            overall_score=score.overall,
            field_scores=score.field_scores,
            matched_fields=score.matched_fields,
            blocking_key=score.blocking_key,
            algorithm_version=ALGORITHM_VERSION,
            status=MatchCandidateStatus.PENDING,
            priority=priority_for_score(score.overall),
        )
        self.db.add(candidate)
        await self.db.flush()
        await self.audit.log(
            "mpi.candidate.created",
            resource_type="MPIMatchCandidate",
            resource_id=str(candidate.id),
            details={"score": score.overall, "priority": candidate.priority.value},
        )
        return candidate, True

    async def run_duplicate_detection(self, limit: int = 500) -> int:
        """Match active identities against each other and queue new pairs.

        Returns:
            Number of candidates created.
        """
        start = time.perf_counter()
        result = await self.db.execute(
            select(MPIIdentityRecord)
            .where(
                MPIIdentityRecord.tenant_id == self.tenant_id,
                MPIIdentityRecord.merged_into.is_(None),
            )
            .order_by(MPIIdentityRecord.created_at)
            .limit(limit)
        )
        identities = list(result.scalars().all())

        created = 0
        for identity in identities:
            demographics = PatientDemographics.model_validate(identity.demographics)
            matches = await self.find_matches(demographics, exclude_patient_id=identity.patient_id)
            for match in matches:
                if match.patient_id == identity.patient_id:
                    continue
                score = MatchScore(
                    overall=match.overall_score,
                    field_scores=match.field_scores,
                    matched_fields=match.matched_fields,
                    blocking_key=match.blocking_key,
                )
                _, was_created = await self.create_candidate(identity.patient_id, match.patient_id, score)
                if was_created:
                    created += 1

        logger.info(
            "MPI duplicate scan: %d identities, %d new candidates in %.1fms",
            len(identities),
            created,
            (time.perf_counter() - start) * 1000,
        )
        return created

    async def list_candidates(
        self,
        status: MatchCandidateStatus | None = MatchCandidateStatus.PENDING,
        priority: MatchPriority | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[MPIMatchCandidate], int]:
        """Review queue, highest score first."""
        conditions = [MPIMatchCandidate.tenant_id == self.tenant_id]
        if status is not None:
            conditions.append(MPIMatchCandidate.status == status)
        if priority is not None:
            conditions.append(MPIMatchCandidate.priority == priority)

        total_result = await self.db.execute(
            select(func.count()).select_from(MPIMatchCandidate).where(*conditions)
        )
        total = total_result.scalar_one()
        result = await self.db.execute(
            select(MPIMatchCandidate)
            .where(*conditions)
            .order_by(MPIMatchCandidate.overall_score.desc(), MPIMatchCandidate.created_at)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def review_candidate(
        self,
        candidate_id: uuid.UUID,
        decision: ReviewDecision,
        reviewer: str,
        notes: str | None = None,
    ) -> MPIMatchCandidate | None:
        """Record a reviewer's decision on a candidate pair.

        A merge decision on a pair scoring at or above the auto-merge threshold
        completes the merge: the B identity is marked as merged into A.

        Returns:
            The updated candidate, or None if it does not exist.

        Raises:
            CandidateAlreadyReviewedError: If the candidate is already decided.
        """
        result = await self.db.execute(
            select(MPIMatchCandidate).where(
                MPIMatchCandidate.tenant_id == self.tenant_id,
                MPIMatchCandidate.id == candidate_id,
            )
        )
        candidate = result.scalar_one_or_none()
        if candidate is None:
            return None
        if candidate.status not in OPEN_STATUSES:
            raise CandidateAlreadyReviewedError(f"Candidate already {candidate.status.value}")

        new_status = DECISION_STATUS[decision]
        if decision == ReviewDecision.MERGE and candidate.overall_score >= self.auto_merge_threshold:
            new_status = MatchCandidateStatus.MERGED
            target = await self._get_identity(candidate.patient_id_b)
            if target is not None:
                target.merged_into = candidate.patient_id_a

        candidate.status = new_status
        candidate.reviewed_by = reviewer
        candidate.reviewed_at = datetime.now(timezone.utc)
        candidate.review_notes = notes
        await self.db.flush()

        await self.audit.log(
            "mpi.candidate.reviewed",
            resource_type="MPIMatchCandidate",
            resource_id=str(candidate.id),
            details={"decision": decision.value, "status": new_status.value},
        )
        return candidate

    async def candidate_stats(self) -> CandidateStats:
        status_result = await self.db.execute(
            select(MPIMatchCandidate.status, func.count())
            .where(MPIMatchCandidate.tenant_id == self.tenant_id)
            .group_by(MPIMatchCandidate.status)
        )
        by_status = {_enum_value(status): count for status, count in status_result.all()}

        priority_result = await self.db.execute(
            select(MPIMatchCandidate.priority, func.count())
            .where(
                MPIMatchCandidate.tenant_id == self.tenant_id,
                MPIMatchCandidate.status == MatchCandidateStatus.PENDING,
            )
            .group_by(MPIMatchCandidate.priority)
        )
        pending_by_priority = {_enum_value(priority): count for priority, count in priority_result.all()}

        return CandidateStats(
            total=sum(by_status.values()),
            by_status=by_status,
            pending_by_priority=pending_by_priority,
        )

    def get_config(self) -> MatchingConfig:
        return MatchingConfig(
            match_threshold=self.match_threshold,
            auto_merge_threshold=self.auto_merge_threshold,
            field_weights=dict(FIELD_WEIGHTS),
            algorithm_version=ALGORITHM_VERSION,
        )


def _enum_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)
