"""Tests for Master Patient Index matching and review."""

import uuid
from datetime import date

import pytest

from app.models.audit import AuditLog
from app.models.fhir import FhirResource
from app.models.mpi import MatchCandidateStatus, MatchPriority, MPIIdentityRecord, MPIMatchCandidate
from app.schemas.mpi import MatchScore, PatientDemographics, ReviewDecision
from app.services.mpi_matching import (
    ALGORITHM_VERSION,
    CandidateAlreadyReviewedError,
    MPIMatchingService,
    compare_demographics,
    jaro_similarity,
    jaro_winkler_similarity,
    normalize_name,
    normalize_phone,
    priority_for_score,
    soundex,
)

from tests.conftest import TEST_TENANT_ID, added, make_result

JOHN = PatientDemographics(
    first_name="John",
    last_name="Doe",
    date_of_birth=date(1980, 1, 15),
    ssn_last_four="6789",
    phone="(555) 555-1234",
    address="123 Main St",
    zip_code="12345",
    mrn="MRN12345",
)


def identity(patient_id: str, demographics: PatientDemographics = JOHN) -> MPIIdentityRecord:
    return MPIIdentityRecord(
        id=uuid.uuid4(),
        tenant_id=TEST_TENANT_ID,
        patient_id=patient_id,
        demographics=demographics.model_dump(mode="json", exclude_none=True),
    )


def candidate(score: float = 90.0, status: MatchCandidateStatus = MatchCandidateStatus.PENDING) -> MPIMatchCandidate:
    return MPIMatchCandidate(
        id=uuid.uuid4(),
        tenant_id=TEST_TENANT_ID,
        patient_id_a="p-1",
        patient_id_b="p-2",
        overall_score=score,
        field_scores={"last_name": 100.0},
        matched_fields=["last_name"],
        algorithm_version=ALGORITHM_VERSION,
        status=status,
        priority=priority_for_score(score),
    )


class TestStringAlgorithms:
    def test_jaro_classic_pair(self):
        assert jaro_similarity("MARTHA", "MARHTA") == pytest.approx(0.944, abs=1e-3)

    def test_jaro_winkler_prefix_boost(self):
        assert jaro_winkler_similarity("MARTHA", "MARHTA") == pytest.approx(0.961, abs=1e-3)

    def test_prefix_boost_below_point_seven(self):
        assert jaro_similarity("AB", "AX") == pytest.approx(2 / 3)
        assert jaro_winkler_similarity("AB", "AX") == pytest.approx(0.7)

    def test_identical_and_empty(self):
        assert jaro_winkler_similarity("doe", "DOE") == 1.0
        assert jaro_similarity("", "DOE") == 0.0
        assert jaro_winkler_similarity(None, "DOE") == 0.0

    def test_no_common_characters(self):
        assert jaro_similarity("ABC", "XYZ") == 0.0

    def test_soundex(self):
        assert soundex("Smith") == soundex("Smyth") == "S530"
        assert soundex("Robert") == soundex("Rupert") == "R163"
        assert soundex("Tymczak") == "T522"
        assert soundex("Li") == "L000"

    def test_soundex_without_letters(self):
        assert soundex("") is None
        assert soundex("123") is None

    def test_normalize_name(self):
        assert normalize_name("  José  O'Brien ") == "jose obrien"
        assert normalize_name("---") is None

    def test_normalize_phone(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"
        assert normalize_phone("n/a") is None


class TestCompareDemographics:
    def test_identical_records(self):
        score = compare_demographics(JOHN, JOHN)
        assert score.overall == 100.0
        assert set(score.matched_fields) == {
            "first_name", "last_name", "date_of_birth", "ssn_last_four", "phone", "address", "mrn"
        }
        assert score.blocking_key == "soundex:D000"

    def test_only_shared_fields_contribute(self):
        other = PatientDemographics(first_name="John", last_name="Doe", date_of_birth=date(1981, 2, 2))
        score = compare_demographics(JOHN, other)
        # first 15 + last 20 at 100, dob 25 at 0
        assert score.overall == pytest.approx(58.33, abs=0.01)
        assert "date_of_birth" not in score.matched_fields
        assert set(score.field_scores) == {"first_name", "last_name", "date_of_birth"}

    def test_sound_alike_last_name_scores_full(self):
        a = PatientDemographics(last_name="Smith")
        b = PatientDemographics(last_name="Smyth")
        assert compare_demographics(a, b).field_scores["last_name"] == 100.0

    def test_no_comparable_fields(self):
        score = compare_demographics(PatientDemographics(first_name="A"), PatientDemographics(last_name="B"))
        assert score.overall == 0.0
        assert score.blocking_key is None

    def test_phone_blocking_key(self):
        a = PatientDemographics(last_name="Doe", phone="555-555-1234")
        b = PatientDemographics(last_name="Roe", phone="5555551234")
        assert compare_demographics(a, b).blocking_key == "phone"

    def test_priority_for_score(self):
        assert priority_for_score(99) == MatchPriority.URGENT
        assert priority_for_score(96) == MatchPriority.HIGH
        assert priority_for_score(80) == MatchPriority.NORMAL


class TestMatchingService:
    @pytest.fixture
    def service(self, mock_db) -> MPIMatchingService:
        return MPIMatchingService(mock_db, TEST_TENANT_ID, actor="registrar")

    @pytest.mark.asyncio
    async def test_register_new_identity(self, service, mock_db):
        record = await service.register_identity(JOHN, "p-1")
        assert added(mock_db, MPIIdentityRecord) == [record]
        assert record.last_name_soundex == "D000"
        assert record.phone_normalized == "5555551234"
        assert record.date_of_birth == date(1980, 1, 15)
        assert record.demographics["date_of_birth"] == "1980-01-15"
        assert added(mock_db, AuditLog)[0].action == "mpi.identity.registered"

    @pytest.mark.asyncio
    async def test_register_refreshes_existing(self, service, mock_db):
        existing = identity("p-1", PatientDemographics(last_name="Roe"))
        mock_db.execute.return_value = make_result(existing)
        record = await service.register_identity(JOHN, "p-1")
        assert record is existing
        assert record.last_name_soundex == "D000"
        assert added(mock_db, MPIIdentityRecord) == []

    @pytest.mark.asyncio
    async def test_register_fhir_patient(self, service, mock_db, sample_patient):
        stored = FhirResource(
            id=uuid.uuid4(),
            tenant_id=TEST_TENANT_ID,
            fhir_id="patient-1",
            resource_type="Patient",
            data={**sample_patient, "birthDate": "1980", "telecom": [{"system": "phone", "value": "555-555-1234"}]},
        )
        mock_db.execute.side_effect = [make_result(stored), make_result()]
        record = await service.register_fhir_patient("patient-1")
        assert record.patient_id == "patient-1"
        assert record.date_of_birth is None
        assert record.phone_normalized == "5555551234"
        assert added(mock_db, MPIIdentityRecord) == [record]

    @pytest.mark.asyncio
    async def test_register_fhir_patient_missing(self, service, mock_db):
        assert await service.register_fhir_patient("missing") is None
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_matches_needs_blocking_key(self, service, mock_db):
        assert await service.find_matches(PatientDemographics(first_name="John")) == []
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_matches_scores_and_filters(self, service, mock_db):
        same = identity("p-2")
        weak = identity("p-3", PatientDemographics(first_name="Zed", last_name="Doe", date_of_birth=date(1950, 5, 5)))
        mock_db.execute.return_value = make_result(items=[weak, same])

        matches = await service.find_matches(JOHN)
        assert [m.patient_id for m in matches] == ["p-2"]
        assert matches[0].overall_score == 100.0
        assert matches[0].identity_record_id == same.id
        assert matches[0].is_auto_match_eligible

    @pytest.mark.asyncio
    async def test_find_matches_custom_threshold(self, service, mock_db):
        weak = identity("p-3", PatientDemographics(first_name="John", last_name="Doe", date_of_birth=date(1950, 5, 5)))
        mock_db.execute.return_value = make_result(items=[weak])
        matches = await service.find_matches(JOHN, min_score=50)
        assert len(matches) == 1
        assert not matches[0].is_auto_match_eligible

    @pytest.mark.asyncio
    async def test_create_candidate_orders_pair(self, service, mock_db):
        score = MatchScore(overall=96.0, field_scores={"mrn": 100.0}, matched_fields=["mrn"], blocking_key="mrn")
        created, was_created = await service.create_candidate("p-9", "p-1", score)
        assert was_created
        assert (created.patient_id_a, created.patient_id_b) == ("p-1", "p-9")
        assert created.priority == MatchPriority.HIGH
        assert created.status == MatchCandidateStatus.PENDING
        assert added(mock_db, AuditLog)[0].details == {"score": 96.0, "priority": "high"}

    @pytest.mark.asyncio
    async def test_create_candidate_existing_pair(self, service, mock_db):
        existing = candidate()
        mock_db.execute.return_value = make_result(existing)
        result, was_created = await service.create_candidate("p-2", "p-1", MatchScore(overall=90.0))
        assert result is existing
        assert not was_created
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_detection_creates_candidates(self, service, mock_db):
        first = identity("p-1")
        second = identity("p-2")
        mock_db.execute.side_effect = [
            make_result(items=[first, second]),
            make_result(items=[second]),  # matches for p-1
            make_result(),  # no existing pair
            make_result(items=[first]),  # matches for p-2
            make_result(candidate(100.0)),  # pair already queued
        ]
        assert await service.run_duplicate_detection() == 1
        assert len(added(mock_db, MPIMatchCandidate)) == 1

    @pytest.mark.asyncio
    async def test_list_candidates(self, service, mock_db):
        queued = candidate()
        mock_db.execute.side_effect = [make_result(1), make_result(items=[queued])]
        items, total = await service.list_candidates(priority=MatchPriority.NORMAL)
        assert items == [queued]
        assert total == 1

    @pytest.mark.asyncio
    async def test_review_missing_candidate(self, service, mock_db):
        assert await service.review_candidate(uuid.uuid4(), ReviewDecision.MERGE, "reviewer") is None

    @pytest.mark.asyncio
    async def test_review_not_match(self, service, mock_db):
        pending = candidate()
        mock_db.execute.return_value = make_result(pending)
        reviewed = await service.review_candidate(pending.id, ReviewDecision.NOT_MATCH, "reviewer", "different people")
        assert reviewed.status == MatchCandidateStatus.CONFIRMED_NOT_MATCH
        assert reviewed.reviewed_by == "reviewer"
        assert reviewed.reviewed_at is not None
        assert reviewed.review_notes == "different people"

    @pytest.mark.asyncio
    async def test_merge_below_auto_threshold_only_confirms(self, service, mock_db):
        pending = candidate(90.0)
        mock_db.execute.return_value = make_result(pending)
        reviewed = await service.review_candidate(pending.id, ReviewDecision.MERGE, "reviewer")
        assert reviewed.status == MatchCandidateStatus.CONFIRMED_MATCH

    @pytest.mark.asyncio
    async def test_merge_above_auto_threshold_merges_identity(self, service, mock_db):
        pending = candidate(99.0)
        target = identity("p-2")
        mock_db.execute.side_effect = [make_result(pending), make_result(target)]
        reviewed = await service.review_candidate(pending.id, ReviewDecision.MERGE, "reviewer")
        assert reviewed.status == MatchCandidateStatus.MERGED
        assert target.merged_into == "p-1"

    @pytest.mark.asyncio
    async def test_review_closed_candidate_raises(self, service, mock_db):
        closed = candidate(status=MatchCandidateStatus.MERGED)
        mock_db.execute.return_value = make_result(closed)
        with pytest.raises(CandidateAlreadyReviewedError):
            await service.review_candidate(closed.id, ReviewDecision.DEFER, "reviewer")

    @pytest.mark.asyncio
    async def test_candidate_stats(self, service, mock_db):
        mock_db.execute.side_effect = [
            make_result(rows=[(MatchCandidateStatus.PENDING, 3), (MatchCandidateStatus.MERGED, 1)]),
            make_result(rows=[(MatchPriority.URGENT, 1), (MatchPriority.NORMAL, 2)]),
        ]
        stats = await service.candidate_stats()
        assert stats.total == 4
        assert stats.by_status == {"pending": 3, "merged": 1}
        assert stats.pending_by_priority == {"urgent": 1, "normal": 2}

    def test_config(self, service):
        config = service.get_config()
        assert config.match_threshold == 75.0
        assert config.auto_merge_threshold == 98.0
        assert sum(config.field_weights.values()) == 100


class TestRoutes:
    @pytest.mark.asyncio
    async def test_register_identity(self, client, auth_headers):
        response = await client.post(
            "/api/mpi/identities",
            json={"patient_id": "p-1", "demographics": {"last_name": "Doe", "date_of_birth": "1980-01-15"}},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["patient_id"] == "p-1"
        assert data["last_name_soundex"] == "D000"

    @pytest.mark.asyncio
    async def test_register_fhir_patient_not_found(self, client, auth_headers):
        response = await client.post("/api/mpi/identities/from-fhir/missing", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_ssn_last_four(self, client, auth_headers):
        response = await client.post(
            "/api/mpi/match",
            json={"demographics": {"last_name": "Doe", "ssn_last_four": "12"}},
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_match(self, client, auth_headers, mock_db):
        mock_db.execute.return_value = make_result(items=[identity("p-2")])
        response = await client.post(
            "/api/mpi/match",
            json={"demographics": JOHN.model_dump(mode="json", exclude_none=True)},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["matches"][0]["patient_id"] == "p-2"

    @pytest.mark.asyncio
    async def test_list_candidates(self, client, auth_headers, mock_db):
        mock_db.execute.side_effect = [make_result(0), make_result(items=[])]
        response = await client.get("/api/mpi/candidates?status=deferred", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}

    @pytest.mark.asyncio
    async def test_review(self, client, auth_headers, mock_db):
        pending = candidate()
        mock_db.execute.return_value = make_result(pending)
        response = await client.post(
            f"/api/mpi/candidates/{pending.id}/review",
            json={"decision": "defer"},
            headers={**auth_headers, "X-Actor": "him-analyst"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "deferred"
        assert data["reviewed_by"] == "him-analyst"

    @pytest.mark.asyncio
    async def test_review_not_found(self, client, auth_headers):
        response = await client.post(
            f"/api/mpi/candidates/{uuid.uuid4()}/review", json={"decision": "merge"}, headers=auth_headers
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_review_conflict(self, client, auth_headers, mock_db):
        mock_db.execute.return_value = make_result(candidate(status=MatchCandidateStatus.CONFIRMED_MATCH))
        response = await client.post(
            f"/api/mpi/candidates/{uuid.uuid4()}/review", json={"decision": "merge"}, headers=auth_headers
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_config(self, client, auth_headers):
        response = await client.get("/api/mpi/config", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["algorithm_version"] == ALGORITHM_VERSION
