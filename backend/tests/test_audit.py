"""Tests for the audit trail."""

import uuid

import pytest

from app.models.audit import AuditLog
from app.services.audit import REDACTED, AuditLogger, scrub_details

from tests.conftest import TEST_TENANT_ID, added, make_result


class TestScrubDetails:
    def test_phi_keys_are_redacted(self):
        details = {"patient_name": "Jane Doe", "ssn": "123-45-6789", "count": 3}
        assert scrub_details(details) == {"patient_name": REDACTED, "ssn": REDACTED, "count": 3}

    def test_nested_structures(self):
        details = {"patients": [{"mrn": "MRN1", "status": "ok"}], "meta": {"dob": "1980-01-01"}}
        assert scrub_details(details) == {
            "patients": [{"mrn": REDACTED, "status": "ok"}],
            "meta": {"dob": REDACTED},
        }

    def test_fragment_inside_word_is_kept(self):
        details = {"resource_type_name_count": 1, "hostname": "h1", "phone_verified": True}
        scrubbed = scrub_details(details)
        assert scrubbed["resource_type_name_count"] == 1
        assert scrubbed["hostname"] == "h1"
        assert scrubbed["phone_verified"] == REDACTED

    def test_non_dict_passthrough(self):
        assert scrub_details("plain") == "plain"
        assert scrub_details(None) is None


class TestAuditLogger:
    @pytest.mark.asyncio
    async def test_log_adds_scrubbed_event(self, mock_db):
        logger = AuditLogger(mock_db, TEST_TENANT_ID, actor="nurse-1")
        entry = await logger.log(
            "mpi.identity.registered",
            resource_type="Patient",
            resource_id=42,
            details={"email": "a@b.com", "fields": 3},
        )
        assert added(mock_db, AuditLog) == [entry]
        assert entry.tenant_id == TEST_TENANT_ID
        assert entry.actor == "nurse-1"
        assert entry.resource_id == "42"
        assert entry.outcome == "success"
        assert entry.details == {"email": REDACTED, "fields": 3}

    @pytest.mark.asyncio
    async def test_log_without_details(self, mock_db):
        entry = await AuditLogger(mock_db, TEST_TENANT_ID).log("x12.997.processed", outcome="failure")
        assert entry.details is None
        assert entry.actor == "system"
        assert entry.outcome == "failure"

    @pytest.mark.asyncio
    async def test_list_events(self, mock_db):
        event = AuditLog(id=uuid.uuid4(), tenant_id=TEST_TENANT_ID, actor="a", action="b", outcome="success")
        mock_db.execute.side_effect = [make_result(1), make_result(items=[event])]
        events, total = await AuditLogger(mock_db, TEST_TENANT_ID).list_events(action="b")
        assert events == [event]
        assert total == 1


class TestRoutes:
    @pytest.mark.asyncio
    async def test_list(self, client, auth_headers, mock_db):
        event = AuditLog(
            id=uuid.uuid4(),
            tenant_id=TEST_TENANT_ID,
            actor="api-client",
            action="hl7.message.received",
            resource_type="HL7Message",
            resource_id="MSG00001",
            outcome="success",
            details={"ack_code": "AA"},
        )
        mock_db.execute.side_effect = [make_result(1), make_result(items=[event])]
        response = await client.get("/api/audit?action=hl7.message.received&limit=10", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["limit"] == 10
        assert data["skip"] == 0
        assert data["items"][0]["details"] == {"ack_code": "AA"}

    @pytest.mark.asyncio
    async def test_requires_tenant(self, client, api_key):
        response = await client.get("/api/audit", headers={"X-API-Key": api_key})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_limit_is_bounded(self, client, auth_headers):
        response = await client.get("/api/audit?limit=1000", headers=auth_headers)
        assert response.status_code == 422
