"""Tests for the HL7 ingest pipeline and HL7 API routes."""

import hashlib
from unittest.mock import AsyncMock, patch

import pytest

from app.models.audit import AuditLog
from app.models.fhir import FhirResource
from app.models.hl7 import HL7MessageLog, HL7MessageStatus
from app.services.hl7_parser import parse_message
from app.services.hl7_receiver import HL7ReceiverService, hash_mrn

from tests.conftest import ADT_A01, ORU_R01, TEST_TENANT_ID, added, make_result


@pytest.fixture
def receiver(mock_db) -> HL7ReceiverService:
    return HL7ReceiverService(mock_db, TEST_TENANT_ID)


def test_hash_mrn_uses_mr_identifier():
    message = parse_message(ADT_A01).message
    assert hash_mrn(message) == hashlib.sha256(b"MRN12345").hexdigest()


def test_hash_mrn_without_patient():
    message = parse_message("MSH|^~\\&|A|B|C|D|2024||ADT^A01|X|P|2.5.1\r").message
    assert hash_mrn(message) is None


class TestReceive:
    @pytest.mark.asyncio
    async def test_adt_is_processed(self, receiver, mock_db):
        result = await receiver.receive(ADT_A01, source="http")

        assert result.ack_code == "AA"
        assert "MSA|AA|MSG00001" in result.ack
        assert result.message_type == "ADT^A01"
        assert result.fhir_resource_count == 5

        log = added(mock_db, HL7MessageLog)[0]
        assert log.status == HL7MessageStatus.PROCESSED
        assert log.tenant_id == TEST_TENANT_ID
        assert log.message_control_id == "MSG00001"
        assert log.sending_application == "EPIC"
        assert log.mrn_hash == hashlib.sha256(b"MRN12345").hexdigest()
        assert log.fhir_resources_created == 5
        assert log.ack_code == "AA"
        assert log.processing_duration_ms is not None

        resources = added(mock_db, FhirResource)
        assert {r.resource_type for r in resources} == {
            "Patient", "Encounter", "AllergyIntolerance", "Condition", "Coverage"
        }
        assert all(r.tenant_id == TEST_TENANT_ID for r in resources)
        assert all(r.source == "HL7v2#MSG00001" for r in resources)

        audit = added(mock_db, AuditLog)[0]
        assert audit.action == "hl7.message.received"
        assert audit.details["message_control_id"] == "MSG00001"

    @pytest.mark.asyncio
    async def test_resources_link_to_patient(self, receiver, mock_db):
        await receiver.receive(ORU_R01)
        resources = added(mock_db, FhirResource)
        patient = next(r for r in resources if r.resource_type == "Patient")
        observations = [r for r in resources if r.resource_type == "Observation"]
        assert len(observations) == 2
        assert all(o.patient_fhir_id == patient.fhir_id for o in observations)

    @pytest.mark.asyncio
    async def test_stored_references_use_fhir_ids(self, receiver, mock_db):
        await receiver.receive(ORU_R01)
        resources = added(mock_db, FhirResource)
        patient = next(r for r in resources if r.resource_type == "Patient")
        report = next(r for r in resources if r.resource_type == "DiagnosticReport")
        observation_ids = {r.fhir_id for r in resources if r.resource_type == "Observation"}

        assert report.data["subject"]["reference"] == f"Patient/{patient.fhir_id}"
        assert {ref["reference"] for ref in report.data["result"]} == {f"Observation/{i}" for i in observation_ids}
        assert "urn:uuid:" not in str([r.data for r in resources])

    @pytest.mark.asyncio
    async def test_raw_message_is_never_stored(self, receiver, mock_db):
        await receiver.receive(ADT_A01)
        log = added(mock_db, HL7MessageLog)[0]
        assert "DOE" not in repr(vars(log))

    @pytest.mark.asyncio
    async def test_unparseable_message_gets_ar(self, receiver, mock_db):
        result = await receiver.receive("garbage")
        assert result.ack_code == "AR"
        assert "MSA|AR|UNKNOWN" in result.ack
        log = added(mock_db, HL7MessageLog)[0]
        assert log.status == HL7MessageStatus.ERROR
        assert log.errors == ["Message must start with MSH segment"]
        assert added(mock_db, FhirResource) == []

    @pytest.mark.asyncio
    async def test_untranslatable_message_gets_ae(self, receiver, mock_db):
        result = await receiver.receive("MSH|^~\\&|A|B|C|D|2024||SIU^S12|S1|P|2.5.1\r")
        assert result.ack_code == "AE"
        assert "MSA|AE|S1" in result.ack
        log = added(mock_db, HL7MessageLog)[0]
        assert log.status == HL7MessageStatus.ERROR
        assert log.message_type == "SIU"

    @pytest.mark.asyncio
    async def test_list_messages(self, receiver, mock_db):
        row = HL7MessageLog(message_control_id="X", transport="http", status=HL7MessageStatus.PROCESSED)
        mock_db.execute.return_value = make_result(items=[row])
        assert await receiver.list_messages(limit=10) == [row]


class TestRoutes:
    @pytest.mark.asyncio
    async def test_requires_api_key(self, client):
        response = await client.post("/api/hl7/messages", content=ADT_A01)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_tenant(self, client, api_key):
        response = await client.post("/api/hl7/messages", content=ADT_A01, headers={"X-API-Key": api_key})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_receive_raw_body(self, client, auth_headers):
        response = await client.post(
            "/api/hl7/messages",
            content=ADT_A01,
            headers={**auth_headers, "Content-Type": "x-application/hl7-v2+er7"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["ack_code"] == "AA"
        assert data["fhir_resource_count"] == 5

    @pytest.mark.asyncio
    async def test_receive_json_body(self, client, auth_headers):
        response = await client.post("/api/hl7/messages", json={"message": ORU_R01}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["message_type"] == "ORU^R01"

    @pytest.mark.asyncio
    async def test_processing_failure_is_reported_in_ack(self, client, auth_headers):
        response = await client.post("/api/hl7/messages", content="not hl7", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["ack_code"] == "AR"

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self, client, auth_headers):
        response = await client.post("/api/hl7/messages", content="   ", headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_body_rejected(self, client, auth_headers):
        with patch("app.routes.hl7.MAX_MESSAGE_BYTES", 10):
            response = await client.post("/api/hl7/messages", content=ADT_A01, headers=auth_headers)
        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_parse_only(self, client, auth_headers):
        response = await client.post("/api/hl7/parse", content=ORU_R01, headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"]["header"]["message_control_id"] == "LAB00042"

    @pytest.mark.asyncio
    async def test_translate_only_does_not_persist(self, client, auth_headers, mock_db):
        response = await client.post("/api/hl7/translate", content=ADT_A01, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["bundle"]["type"] == "collection"
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_translate_unparseable(self, client, auth_headers):
        response = await client.post("/api/hl7/translate", content="junk", headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_messages(self, client, auth_headers, mock_db):
        with patch(
            "app.routes.hl7.HL7ReceiverService.list_messages", new=AsyncMock(return_value=[])
        ) as list_messages:
            response = await client.get("/api/hl7/messages?status=error&limit=5", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == []
        list_messages.assert_awaited_once_with(limit=5, status=HL7MessageStatus.ERROR)
