"""Tests for X12 997 parsing, storage and API routes."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from app.models.audit import AuditLog
from app.models.x12 import X12Acknowledgment, X12TransactionSetAck
from app.services.x12_997 import (
    X12ParseError,
    detect_delimiters,
    element_error_description,
    format_x12_date,
    format_x12_time,
    group_ack_description,
    is_accepted,
    is_rejected,
    parse_997,
    summarize_997,
)
from app.services.x12_acknowledgments import X12AcknowledgmentService

from tests.conftest import TEST_TENANT_ID, added, make_result


def build_isa(element: str = "*", component: str = ":", segment: str = "~") -> str:
    parts = [
        "ISA", "00", " " * 10, "00", " " * 10,
        "ZZ", "CLEARINGHOUSE".ljust(15), "ZZ", "WELLFIT".ljust(15),
        "240301", "1200", "^", "00501", "000000123", "0", "P", component,
    ]
    isa = element.join(parts) + segment
    assert len(isa) == 106
    return isa


SEGMENTS_997 = [
    "GS*FA*CLEARINGHOUSE*WELLFIT*20240301*1200*45*X*005010X231A1",
    "ST*997*0001*005010X231A1",
    "AK1*HC*1001*005010X222A1",
    "AK2*837*0001*005010X222A1",
    "AK5*A",
    "AK2*837*0002*005010X222A1",
    "AK3*NM1*15*2010BA*8",
    "AK4*3:1*66*7*XX",
    "AK5*R*5",
    "AK9*P*2*2*1",
    "SE*10*0001",
    "GE*1*45",
    "IEA*1*000000123",
]

SAMPLE_997 = build_isa() + "~".join(SEGMENTS_997) + "~"


class TestHelpers:
    def test_ack_code_classes(self):
        assert is_accepted("A") and is_accepted("E")
        assert not is_accepted("R")
        assert is_rejected("R") and is_rejected("X")
        assert not is_rejected("P")

    def test_descriptions(self):
        assert group_ack_description("P").startswith("Partially accepted")
        assert element_error_description("7") == "Invalid code value"
        assert element_error_description("99") == "Unknown element error code: 99"

    def test_format_date(self):
        assert format_x12_date("240301") == "2024-03-01"
        assert format_x12_date("990301") == "1999-03-01"
        assert format_x12_date("20240301") == "2024-03-01"
        assert format_x12_date("") == ""

    def test_format_time(self):
        assert format_x12_time("1200") == "12:00:00"
        assert format_x12_time("120015") == "12:00:15"

    def test_detect_delimiters(self):
        d = detect_delimiters(build_isa(element="|", component=">", segment="\n"))
        assert (d.element, d.component, d.segment) == ("|", ">", "\n")

    def test_short_content_uses_defaults(self):
        d = detect_delimiters("ISA*00")
        assert (d.element, d.component, d.segment) == ("*", ":", "~")


class TestParse997:
    def test_envelopes(self):
        result = parse_997(SAMPLE_997)
        assert result.success, result.errors
        data = result.data
        assert data.isa.sender_id == "CLEARINGHOUSE"
        assert data.isa.receiver_id == "WELLFIT"
        assert data.isa.control_number == "000000123"
        assert data.gs.control_number == "45"
        assert data.st_control_number == "0001"
        assert data.ak1.functional_id_code == "HC"
        assert data.ak1.group_control_number == "1001"

    def test_transaction_set_loops(self):
        data = parse_997(SAMPLE_997).data
        assert len(data.transaction_sets) == 2
        first, second = data.transaction_sets
        assert first.ak2.control_number == "0001"
        assert first.ak5.ack_code == "A"
        assert first.segment_errors == []
        assert second.ak5.ack_code == "R"
        assert second.ak5.syntax_error_codes == ["5"]

        segment_error = second.segment_errors[0]
        assert segment_error.segment_id == "NM1"
        assert segment_error.segment_position == 15
        assert segment_error.loop_identifier == "2010BA"
        assert segment_error.error_code == "8"

        element_error = segment_error.element_errors[0]
        assert element_error.position_in_segment == 3
        assert element_error.component_position == 1
        assert element_error.data_element_reference == "66"
        assert element_error.error_code == "7"
        assert element_error.bad_data == "XX"

    def test_ak9(self):
        ak9 = parse_997(SAMPLE_997).data.ak9
        assert ak9.ack_code == "P"
        assert ak9.transaction_sets_included == 2
        assert ak9.transaction_sets_received == 2
        assert ak9.transaction_sets_accepted == 1

    def test_line_breaks_are_ignored(self):
        assert parse_997(SAMPLE_997.replace("~", "~\r\n")).success

    def test_custom_delimiters(self):
        content = build_isa(element="|", component=">", segment="'") + "'".join(
            s.replace("*", "|").replace("3:1", "3>1") for s in SEGMENTS_997
        ) + "'"
        result = parse_997(content)
        assert result.success, result.errors
        assert result.data.transaction_sets[1].segment_errors[0].element_errors[0].component_position == 1

    def test_empty_content(self):
        result = parse_997("   ")
        assert not result.success
        assert result.errors == ["Empty or invalid X12 content"]

    def test_not_isa(self):
        assert not parse_997("GS*FA~ST*997~").success

    def test_not_a_997(self):
        result = parse_997(SAMPLE_997.replace("ST*997", "ST*835"))
        assert not result.success
        assert "Not a 997" in result.errors[0]

    def test_missing_ak9(self):
        result = parse_997(SAMPLE_997.replace("AK9*P*2*2*1~", ""))
        assert not result.success
        assert result.errors == ["Missing AK9 segment"]

    def test_ak9_count_mismatch_warns(self):
        result = parse_997(SAMPLE_997.replace("AK9*P*2*2*1", "AK9*P*3*3*1"))
        assert result.success
        assert "AK9 reports 3" in result.warnings[0]

    def test_summary(self):
        summary = summarize_997(parse_997(SAMPLE_997).data)
        assert summary.total_transaction_sets == 2
        assert summary.accepted == 1
        assert summary.accepted_with_errors == 0
        assert summary.rejected == 1
        assert summary.segment_errors == 1
        assert summary.element_errors == 1


class TestAcknowledgmentService:
    @pytest.fixture
    def service(self, mock_db) -> X12AcknowledgmentService:
        return X12AcknowledgmentService(mock_db, TEST_TENANT_ID, actor="billing")

    @pytest.mark.asyncio
    async def test_process_stores_full_tree(self, service, mock_db):
        result = await service.process_acknowledgment(
            SAMPLE_997, clearinghouse="Availity", claim_ids=["CLM-1"]
        )

        assert result.status == "P"
        assert result.errors_found == 2
        assert result.summary.rejected == 1

        ack = added(mock_db, X12Acknowledgment)[0]
        assert ack.id == result.ack_id
        assert ack.tenant_id == TEST_TENANT_ID
        assert ack.interchange_control_number == "000000123"
        assert ack.acknowledged_group_control_number == "1001"
        assert ack.transaction_sets_rejected == 1
        assert ack.claim_ids == ["CLM-1"]
        assert len(ack.transaction_sets) == 2
        rejected = ack.transaction_sets[1]
        assert isinstance(rejected, X12TransactionSetAck)
        assert rejected.segment_errors[0].element_errors[0].bad_data == "XX"

        audit = added(mock_db, AuditLog)[0]
        assert audit.action == "x12.997.processed"
        assert audit.actor == "billing"

    @pytest.mark.asyncio
    async def test_invalid_content_raises(self, service, mock_db):
        with pytest.raises(X12ParseError):
            await service.process_acknowledgment("not edi")
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_statistics(self, service, mock_db):
        mock_db.execute.side_effect = [
            make_result(rows=[("A", 3), ("R", 1)]),
            make_result(items=["8", "8", "3", None]),
            make_result(items=["7"]),
        ]
        stats = await service.statistics(days=7)
        assert stats.period_days == 7
        assert stats.total == 4
        assert stats.by_status == {"A": 3, "R": 1}
        assert stats.acceptance_rate == 75.0
        assert stats.common_segment_errors == [{"code": "8", "count": 2}, {"code": "3", "count": 1}]
        assert stats.common_element_errors == [{"code": "7", "count": 1}]

    @pytest.mark.asyncio
    async def test_statistics_empty(self, service, mock_db):
        stats = await service.statistics()
        assert stats.total == 0
        assert stats.acceptance_rate is None

    @pytest.mark.asyncio
    async def test_link_claims_deduplicates(self, service, mock_db):
        ack = X12Acknowledgment(id=uuid.uuid4(), tenant_id=TEST_TENANT_ID, claim_ids=["A"])
        mock_db.execute.return_value = make_result(ack)
        linked = await service.link_claims(ack.id, ["A", "B"])
        assert linked.claim_ids == ["A", "B"]

    @pytest.mark.asyncio
    async def test_link_claims_missing(self, service, mock_db):
        assert await service.link_claims(uuid.uuid4(), ["A"]) is None


class TestRoutes:
    @pytest.mark.asyncio
    async def test_process_997(self, client, auth_headers):
        response = await client.post("/api/x12/997", json={"content": SAMPLE_997}, headers=auth_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "P"
        assert data["summary"]["total_transaction_sets"] == 2

    @pytest.mark.asyncio
    async def test_invalid_997(self, client, auth_headers):
        response = await client.post("/api/x12/997", json={"content": "garbage"}, headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_missing_acknowledgment(self, client, auth_headers):
        response = await client.get(f"/api/x12/acknowledgments/{uuid.uuid4()}", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, client, auth_headers):
        response = await client.get("/api/x12/acknowledgments?status=Q", headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_by_claim(self, client, auth_headers):
        with patch(
            "app.routes.x12.X12AcknowledgmentService.list_for_claim", new=AsyncMock(return_value=[])
        ) as list_for_claim:
            response = await client.get("/api/x12/acknowledgments?claim_id=CLM-9", headers=auth_headers)
        assert response.status_code == 200
        list_for_claim.assert_awaited_once_with("CLM-9")

    @pytest.mark.asyncio
    async def test_statistics(self, client, auth_headers):
        response = await client.get("/api/x12/statistics?days=14", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["period_days"] == 14
