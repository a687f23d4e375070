"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- HTTP client for API testing with a mocked database session
- Mocked AsyncSession and query results
- Common HL7 v2 and FHIR test data
"""

import uuid
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.config import settings
from app.database import get_db
from app.main import app

TEST_API_KEY = "test-api-key"
TEST_TENANT_ID = uuid.UUID("11111111-1111-4111-8111-111111111111")
OTHER_TENANT_ID = uuid.UUID("22222222-2222-4222-8222-222222222222")


# =============================================================================
# HL7 v2 Sample Messages
# =============================================================================

ADT_A01 = "\r".join([
    "MSH|^~\\&|EPIC|HOSP|WELLFIT|WF|20240301083000||ADT^A01^ADT_A01|MSG00001|P|2.5.1",
    "EVN|A01|20240301083000",
    "PID|1||MRN12345^^^HOSP^MR~123-45-6789^^^SSA^SS||DOE^JOHN^Q^JR^^^L||19800115|M|||"
    "123 MAIN ST^^SPRINGFIELD^IL^62701^USA^H||(555)555-1234^PRN^PH|||M^Married^HL70002",
    "PV1|1|I|4WEST^401^A^HOSP||||1234^SMITH^ROBERT^^^DR|||MED||||7|||||V0001|||||||||||||||||||||||||"
    "20240301083000",
    "AL1|1|DA|70618^PENICILLIN^RXNORM|SV|HIVES|20100101",
    "DG1|1|I10|I50.9^Heart failure, unspecified^I10||20240301|A",
    "IN1|1|PPO^Preferred Provider^HL70072|ACME01|ACME HEALTH||||GRP100|ACME GROUP|||20240101|20241231",
]) + "\r"

ORU_R01 = "\r".join([
    "MSH|^~\\&|LAB|HOSP|WELLFIT|WF|20240302101500||ORU^R01|LAB00042|P|2.5.1",
    "PID|1||MRN12345^^^HOSP^MR||DOE^JOHN||19800115|M",
    "OBR|1|ORD100|FIL200|24323-8^Comprehensive metabolic panel^LN|||20240302090000|||||||||||||||"
    "20240302100000||CH|F",
    "OBX|1|NM|2951-2^Sodium^LN||140|mmol/L^mmol/L^UCUM|136-145|N|||F|||20240302090000",
    "OBX|2|NM|2823-3^Potassium^LN||5.9|mmol/L^mmol/L^UCUM|3.5-5.1|H|||F|||20240302090000",
    "NTE|1|L|Specimen slightly hemolyzed",
]) + "\r"

ORM_O01 = "\r".join([
    "MSH|^~\\&|CPOE|HOSP|WELLFIT|WF|20240303120000||ORM^O01|ORD00007|P|2.5.1",
    "PID|1||MRN12345^^^HOSP^MR||DOE^JOHN||19800115|M",
    "ORC|NW|PLC300|||SC||||20240303120000|||5678^JONES^ALICE",
    "OBR|1|PLC300||71046^Chest X-ray 2 views^CPT|S||||||||Shortness of breath",
]) + "\r"


# =============================================================================
# Database Fixtures
# =============================================================================


def make_result(value: Any = None, items: list[Any] | None = None, rows: list[Any] | None = None) -> MagicMock:
    """Build a mock SQLAlchemy Result.

    Args:
        value: Returned by scalar_one_or_none() and scalar_one().
        items: Returned by scalars().all(); the first one by scalars().first().
        rows: Returned by all() and iteration, for multi-column selects.
    """
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    result.scalar.return_value = value
    result.scalars.return_value.all.return_value = items or []
    result.scalars.return_value.first.return_value = items[0] if items else None
    result.all.return_value = rows or []
    result.one.return_value = rows[0] if rows else value
    result.__iter__.side_effect = lambda: iter(rows or [])
    return result


@pytest.fixture
def mock_db() -> MagicMock:
    """Mocked AsyncSession.

    add() is synchronous as on the real session; execute() returns an empty
    result unless a test sets side_effect/return_value.
    """
    db = MagicMock()
    db.add = MagicMock()
    db.add_all = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.delete = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock(return_value=make_result())
    db.get = AsyncMock(return_value=None)
    return db


def added(mock_db: MagicMock, model: type) -> list[Any]:
    """Objects of a given ORM type passed to db.add()."""
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], model)]


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def api_key(monkeypatch) -> str:
    """Configure a known API key for every test."""
    monkeypatch.setattr(settings, "api_key", TEST_API_KEY)
    return TEST_API_KEY


@pytest_asyncio.fixture
async def client(mock_db):
    """Async test client for the FastAPI app backed by the mocked session."""

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """API key and tenant headers for API requests."""
    return {"X-API-Key": TEST_API_KEY, "X-Tenant-ID": str(TEST_TENANT_ID)}


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return TEST_TENANT_ID


# =============================================================================
# FHIR Fixtures
# =============================================================================


@pytest.fixture
def sample_patient() -> dict:
    return {
        "resourceType": "Patient",
        "id": "patient-1",
        "name": [{"family": "Doe", "given": ["John"]}],
        "gender": "male",
        "birthDate": "1980-01-15",
    }


@pytest.fixture
def sample_bundle(sample_patient) -> dict:
    return {
        "resourceType": "Bundle",
        "type": "transaction",
        "entry": [
            {"resource": sample_patient},
            {
                "resource": {
                    "resourceType": "Condition",
                    "id": "condition-1",
                    "subject": {"reference": "Patient/patient-1"},
                    "code": {"coding": [{"system": "http://snomed.info/sct", "code": "44054006"}]},
                }
            },
        ],
    }
