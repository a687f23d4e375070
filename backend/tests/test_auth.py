"""Tests for API key, tenant and actor dependencies."""

import uuid

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from app.auth import get_actor, get_tenant_id, verify_api_key

from tests.conftest import TEST_TENANT_ID


@pytest.fixture
def protected_app():
    """Create a test app with an endpoint behind every request dependency."""
    app = FastAPI()

    @app.get("/protected")
    async def protected_endpoint(
        _api_key: str = Depends(verify_api_key),
        tenant_id: uuid.UUID = Depends(get_tenant_id),
        actor: str = Depends(get_actor),
    ):
        return {"tenant_id": str(tenant_id), "actor": actor}

    return app


@pytest.fixture
async def protected_client(protected_app):
    """Async test client for protected app."""
    async with AsyncClient(
        transport=ASGITransport(app=protected_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_missing_api_key_returns_401(protected_client):
    response = await protected_client.get("/protected", headers={"X-Tenant-ID": str(TEST_TENANT_ID)})
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing API key"


@pytest.mark.asyncio
async def test_invalid_api_key_returns_401(protected_client):
    response = await protected_client.get(
        "/protected",
        headers={"X-API-Key": "wrong-key", "X-Tenant-ID": str(TEST_TENANT_ID)},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"


@pytest.mark.asyncio
async def test_missing_tenant_returns_400(protected_client, api_key):
    response = await protected_client.get("/protected", headers={"X-API-Key": api_key})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing tenant"


@pytest.mark.asyncio
async def test_invalid_tenant_returns_422(protected_client, api_key):
    response = await protected_client.get(
        "/protected", headers={"X-API-Key": api_key, "X-Tenant-ID": "not-a-uuid"}
    )
    assert response.status_code == 422
    assert response.json()["detail"] == "Invalid tenant id"


@pytest.mark.asyncio
async def test_actor_defaults_to_api_client(protected_client, auth_headers):
    response = await protected_client.get("/protected", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"tenant_id": str(TEST_TENANT_ID), "actor": "api-client"}


@pytest.mark.asyncio
async def test_actor_header(protected_client, auth_headers):
    response = await protected_client.get("/protected", headers={**auth_headers, "X-Actor": "nurse-7"})
    assert response.json()["actor"] == "nurse-7"
