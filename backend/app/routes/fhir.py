"""FHIR R4 REST routes over the tenant-scoped resource store.

Errors are returned as OperationOutcome resources rather than the default
FastAPI error body, as FHIR clients expect.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.repositories.fhir import FhirRepository
from app.schemas.fhir import BundleLoadResponse
from app.services.audit import AuditLogger
from app.services.fhir_server import (
    FHIR_JSON,
    capability_statement,
    has_scope,
    is_supported,
    operation_outcome,
    searchset_bundle,
)

router = APIRouter(prefix="/fhir", tags=["fhir"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _fhir_response(content: dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, media_type=FHIR_JSON)


def _not_supported(resource_type: str) -> JSONResponse:
    return _fhir_response(
        operation_outcome("not-supported", f"Resource type {resource_type} is not supported"),
        status.HTTP_404_NOT_FOUND,
    )


def _scope_denied(scopes: str | None, resource_type: str, action: str) -> JSONResponse | None:
    """Enforce SMART scopes when the caller sends them; absent header means API-key access."""
    if scopes is None or has_scope(scopes, resource_type, action):
        return None
    return _fhir_response(
        operation_outcome("forbidden", f"Scope does not permit {action} on {resource_type}"),
        status.HTTP_403_FORBIDDEN,
    )


@router.get("/metadata")
async def metadata() -> JSONResponse:
    """CapabilityStatement describing the supported resources (no auth required)."""
    return _fhir_response(capability_statement())


@router.post("/Bundle", response_model=BundleLoadResponse)
async def load_bundle(
    bundle: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> BundleLoadResponse:
    """Load every entry of a transaction or collection Bundle.

    Raises:
        HTTPException: 400 if the bundle is invalid.
    """
    if bundle.get("resourceType") != "Bundle":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid bundle: resourceType must be 'Bundle'",
        )

    entries = [e for e in bundle.get("entry", []) if (e.get("resource") or {}).get("resourceType")]
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid bundle: no valid resources found",
        )

    try:
        saved = await FhirRepository(db, tenant_id).save_bundle({"entry": entries}, source="fhir-api")
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    await AuditLogger(db, tenant_id, actor).log(
        "fhir.bundle.loaded",
        resource_type="Bundle",
        resource_id=bundle.get("id"),
        details={"resources_loaded": len(saved)},
    )
    return BundleLoadResponse(message="Bundle loaded successfully", resources_loaded=len(saved))


@router.get("/{resource_type}/{fhir_id}")
async def read_resource(
    resource_type: str,
    fhir_id: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    x_scopes: str | None = Header(default=None, alias="X-Scopes"),
) -> JSONResponse:
    if not is_supported(resource_type):
        return _not_supported(resource_type)
    if denied := _scope_denied(x_scopes, resource_type, "read"):
        return denied

    resource = await FhirRepository(db, tenant_id).get_by_fhir_id(resource_type, fhir_id)
    if resource is None:
        return _fhir_response(
            operation_outcome("not-found", f"{resource_type}/{fhir_id} not found"),
            status.HTTP_404_NOT_FOUND,
        )
    return _fhir_response(resource.data)


@router.get("/{resource_type}")
async def search_resources(
    resource_type: str,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    patient: str | None = None,
    category: str | None = None,
    code: str | None = None,
    count: int = Query(DEFAULT_PAGE_SIZE, alias="_count", ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, alias="_offset", ge=0),
    x_scopes: str | None = Header(default=None, alias="X-Scopes"),
) -> JSONResponse:
    """Search a resource type; returns a searchset Bundle.

    Args:
        patient: Patient id, with or without the "Patient/" prefix.
        category: Category code.
        code: Code coding code.
    """
    if not is_supported(resource_type):
        return _not_supported(resource_type)
    if denied := _scope_denied(x_scopes, resource_type, "read"):
        return denied

    if patient and patient.startswith("Patient/"):
        patient = patient.removeprefix("Patient/")

    resources, total = await FhirRepository(db, tenant_id).search(
        resource_type,
        patient=patient,
        category=category,
        code=code,
        count=count,
        offset=offset,
    )
    return _fhir_response(searchset_bundle(resource_type, resources, total))


@router.post("/{resource_type}")
async def create_resource(
    resource_type: str,
    resource: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
    x_scopes: str | None = Header(default=None, alias="X-Scopes"),
) -> JSONResponse:
    """Create a resource; an id is assigned when the body has none."""
    if not is_supported(resource_type):
        return _not_supported(resource_type)
    if denied := _scope_denied(x_scopes, resource_type, "write"):
        return denied
    if resource.get("resourceType") != resource_type:
        return _fhir_response(
            operation_outcome("invalid", f"resourceType must be {resource_type}"),
            status.HTTP_400_BAD_REQUEST,
        )

    saved = await FhirRepository(db, tenant_id).save_from_data(resource, source="fhir-api")
    await AuditLogger(db, tenant_id, actor).log(
        "fhir.resource.created",
        resource_type=resource_type,
        resource_id=saved.fhir_id,
    )
    response = _fhir_response(saved.data, status.HTTP_201_CREATED)
    response.headers["Location"] = f"{resource_type}/{saved.fhir_id}"
    return response
