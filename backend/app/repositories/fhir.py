"""FHIR Resource repository.

Single entry point for FHIR resource persistence. Every query is scoped to
the tenant the repository was created for, so callers cannot read or write
another tenant's resources.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.fhir import FhirResource
from app.utils.fhir_helpers import extract_patient_fhir_id, resolve_bundle_references


class FhirRepository:
    """Repository for tenant-scoped FHIR resource persistence.

    Resources are keyed by (tenant, resource type, FHIR id). Saving a
    resource whose key already exists replaces its JSON.
    """

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID):
        """Initialize repository with database session.

        Args:
            db: Async SQLAlchemy session.
            tenant_id: Tenant whose resources this repository manages.
        """
        self.db = db
        self.tenant_id = tenant_id

    async def save_from_data(
        self,
        fhir_data: dict[str, Any],
        source: str | None = None,
    ) -> FhirResource:
        """Create or replace a FhirResource from FHIR JSON.

        Assigns a uuid4 `id` when the resource has none.

        Args:
            fhir_data: Raw FHIR JSON data; must contain resourceType.
            source: Optional provenance string, e.g. "HL7v2#MSG00001".

        Returns:
            The created or updated FhirResource.

        Raises:
            ValueError: If resourceType is missing.
        """
        resource_type = fhir_data.get("resourceType")
        if not resource_type:
            raise ValueError("FHIR resource is missing resourceType")

        fhir_id = fhir_data.get("id") or str(uuid.uuid4())
        fhir_data["id"] = fhir_id
        patient_fhir_id = extract_patient_fhir_id(fhir_data)

        existing = await self.get_by_fhir_id(resource_type, fhir_id)
        if existing:
            existing.data = fhir_data
            existing.patient_fhir_id = patient_fhir_id
            existing.source = source or existing.source
            existing.updated_at = datetime.now(timezone.utc)
            await self.db.flush()
            return existing

        resource = FhirResource(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            fhir_id=fhir_id,
            resource_type=resource_type,
            patient_fhir_id=patient_fhir_id,
            source=source,
            data=fhir_data,
        )
        self.db.add(resource)
        await self.db.flush()
        return resource

    async def save_bundle(self, bundle: dict[str, Any], source: str | None = None) -> list[FhirResource]:
        """Save every entry resource of a Bundle.

        Bundle-local urn:uuid references are rewritten to ResourceType/id
        first, so stored resources point at each other by their FHIR ids.

        Args:
            bundle: FHIR Bundle dict with an "entry" array.
            source: Optional provenance string applied to each resource.

        Returns:
            The saved resources, in entry order.
        """
        resolve_bundle_references(bundle)
        saved = []
        for entry in bundle.get("entry", []):
            resource = entry.get("resource")
            if resource:
                saved.append(await self.save_from_data(resource, source=source))
        return saved

    async def delete(self, resource_type: str, fhir_id: str) -> bool:
        """Delete a FHIR resource.

        Returns:
            True if resource was deleted, False if not found.
        """
        resource = await self.get_by_fhir_id(resource_type, fhir_id)
        if resource:
            await self.db.delete(resource)
            return True
        return False

    async def get_by_fhir_id(self, resource_type: str, fhir_id: str) -> FhirResource | None:
        """Get FHIR resource by type and FHIR ID.

        Args:
            resource_type: FHIR resource type.
            fhir_id: The FHIR resource ID (from the FHIR JSON).

        Returns:
            FhirResource if found, None otherwise.
        """
        result = await self.db.execute(
            select(FhirResource).where(
                FhirResource.tenant_id == self.tenant_id,
                FhirResource.resource_type == resource_type,
                FhirResource.fhir_id == fhir_id,
            )
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        resource_type: str,
        patient: str | None = None,
        category: str | None = None,
        code: str | None = None,
        count: int = 50,
        offset: int = 0,
    ) -> tuple[list[FhirResource], int]:
        """Search resources of one type.

        Category and code match any coding code via JSONB containment.

        Args:
            resource_type: FHIR resource type.
            patient: Patient FHIR id (compartment filter).
            category: Category coding code.
            code: Code coding code.
            count: Page size.
            offset: Number of matches to skip.

        Returns:
            Tuple of (page of resources, total matches).
        """
        conditions = [
            FhirResource.tenant_id == self.tenant_id,
            FhirResource.resource_type == resource_type,
        ]
        if patient:
            conditions.append(FhirResource.patient_fhir_id == patient)
        if category:
            conditions.append(FhirResource.data.contains({"category": [{"coding": [{"code": category}]}]}))
        if code:
            conditions.append(FhirResource.data.contains({"code": {"coding": [{"code": code}]}}))

        total_result = await self.db.execute(select(func.count()).select_from(FhirResource).where(*conditions))
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(FhirResource)
            .where(*conditions)
            .order_by(FhirResource.created_at.desc())
            .offset(offset)
            .limit(count)
        )
        return list(result.scalars().all()), total
