"""Per-tenant readmission predictor settings.

Settings live server-side, keyed by tenant. Tenants without a row get the
defaults, which leave the predictor disabled.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.readmission import ReadmissionTenantSettings
from app.schemas.readmission import TenantReadmissionSettings

logger = logging.getLogger(__name__)


async def get_tenant_settings(db: AsyncSession, tenant_id: uuid.UUID) -> TenantReadmissionSettings:
    result = await db.execute(
        select(ReadmissionTenantSettings).where(ReadmissionTenantSettings.tenant_id == tenant_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return TenantReadmissionSettings()
    return TenantReadmissionSettings.model_validate(row)


async def save_tenant_settings(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    values: TenantReadmissionSettings,
    updated_by: str,
) -> TenantReadmissionSettings:
    """Create or replace the tenant's settings row."""
    result = await db.execute(
        select(ReadmissionTenantSettings).where(ReadmissionTenantSettings.tenant_id == tenant_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = ReadmissionTenantSettings(id=uuid.uuid4(), tenant_id=tenant_id)
        db.add(row)

    row.predictor_enabled = values.predictor_enabled
    row.auto_create_care_plan = values.auto_create_care_plan
    row.high_risk_threshold = values.high_risk_threshold
    row.updated_by = updated_by
    await db.flush()

    logger.info(
        "Readmission settings for tenant %s: enabled=%s care_plan=%s threshold=%.2f",
        tenant_id, values.predictor_enabled, values.auto_create_care_plan, values.high_risk_threshold,
    )
    return values
