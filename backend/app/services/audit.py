"""Tenant audit trail.

Writes structured audit events to the audit_logs table. Event details are
scrubbed of PHI-named keys before they are stored.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Key fragments that mark a detail value as PHI
PHI_KEY_FRAGMENTS = ("name", "ssn", "dob", "birth", "address", "phone", "email", "mrn")


def scrub_details(details: Any) -> Any:
    """Recursively replace values stored under PHI-named keys."""
    if isinstance(details, dict):
        return {
            key: REDACTED if _is_phi_key(key) else scrub_details(value)
            for key, value in details.items()
        }
    if isinstance(details, list):
        return [scrub_details(item) for item in details]
    return details


def _is_phi_key(key: str) -> bool:
    lowered = str(key).lower()
    # Bookkeeping keys such as "resource_type_name" would be false positives; only
    # the exact field or a suffix/prefix match counts.
    return any(
        lowered == fragment or lowered.endswith(f"_{fragment}") or lowered.startswith(f"{fragment}_")
        for fragment in PHI_KEY_FRAGMENTS
    )


class AuditLogger:
    """Writes audit events for one tenant and actor."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, actor: str = "system"):
        self.db = db
        self.tenant_id = tenant_id
        self.actor = actor

    async def log(
        self,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        outcome: str = "success",
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit event to the session.

        The event is flushed with the caller's unit of work; a failed request
        rolls back its audit events together with its data changes.
        """
        entry = AuditLog(
            tenant_id=self.tenant_id,
            actor=self.actor,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            outcome=outcome,
            details=scrub_details(details) if details else None,
        )
        self.db.add(entry)
        logger.debug("Audit %s %s/%s outcome=%s", action, resource_type, resource_id, outcome)
        return entry

    async def list_events(
        self,
        action: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """List this tenant's events, newest first.

        Returns:
            Tuple of (page of events, total matching events).
        """
        conditions = [AuditLog.tenant_id == self.tenant_id]
        if action:
            conditions.append(AuditLog.action == action)

        total_result = await self.db.execute(select(func.count()).select_from(AuditLog).where(*conditions))
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total
