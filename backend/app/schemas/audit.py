"""Pydantic schemas for audit events."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    outcome: str
    details: dict[str, Any] | None = None
    created_at: datetime | None = None


class AuditListResponse(BaseModel):
    items: list[AuditEventResponse]
    total: int
    skip: int
    limit: int
