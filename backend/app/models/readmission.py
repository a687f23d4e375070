"""SQLAlchemy model for per-tenant readmission predictor settings."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ReadmissionTenantSettings(Base):
    """Predictor switches for one tenant. A missing row means the defaults (disabled)."""

    __tablename__ = "readmission_tenant_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)

    predictor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_create_care_plan: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    high_risk_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)

    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
        onupdate=text("now()"),
    )
