"""tenant_settings_prompt_tracking

Revision ID: 0002_tenant_settings
Revises: 0001_initial
Create Date: 2026-10-18 14:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_tenant_settings"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add per-tenant readmission settings and prompt-version usage tracking."""
    op.create_table(
        "readmission_tenant_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("predictor_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_create_care_plan", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("high_risk_threshold", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("updated_by", sa.String(255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("tenant_id", name="uq_readmission_tenant_settings_tenant_id"),
    )

    op.add_column("ai_predictions", sa.Column("prompt_version_id", postgresql.UUID(as_uuid=True), nullable=True))
    op.create_index("ix_ai_predictions_prompt_version_id", "ai_predictions", ["prompt_version_id"])
    op.add_column(
        "ai_prompt_versions",
        sa.Column("total_accurate", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column(
        "ai_prompt_versions",
        sa.Column("total_outcomes", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    """Drop tenant settings and prompt-version tracking columns."""
    op.drop_column("ai_prompt_versions", "total_outcomes")
    op.drop_column("ai_prompt_versions", "total_accurate")
    op.drop_index("ix_ai_predictions_prompt_version_id", table_name="ai_predictions")
    op.drop_column("ai_predictions", "prompt_version_id")
    op.drop_table("readmission_tenant_settings")
