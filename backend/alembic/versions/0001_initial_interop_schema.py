"""initial_interop_schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

HL7_STATUS = ("received", "parsed", "translated", "processed", "error")
CANDIDATE_STATUS = ("pending", "under_review", "confirmed_match", "confirmed_not_match", "merged", "deferred")
CANDIDATE_PRIORITY = ("normal", "high", "urgent")


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _tenant() -> sa.Column:
    return sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False)


def _created(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    """Create interop, MPI, AI and audit tables."""
    # FHIR store
    op.create_table(
        "fhir_resources",
        _id(),
        _tenant(),
        sa.Column("fhir_id", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("patient_fhir_id", sa.String(255), nullable=True),
        sa.Column("source", sa.String(255), nullable=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        _created(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "resource_type", "fhir_id", name="uq_fhir_tenant_type_id"),
    )
    op.create_index("ix_fhir_resources_tenant_id", "fhir_resources", ["tenant_id"])
    op.create_index("ix_fhir_resources_resource_type", "fhir_resources", ["resource_type"])
    op.create_index(
        "idx_fhir_tenant_type_patient",
        "fhir_resources",
        ["tenant_id", "resource_type", "patient_fhir_id"],
    )
    op.create_index("idx_fhir_data_gin", "fhir_resources", ["data"], postgresql_using="gin")

    # HL7 v2 message log
    op.create_table(
        "hl7_message_log",
        _id(),
        _tenant(),
        sa.Column("message_control_id", sa.String(100), nullable=False),
        sa.Column("message_type", sa.String(10), nullable=True),
        sa.Column("event_type", sa.String(10), nullable=True),
        sa.Column("message_structure", sa.String(20), nullable=True),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("transport", sa.String(10), nullable=False),
        sa.Column("status", sa.Enum(*HL7_STATUS, name="hl7_message_status"), nullable=False),
        sa.Column("message_size", sa.Integer(), nullable=False),
        sa.Column("sending_application", sa.String(255), nullable=True),
        sa.Column("sending_facility", sa.String(255), nullable=True),
        sa.Column("receiving_application", sa.String(255), nullable=True),
        sa.Column("receiving_facility", sa.String(255), nullable=True),
        sa.Column("hl7_version", sa.String(10), nullable=True),
        sa.Column("mrn_hash", sa.String(64), nullable=True),
        sa.Column("fhir_bundle_id", sa.String(64), nullable=True),
        sa.Column("fhir_resources_created", sa.Integer(), nullable=False),
        sa.Column("ack_code", sa.String(2), nullable=True),
        sa.Column("ack_message_id", sa.String(100), nullable=True),
        sa.Column("errors", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("warnings", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created("received_at"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
    )
    op.create_index("ix_hl7_message_log_tenant_id", "hl7_message_log", ["tenant_id"])
    op.create_index("ix_hl7_message_log_mrn_hash", "hl7_message_log", ["mrn_hash"])
    op.create_index("idx_hl7_log_tenant_received", "hl7_message_log", ["tenant_id", "received_at"])
    op.create_index("idx_hl7_log_type", "hl7_message_log", ["message_type", "event_type"])

    # X12 997
    op.create_table(
        "x12_acknowledgments",
        _id(),
        _tenant(),
        sa.Column("interchange_control_number", sa.String(20), nullable=False),
        sa.Column("group_control_number", sa.String(20), nullable=False),
        sa.Column("sender_id", sa.String(50), nullable=False),
        sa.Column("receiver_id", sa.String(50), nullable=False),
        sa.Column("clearinghouse", sa.String(100), nullable=True),
        sa.Column("original_transaction_type", sa.String(10), nullable=False),
        sa.Column("functional_identifier_code", sa.String(5), nullable=False),
        sa.Column("acknowledged_group_control_number", sa.String(20), nullable=False),
        sa.Column("status", sa.String(2), nullable=False),
        sa.Column("transaction_sets_included", sa.Integer(), nullable=False),
        sa.Column("transaction_sets_received", sa.Integer(), nullable=False),
        sa.Column("transaction_sets_accepted", sa.Integer(), nullable=False),
        sa.Column("transaction_sets_rejected", sa.Integer(), nullable=False),
        sa.Column("group_error_codes", postgresql.ARRAY(sa.String(5)), nullable=False),
        sa.Column("claim_ids", postgresql.ARRAY(sa.String(100)), nullable=False),
        sa.Column("summary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created("received_at"),
    )
    op.create_index("ix_x12_acknowledgments_tenant_id", "x12_acknowledgments", ["tenant_id"])
    op.create_index("ix_x12_acknowledgments_status", "x12_acknowledgments", ["status"])
    op.create_index("idx_x12_ack_tenant_received", "x12_acknowledgments", ["tenant_id", "received_at"])

    op.create_table(
        "x12_transaction_set_acks",
        _id(),
        sa.Column(
            "acknowledgment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("x12_acknowledgments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_set_identifier", sa.String(5), nullable=False),
        sa.Column("transaction_set_control_number", sa.String(20), nullable=False),
        sa.Column("status", sa.String(2), nullable=False),
        sa.Column("error_codes", postgresql.ARRAY(sa.String(5)), nullable=False),
    )
    op.create_index(
        "ix_x12_transaction_set_acks_acknowledgment_id", "x12_transaction_set_acks", ["acknowledgment_id"]
    )

    op.create_table(
        "x12_segment_errors",
        _id(),
        sa.Column(
            "transaction_set_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("x12_transaction_set_acks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("segment_id", sa.String(5), nullable=False),
        sa.Column("segment_position", sa.Integer(), nullable=False),
        sa.Column("loop_identifier", sa.String(10), nullable=True),
        sa.Column("error_code", sa.String(5), nullable=True),
    )
    op.create_index("ix_x12_segment_errors_transaction_set_id", "x12_segment_errors", ["transaction_set_id"])

    op.create_table(
        "x12_element_errors",
        _id(),
        sa.Column(
            "segment_error_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("x12_segment_errors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("element_position", sa.Integer(), nullable=False),
        sa.Column("component_position", sa.Integer(), nullable=True),
        sa.Column("data_element_reference", sa.String(10), nullable=True),
        sa.Column("error_code", sa.String(5), nullable=False),
        sa.Column("bad_data", sa.String(255), nullable=True),
    )
    op.create_index("ix_x12_element_errors_segment_error_id", "x12_element_errors", ["segment_error_id"])

    # Master Patient Index
    op.create_table(
        "mpi_identity_records",
        _id(),
        _tenant(),
        sa.Column("patient_id", sa.String(255), nullable=False),
        sa.Column("demographics", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("last_name_soundex", sa.String(4), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("phone_normalized", sa.String(20), nullable=True),
        sa.Column("mrn", sa.String(100), nullable=True),
        sa.Column("merged_into", sa.String(255), nullable=True),
        _created(),
        sa.UniqueConstraint("tenant_id", "patient_id", name="uq_mpi_tenant_patient"),
    )
    op.create_index("ix_mpi_identity_records_tenant_id", "mpi_identity_records", ["tenant_id"])
    op.create_index("idx_mpi_block_soundex", "mpi_identity_records", ["tenant_id", "last_name_soundex"])
    op.create_index("idx_mpi_block_dob", "mpi_identity_records", ["tenant_id", "date_of_birth"])
    op.create_index("idx_mpi_block_phone", "mpi_identity_records", ["tenant_id", "phone_normalized"])
    op.create_index("idx_mpi_block_mrn", "mpi_identity_records", ["tenant_id", "mrn"])

    op.create_table(
        "mpi_match_candidates",
        _id(),
        _tenant(),
        sa.Column("patient_id_a", sa.String(255), nullable=False),
        sa.Column("patient_id_b", sa.String(255), nullable=False),
        sa.Column("overall_score", sa.Float(), nullable=False),
        sa.Column("field_scores", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("matched_fields", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("blocking_key", sa.String(100), nullable=True),
        sa.Column("algorithm_version", sa.String(50), nullable=False),
        sa.Column("status", sa.Enum(*CANDIDATE_STATUS, name="mpi_candidate_status"), nullable=False),
        sa.Column("priority", sa.Enum(*CANDIDATE_PRIORITY, name="mpi_candidate_priority"), nullable=False),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        _created(),
        sa.UniqueConstraint("tenant_id", "patient_id_a", "patient_id_b", name="uq_mpi_candidate_pair"),
    )
    op.create_index("ix_mpi_match_candidates_tenant_id", "mpi_match_candidates", ["tenant_id"])
    op.create_index("ix_mpi_match_candidates_status", "mpi_match_candidates", ["status"])

    # SDOH
    op.create_table(
        "sdoh_passive_detections",
        _id(),
        _tenant(),
        sa.Column("patient_id", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("matched_keywords", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("context_snippet", sa.Text(), nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("suggested_z_code", sa.String(10), nullable=False),
        sa.Column("source_type", sa.String(30), nullable=False),
        sa.Column("source_id", sa.String(255), nullable=False),
        sa.Column("reviewed", sa.Boolean(), nullable=False),
        sa.Column("confirmed", sa.Boolean(), nullable=True),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("observation_fhir_id", sa.String(255), nullable=True),
        _created("detected_at"),
    )
    op.create_index("ix_sdoh_passive_detections_tenant_id", "sdoh_passive_detections", ["tenant_id"])
    op.create_index(
        "idx_sdoh_tenant_patient_reviewed",
        "sdoh_passive_detections",
        ["tenant_id", "patient_id", "reviewed"],
    )

    # AI accuracy
    op.create_table(
        "ai_predictions",
        _id(),
        _tenant(),
        sa.Column("skill_name", sa.String(100), nullable=False),
        sa.Column("prediction_type", sa.String(20), nullable=False),
        sa.Column("prediction_value", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("patient_id", sa.String(255), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("experiment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("experiment_variant", sa.String(20), nullable=True),
        sa.Column("actual_outcome", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("is_accurate", sa.Boolean(), nullable=True),
        sa.Column("outcome_source", sa.String(30), nullable=True),
        sa.Column("outcome_notes", sa.Text(), nullable=True),
        sa.Column("outcome_recorded_at", sa.DateTime(timezone=True), nullable=True),
        _created("predicted_at"),
    )
    op.create_index("ix_ai_predictions_tenant_id", "ai_predictions", ["tenant_id"])
    op.create_index("idx_ai_pred_skill_time", "ai_predictions", ["tenant_id", "skill_name", "predicted_at"])

    op.create_table(
        "ai_prompt_versions",
        _id(),
        _tenant(),
        sa.Column("skill_name", sa.String(100), nullable=False),
        sa.Column("prompt_type", sa.String(20), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("prompt_content", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("change_notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("total_uses", sa.Integer(), nullable=False),
        sa.Column("accuracy_rate", sa.Float(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        _created(),
        sa.UniqueConstraint(
            "tenant_id", "skill_name", "prompt_type", "version_number", name="uq_prompt_version"
        ),
    )
    op.create_index("ix_ai_prompt_versions_tenant_id", "ai_prompt_versions", ["tenant_id"])

    op.create_table(
        "ai_prompt_experiments",
        _id(),
        _tenant(),
        sa.Column("experiment_name", sa.String(100), nullable=False),
        sa.Column("skill_name", sa.String(100), nullable=False),
        sa.Column("hypothesis", sa.Text(), nullable=False),
        sa.Column("control_prompt_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("treatment_prompt_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("traffic_split", sa.Float(), nullable=False),
        sa.Column("min_sample_size", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("control_predictions", sa.Integer(), nullable=False),
        sa.Column("control_accurate", sa.Integer(), nullable=False),
        sa.Column("treatment_predictions", sa.Integer(), nullable=False),
        sa.Column("treatment_accurate", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        _created(),
        sa.UniqueConstraint("tenant_id", "experiment_name", name="uq_experiment_name"),
    )
    op.create_index("ix_ai_prompt_experiments_tenant_id", "ai_prompt_experiments", ["tenant_id"])

    # Audit
    op.create_table(
        "audit_logs",
        _id(),
        _tenant(),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=True),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created(),
    )
    op.create_index("idx_audit_tenant_created", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("idx_audit_tenant_action", "audit_logs", ["tenant_id", "action"])


def downgrade() -> None:
    """Drop all tables and enum types."""
    for table in (
        "audit_logs",
        "ai_prompt_experiments",
        "ai_prompt_versions",
        "ai_predictions",
        "sdoh_passive_detections",
        "mpi_match_candidates",
        "mpi_identity_records",
        "x12_element_errors",
        "x12_segment_errors",
        "x12_transaction_set_acks",
        "x12_acknowledgments",
        "hl7_message_log",
        "fhir_resources",
    ):
        op.drop_table(table)
    for enum_name in ("mpi_candidate_priority", "mpi_candidate_status", "hl7_message_status"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
