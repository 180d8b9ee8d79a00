"""Initial schema for policy, assignments, audit log and audit maintenance."""

from __future__ import annotations
from typing import Union, Sequence

from alembic import op
import sqlalchemy as sa
from clinic_access.models.types import JSONType

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AUDIT_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    """Create every table used by the access control service."""

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("is_phi_related", sa.Boolean(), nullable=False),
        sa.Column("is_system_permission", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_permissions")),
        sa.UniqueConstraint("code", name="uq_permissions_code"),
    )
    op.create_index("ix_permissions_category", "permissions", ["category"], unique=False)
    op.create_index("ix_permissions_resource_type", "permissions", ["resource_type"], unique=False)

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("role_type", sa.String(length=50), nullable=False),
        sa.Column("is_system_role", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_roles")),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("role_id", "permission_id", name=op.f("pk_role_permissions")),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_by", sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_user_roles")),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user", "user_roles", ["user_id"], unique=False)
    op.create_index("ix_user_roles_role", "user_roles", ["role_id"], unique=False)

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("granted_by", sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_user_permissions")),
        sa.UniqueConstraint("user_id", "permission_id", name="uq_user_permissions_user_permission"),
    )
    op.create_index("ix_user_permissions_user", "user_permissions", ["user_id"], unique=False)

    op.create_table(
        "data_access_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rule_name", sa.String(length=200), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("condition", JSONType(), nullable=False),
        sa.Column("scope_role_id", sa.Integer(), nullable=True),
        sa.Column("allow_access", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["scope_role_id"], ["roles.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_data_access_rules")),
    )
    op.create_index("ix_data_access_rules_resource_type", "data_access_rules", ["resource_type"], unique=False)
    op.create_index("ix_data_access_rules_scope_role", "data_access_rules", ["scope_role_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", AUDIT_ID, autoincrement=True, nullable=False),
        sa.Column("idempotency_key", sa.String(length=200), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("event_category", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("resource_id", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("patient_id", sa.String(length=128), nullable=True),
        sa.Column("branch_id", sa.String(length=64), nullable=True),
        sa.Column("is_phi_access", sa.Boolean(), nullable=False),
        sa.Column("is_emergency_access", sa.Boolean(), nullable=False),
        sa.Column("emergency_justification", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("correlation_id", sa.String(length=120), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(length=128), nullable=False),
        sa.Column("details", JSONType(), nullable=False),
        sa.Column("integrity_hash", sa.String(length=128), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_logs")),
        sa.UniqueConstraint("idempotency_key", name="uq_audit_logs_idempotency_key"),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"], unique=False)
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"], unique=False)
    op.create_index("ix_audit_logs_event_category", "audit_logs", ["event_category"], unique=False)
    op.create_index("ix_audit_logs_user", "audit_logs", ["user_id"], unique=False)
    op.create_index("ix_audit_logs_patient_timestamp", "audit_logs", ["patient_id", "timestamp"], unique=False)
    op.create_index("ix_audit_logs_phi", "audit_logs", ["is_phi_access"], unique=False)
    op.create_index("ix_audit_logs_emergency", "audit_logs", ["is_emergency_access"], unique=False)

    op.create_table(
        "audit_retention_policies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_category", sa.String(length=50), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("archive_before_delete", sa.Boolean(), nullable=False),
        sa.Column("archive_location", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_retention_policies")),
        sa.UniqueConstraint("event_category", name="uq_audit_retention_policies_category"),
    )

    op.create_table(
        "anomaly_thresholds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rule_type", sa.String(length=50), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False),
        sa.Column("window_minutes", sa.Integer(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_anomaly_thresholds")),
        sa.UniqueConstraint("rule_type", name="uq_anomaly_thresholds_rule_type"),
    )

    op.create_table(
        "suspicious_activities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("fingerprint", sa.String(length=200), nullable=False),
        sa.Column("rule_type", sa.String(length=50), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("audit_log_ids", JSONType(), nullable=False),
        sa.Column("is_investigated", sa.Boolean(), nullable=False),
        sa.Column("investigated_by", sa.String(length=128), nullable=True),
        sa.Column("investigated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("investigation_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_suspicious_activities")),
        sa.UniqueConstraint("fingerprint", name="uq_suspicious_activities_fingerprint"),
    )
    op.create_index("ix_suspicious_activities_user", "suspicious_activities", ["user_id"], unique=False)
    op.create_index("ix_suspicious_activities_investigated", "suspicious_activities", ["is_investigated"], unique=False)

    op.create_table(
        "emergency_access_reviews",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("audit_log_id", AUDIT_ID, nullable=False),
        sa.Column("reviewed_by", sa.String(length=128), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_justified", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["audit_log_id"], ["audit_logs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_emergency_access_reviews")),
        sa.UniqueConstraint("audit_log_id", name="uq_emergency_access_reviews_audit_log"),
    )


def downgrade() -> None:
    """Drop every table in reverse dependency order."""

    op.drop_table("emergency_access_reviews")
    op.drop_index("ix_suspicious_activities_investigated", table_name="suspicious_activities")
    op.drop_index("ix_suspicious_activities_user", table_name="suspicious_activities")
    op.drop_table("suspicious_activities")
    op.drop_table("anomaly_thresholds")
    op.drop_table("audit_retention_policies")
    for index in (
        "ix_audit_logs_emergency",
        "ix_audit_logs_phi",
        "ix_audit_logs_patient_timestamp",
        "ix_audit_logs_user",
        "ix_audit_logs_event_category",
        "ix_audit_logs_event_type",
        "ix_audit_logs_timestamp",
    ):
        op.drop_index(index, table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_data_access_rules_scope_role", table_name="data_access_rules")
    op.drop_index("ix_data_access_rules_resource_type", table_name="data_access_rules")
    op.drop_table("data_access_rules")
    op.drop_index("ix_user_permissions_user", table_name="user_permissions")
    op.drop_table("user_permissions")
    op.drop_index("ix_user_roles_role", table_name="user_roles")
    op.drop_index("ix_user_roles_user", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_index("ix_permissions_resource_type", table_name="permissions")
    op.drop_index("ix_permissions_category", table_name="permissions")
    op.drop_table("permissions")
