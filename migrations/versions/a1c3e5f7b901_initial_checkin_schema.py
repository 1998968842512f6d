"""initial_checkin_schema

Creates the check-in and streak tables:
  - tenants          — one row per facility, settings as validated JSON
  - identities       — members and staff with streak state (optimistic version)
  - entitlements     — subscriptions with optional time-of-day windows
  - entry_records    — append-only admitted entries
  - audit_logs       — sensitive-action trail
  - scheduled_jobs   — job registry and run history

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19 09:12:44.310551
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b901'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Tenant ────────────────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("subscription_tier", sa.String(length=30), nullable=False,
                      server_default="basic", comment="basic | pro_qr | premium_bio"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("time_zone", sa.String(length=64), nullable=False, server_default="UTC",
                      comment="IANA zone used for calendar days and access windows"),
            sa.Column("modules_config", sa.JSON(), nullable=True),
            sa.Column("rewards_config", sa.JSON(), nullable=True),
            sa.Column("opening_config", sa.JSON(), nullable=True),
            sa.Column("last_reactivated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("hardware_api_key", sa.String(length=128), nullable=True,
                      comment="Shared secret presented by biometric readers"),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
            sa.UniqueConstraint("hardware_api_key"),
        )
        op.create_index("ix_tenants_deleted_at", "tenants", ["deleted_at"])

    # ── Identity ──────────────────────────────────────────────────────────
    if "identities" not in existing:
        op.create_table(
            "identities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
            sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_entry_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_streak_credit_date", sa.Date(), nullable=True),
            sa.Column("streak_freeze_until", sa.DateTime(timezone=True), nullable=True,
                      comment="Grace period after a lapsed renewal"),
            sa.Column("qr_token", sa.String(length=64), nullable=True),
            sa.Column("biometric_template_id", sa.String(length=128), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("qr_token"),
            sa.UniqueConstraint("tenant_id", "biometric_template_id", name="uq_identity_tenant_biometric"),
        )
        op.create_index("ix_identities_tenant_id", "identities", ["tenant_id"])
        op.create_index("ix_identities_deleted_at", "identities", ["deleted_at"])
        op.create_index("ix_identities_tenant_streak", "identities", ["tenant_id", "current_streak"])

    # ── Entitlement ───────────────────────────────────────────────────────
    if "entitlements" not in existing:
        op.create_table(
            "entitlements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("identity_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("allowed_start_time", sa.Time(), nullable=True, comment="Tenant-local, inclusive"),
            sa.Column("allowed_end_time", sa.Time(), nullable=True, comment="Tenant-local, inclusive"),
            sa.Column("frozen_days_left", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_entitlements_tenant_id", "entitlements", ["tenant_id"])
        op.create_index("ix_entitlements_identity_status", "entitlements",
                        ["identity_id", "status", "expires_at"])

    # ── EntryRecord ───────────────────────────────────────────────────────
    if "entry_records" not in existing:
        op.create_table(
            "entry_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("identity_id", sa.Integer(), nullable=False),
            sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("access_method", sa.String(length=20), nullable=False, server_default="manual"),
            sa.Column("access_class", sa.String(length=20), nullable=False, server_default="regular"),
            sa.Column("credited", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("streak_after", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_entry_records_tenant_id", "entry_records", ["tenant_id"])
        op.create_index("ix_entry_records_tenant_entered", "entry_records", ["tenant_id", "entered_at"])
        op.create_index("ix_entry_records_identity_entered", "entry_records", ["identity_id", "entered_at"])

    # ── AuditLog ──────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("entity_type", sa.String(length=30), nullable=False, server_default=""),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
        op.create_index("idx_audit_tenant_ts", "audit_logs", ["tenant_id", "timestamp"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])

    # ── ScheduledJob ──────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in ("scheduled_jobs", "audit_logs", "entry_records",
                  "entitlements", "identities", "tenants"):
        op.drop_table(table)
