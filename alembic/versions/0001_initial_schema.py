"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_session_status = sa.Enum(
    "pending",
    "running",
    "awaiting_recovery",
    "completed",
    "completed_with_warnings",
    "failed",
    "rolled_back",
    name="sessionstatus",
)
_phase_outcome = sa.Enum("success", "failure", "skipped", name="phaseoutcome")


def upgrade() -> None:
    op.create_table(
        "orchestration_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("orchestration_id", sa.String(128), nullable=False),
        sa.Column("domain", sa.String(253), nullable=False),
        sa.Column("customer", sa.String(128), nullable=False),
        sa.Column("environment", sa.String(32), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("current_phase", sa.String(32), nullable=True),
        sa.Column("status", _session_status, nullable=False),
        sa.Column("dry_run", sa.Boolean(), nullable=False),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False),
        sa.Column("rollback_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_orchestration_sessions"),
    )
    op.create_index(
        "ix_orchestration_sessions_orchestration_id", "orchestration_sessions", ["orchestration_id"]
    )
    op.create_index("ix_orchestration_sessions_domain", "orchestration_sessions", ["domain"])
    op.create_index("ix_orchestration_sessions_status", "orchestration_sessions", ["status"])

    op.create_table(
        "phase_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("phase", sa.String(32), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("outcome", _phase_outcome, nullable=False),
        sa.Column("output", sa.JSON(), nullable=False),
        sa.Column("error_kind", sa.String(64), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["orchestration_sessions.id"],
            name="fk_phase_records_session_id_orchestration_sessions",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_phase_records"),
    )
    op.create_index("ix_phase_records_session_id", "phase_records", ["session_id"])
    op.create_index("ix_phase_records_session_phase", "phase_records", ["session_id", "phase"])

    op.create_table(
        "phase_outputs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("phase", sa.String(32), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_phase_outputs"),
        sa.UniqueConstraint("session_id", "phase", "version", name="uq_phase_outputs_version"),
    )
    op.create_index("ix_phase_outputs_session_id", "phase_outputs", ["session_id"])

    op.create_table(
        "rollback_actions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("executed", sa.Boolean(), nullable=False),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_rollback_actions"),
        sa.UniqueConstraint("session_id", "sequence", name="uq_rollback_actions_sequence"),
    )
    op.create_index("ix_rollback_actions_session_id", "rollback_actions", ["session_id"])

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("actor", sa.String(256), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_entries"),
    )
    op.create_index("ix_audit_entries_session_id", "audit_entries", ["session_id"])
    op.create_index("ix_audit_entries_timestamp", "audit_entries", ["timestamp"])
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])
    op.create_index("ix_audit_session_sequence", "audit_entries", ["session_id", "sequence"])

    op.create_table(
        "session_locks",
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("owner", sa.String(128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("session_id", name="pk_session_locks"),
    )

    op.create_table(
        "provisioned_resources",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=False),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("deleted", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_provisioned_resources"),
        sa.UniqueConstraint("external_id", name="uq_provisioned_resources_external_id"),
    )
    op.create_index(
        "ix_provisioned_resources_kind_name", "provisioned_resources", ["kind", "name"]
    )


def downgrade() -> None:
    op.drop_table("provisioned_resources")
    op.drop_table("session_locks")
    op.drop_table("audit_entries")
    op.drop_table("rollback_actions")
    op.drop_table("phase_outputs")
    op.drop_table("phase_records")
    op.drop_table("orchestration_sessions")
