"""add append-only audit log and its insert function

Revision ID: 0005_audit_logs
Revises: 0004_permission_view_and_access_checks
Create Date: 2025-11-09
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from orgauthz.core.config import get_settings
from orgauthz.persistence.ddl import (
    LOG_AUDIT_EVENT_SIGNATURE,
    audit_recent_view_sql,
    log_audit_event_sql,
)


revision = "0005_audit_logs"
down_revision = "0004_permission_view_and_access_checks"
branch_labels = None
depends_on = None


def upgrade() -> None:
    settings = get_settings()
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("user_email", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_path", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default=sa.text("'success'"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('success', 'failure', 'denied')", name="ck_audit_logs_status"
        ),
    )
    op.create_index(
        "ix_audit_logs_user_created", "audit_logs", ["user_id", sa.text("created_at DESC")], unique=False
    )
    op.create_index(
        "ix_audit_logs_org_created",
        "audit_logs",
        ["organization_id", sa.text("created_at DESC")],
        unique=False,
    )
    op.create_index(
        "ix_audit_logs_action_created", "audit_logs", ["action", sa.text("created_at DESC")], unique=False
    )
    # Security monitoring reads failures and denials far more than successes.
    op.create_index(
        "ix_audit_logs_status_created",
        "audit_logs",
        ["status", sa.text("created_at DESC")],
        unique=False,
        postgresql_where=sa.text("status IN ('failure', 'denied')"),
    )

    op.execute(log_audit_event_sql(redact=False))
    op.execute(f"REVOKE ALL ON FUNCTION {LOG_AUDIT_EVENT_SIGNATURE} FROM PUBLIC")
    op.execute(f'GRANT EXECUTE ON FUNCTION {LOG_AUDIT_EVENT_SIGNATURE} TO "{settings.rls_app_role}"')
    op.execute(audit_recent_view_sql(settings.audit_recent_window_hours))


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS audit_logs_recent")
    op.execute(f"DROP FUNCTION IF EXISTS {LOG_AUDIT_EVENT_SIGNATURE}")
    op.drop_index("ix_audit_logs_status_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_org_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_created", table_name="audit_logs")
    op.drop_table("audit_logs")
