"""add org-scoped data tables and the row-level security policy set

Revision ID: 0006_scoped_tables_rls
Revises: 0005_audit_logs
Create Date: 2025-11-09
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from orgauthz.core.config import get_settings
from orgauthz.persistence.rls import (
    POLICY_CATALOG,
    drop_all_policies,
    grant_app_role,
    reset_table_policies,
)


revision = "0006_scoped_tables_rls"
down_revision = "0005_audit_logs"
branch_labels = None
depends_on = None


def upgrade() -> None:
    settings = get_settings()
    op.create_table(
        "org_app_access",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("app_id", sa.String(), nullable=False),
        sa.Column("attached_by", sa.String(), nullable=True),
        sa.Column("attached_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("detached_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.UniqueConstraint("organization_id", "app_id", name="uq_org_app_access_app"),
    )
    op.create_index("ix_org_app_access_organization_id", "org_app_access", ["organization_id"], unique=False)

    op.create_table(
        "review_cache",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("app_id", sa.String(), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
    )
    op.create_index("ix_review_cache_organization_id", "review_cache", ["organization_id"], unique=False)
    op.create_index("ix_review_cache_app_id", "review_cache", ["app_id"], unique=False)

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_chat_sessions_organization_id", "chat_sessions", ["organization_id"], unique=False)

    bind = op.get_bind()
    tables = list(POLICY_CATALOG)
    grant_app_role(bind, tables, settings.rls_app_role)
    for table in tables:
        reset_table_policies(bind, table, settings.rls_app_role)


def downgrade() -> None:
    bind = op.get_bind()
    for table in POLICY_CATALOG:
        drop_all_policies(bind, table)
        op.execute(f'ALTER TABLE "{table}" DISABLE ROW LEVEL SECURITY')
    op.drop_index("ix_chat_sessions_organization_id", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_index("ix_review_cache_app_id", table_name="review_cache")
    op.drop_index("ix_review_cache_organization_id", table_name="review_cache")
    op.drop_table("review_cache")
    op.drop_index("ix_org_app_access_organization_id", table_name="org_app_access")
    op.drop_table("org_app_access")
