"""add identity mirror and organization registry

Revision ID: 0001_organizations_and_users
Revises:
Create Date: 2025-11-07
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from orgauthz.persistence.ddl import (
    SLUG_IMMUTABLE_FUNCTION_SQL,
    SLUG_IMMUTABLE_TRIGGER_SQL,
    SLUG_PATTERN,
)


revision = "0001_organizations_and_users"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Local mirror of the identity store so role rows can cascade on identity removal.
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("tier", sa.String(), server_default=sa.text("'standard'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("max_apps", sa.Integer(), server_default=sa.text("25"), nullable=False),
        sa.Column(
            "settings",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(f"slug ~ '{SLUG_PATTERN}'", name="ck_organizations_slug_format"),
        sa.CheckConstraint(
            "tier IN ('demo', 'standard', 'enterprise')", name="ck_organizations_tier"
        ),
        sa.CheckConstraint("max_apps >= 0", name="ck_organizations_max_apps"),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    # Slugs appear in URLs and external references; reject any change after creation.
    op.execute(SLUG_IMMUTABLE_FUNCTION_SQL)
    op.execute(SLUG_IMMUTABLE_TRIGGER_SQL)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_organizations_slug_immutable ON organizations")
    op.execute("DROP FUNCTION IF EXISTS prevent_organization_slug_change()")
    op.drop_index("ix_organizations_slug", table_name="organizations")
    op.drop_table("organizations")
    op.drop_table("users")
