"""add single-source-of-truth role assignments

Revision ID: 0002_user_roles
Revises: 0001_organizations_and_users
Create Date: 2025-11-07
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from orgauthz.domain.roles import ROLE_VALUES


revision = "0002_user_roles"
down_revision = "0001_organizations_and_users"
branch_labels = None
depends_on = None


def upgrade() -> None:
    role_list = ", ".join(f"'{value}'" for value in ROLE_VALUES)
    # One row per identity; organization_id is NULL exactly for the platform role.
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.CheckConstraint(f"role IN ({role_list})", name="ck_user_roles_role"),
        sa.CheckConstraint(
            "(organization_id IS NULL) = (role = 'SUPER_ADMIN')",
            name="ck_user_roles_platform_scope",
        ),
    )
    op.create_index("ix_user_roles_organization_id", "user_roles", ["organization_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_user_roles_organization_id", table_name="user_roles")
    op.drop_table("user_roles")
