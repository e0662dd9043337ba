"""add agency to client access grants

Revision ID: 0003_agency_clients
Revises: 0002_user_roles
Create Date: 2025-11-07
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0003_agency_clients"
down_revision = "0002_user_roles"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Grants are deactivated rather than deleted so the access history survives.
    op.create_table(
        "agency_clients",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("agency_org_id", sa.String(), nullable=False),
        sa.Column("client_org_id", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["agency_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["client_org_id"], ["organizations.id"]),
        sa.UniqueConstraint("agency_org_id", "client_org_id", name="uq_agency_clients_pair"),
        sa.CheckConstraint("agency_org_id <> client_org_id", name="ck_agency_clients_not_self"),
    )
    op.create_index("ix_agency_clients_agency_org_id", "agency_clients", ["agency_org_id"], unique=False)
    op.create_index(
        "ix_agency_clients_client_active",
        "agency_clients",
        ["client_org_id", "is_active"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_agency_clients_client_active", table_name="agency_clients")
    op.drop_index("ix_agency_clients_agency_org_id", table_name="agency_clients")
    op.drop_table("agency_clients")
