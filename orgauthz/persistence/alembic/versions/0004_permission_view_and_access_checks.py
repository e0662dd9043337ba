"""add permission view and security-definer access checks

Revision ID: 0004_permission_view_and_access_checks
Revises: 0003_agency_clients
Create Date: 2025-11-08
"""

from __future__ import annotations

from alembic import op

from orgauthz.core.config import get_settings
from orgauthz.persistence.ddl import (
    ACCESS_FUNCTION_SIGNATURES,
    PERMISSION_VIEW,
    access_function_sql,
    create_app_role_sql,
    current_user_function_sql,
    permission_view_sql,
)


revision = "0004_permission_view_and_access_checks"
down_revision = "0003_agency_clients"
branch_labels = None
depends_on = None


def upgrade() -> None:
    settings = get_settings()
    op.execute(create_app_role_sql(settings.rls_app_role))
    # Single normalization point for "what does this role mean".
    op.execute(permission_view_sql())
    op.execute(current_user_function_sql(settings.rls_user_setting))
    for statement in access_function_sql():
        op.execute(statement)
    # Security-definer functions are callable by the app role; the view itself is not granted.
    op.execute(f'REVOKE ALL ON {PERMISSION_VIEW} FROM PUBLIC')
    op.execute(f'GRANT EXECUTE ON FUNCTION current_app_user_id() TO "{settings.rls_app_role}"')
    for signature in ACCESS_FUNCTION_SIGNATURES:
        op.execute(f'REVOKE ALL ON FUNCTION {signature} FROM PUBLIC')
        op.execute(f'GRANT EXECUTE ON FUNCTION {signature} TO "{settings.rls_app_role}"')


def downgrade() -> None:
    for signature in ACCESS_FUNCTION_SIGNATURES:
        op.execute(f"DROP FUNCTION IF EXISTS {signature}")
    op.execute("DROP FUNCTION IF EXISTS current_app_user_id()")
    op.execute(f"DROP VIEW IF EXISTS {PERMISSION_VIEW}")
