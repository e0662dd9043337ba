"""redact audit details in the insert function and guard tier/quota changes

Revision ID: 0007_audit_contract_and_quota_guard
Revises: 0006_scoped_tables_rls
Create Date: 2025-11-23
"""

from __future__ import annotations

from alembic import op

from orgauthz.persistence.ddl import (
    AUDIT_ACTION_CHECK,
    AUDIT_ACTION_PATTERN,
    QUOTA_GUARD_FUNCTION_SQL,
    QUOTA_GUARD_TRIGGER_SQL,
    REDACT_DETAILS_SIGNATURE,
    log_audit_event_sql,
    redact_details_function_sql,
)


revision = "0007_audit_contract_and_quota_guard"
down_revision = "0006_scoped_tables_rls"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(redact_details_function_sql())
    op.execute(log_audit_event_sql())
    # NOT VALID: existing rows predate the action format and are left untouched.
    op.execute(
        f"ALTER TABLE audit_logs ADD CONSTRAINT {AUDIT_ACTION_CHECK} "
        f"CHECK (action ~ '{AUDIT_ACTION_PATTERN}') NOT VALID"
    )
    op.execute(QUOTA_GUARD_FUNCTION_SQL)
    op.execute(QUOTA_GUARD_TRIGGER_SQL)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_organizations_quota_guard ON organizations")
    op.execute("DROP FUNCTION IF EXISTS prevent_organization_quota_change()")
    op.execute(f"ALTER TABLE audit_logs DROP CONSTRAINT IF EXISTS {AUDIT_ACTION_CHECK}")
    op.execute(log_audit_event_sql(redact=False))
    op.execute(f"DROP FUNCTION IF EXISTS {REDACT_DETAILS_SIGNATURE}")
