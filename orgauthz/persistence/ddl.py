"""PostgreSQL-only DDL shared by the Alembic revisions and the verification scripts.

The permission view and the access-check functions are generated from the
role vocabulary in ``orgauthz.domain.roles`` so the database and the Python
predicates agree on what each role means.
"""

from __future__ import annotations

from orgauthz.domain.roles import LEGACY_ROLE_ALIASES, ORG_ADMIN_ROLES, Role


SLUG_PATTERN = r"^[a-z0-9]+(-[a-z0-9]+)*$"

PERMISSION_VIEW = "user_permissions"


def _sql_list(values) -> str:
    return ", ".join(f"'{value}'" for value in sorted(values))


def normalized_role_sql(column: str) -> str:
    # Fold casing and historical aliases onto the canonical spelling.
    folded = f"upper(btrim({column}))"
    if not LEGACY_ROLE_ALIASES:
        return folded
    branches = " ".join(
        f"WHEN '{alias}' THEN '{canonical}'" for alias, canonical in sorted(LEGACY_ROLE_ALIASES.items())
    )
    return f"(CASE {folded} {branches} ELSE {folded} END)"


def permission_view_sql() -> str:
    role = normalized_role_sql("ur.role")
    admin_roles = _sql_list(r.value for r in ORG_ADMIN_ROLES)
    return f"""
CREATE OR REPLACE VIEW {PERMISSION_VIEW} AS
SELECT
    ur.user_id,
    ur.organization_id,
    ur.role,
    {role} AS normalized_role,
    o.name AS org_name,
    o.slug AS org_slug,
    o.tier AS org_tier,
    ({role} = '{Role.SUPER_ADMIN.value}' AND ur.organization_id IS NULL) AS is_super_admin,
    ({role} IN ({admin_roles})) AS is_org_admin,
    (ur.organization_id IS NULL) AS is_platform_role
FROM user_roles ur
LEFT JOIN organizations o ON o.id = ur.organization_id
"""


def current_user_function_sql(setting_name: str) -> str:
    # Policies read the acting user from a transaction-local setting, never from a session global.
    return f"""
CREATE OR REPLACE FUNCTION current_app_user_id()
RETURNS text
LANGUAGE sql
STABLE
AS $$
    SELECT NULLIF(current_setting('{setting_name}', true), '')
$$
"""


def access_function_sql() -> list[str]:
    """Security-definer predicates; they read user_roles/agency_clients past RLS."""
    return [
        f"""
CREATE OR REPLACE FUNCTION is_platform_super_admin(p_user_id text)
RETURNS boolean
LANGUAGE sql
STABLE
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT EXISTS (
        SELECT 1 FROM {PERMISSION_VIEW}
        WHERE user_id = p_user_id AND is_super_admin
    )
$$
""",
        f"""
CREATE OR REPLACE FUNCTION is_org_admin_of(p_org_id text, p_user_id text)
RETURNS boolean
LANGUAGE sql
STABLE
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT is_platform_super_admin(p_user_id) OR EXISTS (
        SELECT 1 FROM {PERMISSION_VIEW}
        WHERE user_id = p_user_id
          AND organization_id = p_org_id
          AND is_org_admin
    )
$$
""",
        f"""
CREATE OR REPLACE FUNCTION can_access_organization(p_org_id text, p_user_id text)
RETURNS boolean
LANGUAGE sql
STABLE
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT is_platform_super_admin(p_user_id)
        OR EXISTS (
            SELECT 1 FROM {PERMISSION_VIEW}
            WHERE user_id = p_user_id AND organization_id = p_org_id
        )
        OR EXISTS (
            SELECT 1
            FROM {PERMISSION_VIEW} p
            JOIN agency_clients ac ON ac.agency_org_id = p.organization_id
            WHERE p.user_id = p_user_id
              AND p.is_org_admin
              AND ac.client_org_id = p_org_id
              AND ac.is_active
        )
$$
""",
        f"""
CREATE OR REPLACE FUNCTION can_administer_organization(p_org_id text, p_user_id text)
RETURNS boolean
LANGUAGE sql
STABLE
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT is_org_admin_of(p_org_id, p_user_id)
        OR EXISTS (
            SELECT 1
            FROM {PERMISSION_VIEW} p
            JOIN agency_clients ac ON ac.agency_org_id = p.organization_id
            WHERE p.user_id = p_user_id
              AND p.is_org_admin
              AND ac.client_org_id = p_org_id
              AND ac.is_active
        )
$$
""",
    ]


ACCESS_FUNCTION_SIGNATURES = (
    "can_administer_organization(text, text)",
    "can_access_organization(text, text)",
    "is_org_admin_of(text, text)",
    "is_platform_super_admin(text)",
)


# Actions are short snake_case verbs such as "login" or "view_dashboard".
AUDIT_ACTION_PATTERN = r"^[a-z][a-z0-9_.]*$"
# Detail keys containing any of these fragments are stored as REDACTED_VALUE.
SENSITIVE_DETAIL_KEYS = ("api_key", "authorization", "token", "secret", "password", "cookie")
REDACTED_VALUE = "[REDACTED]"


def redact_details_function_sql() -> str:
    keys = "|".join(SENSITIVE_DETAIL_KEYS)
    return f"""
CREATE OR REPLACE FUNCTION redact_audit_details(p_value jsonb)
RETURNS jsonb
LANGUAGE plpgsql
IMMUTABLE
AS $$
DECLARE
    v_result jsonb;
    v_key text;
    v_item jsonb;
BEGIN
    IF p_value IS NULL THEN
        RETURN '{{}}'::jsonb;
    END IF;
    IF jsonb_typeof(p_value) = 'object' THEN
        v_result := '{{}}'::jsonb;
        FOR v_key, v_item IN SELECT key, value FROM jsonb_each(p_value) LOOP
            IF lower(v_key) ~ '({keys})' THEN
                v_result := v_result || jsonb_build_object(v_key, '{REDACTED_VALUE}');
            ELSE
                v_result := v_result || jsonb_build_object(v_key, redact_audit_details(v_item));
            END IF;
        END LOOP;
        RETURN v_result;
    END IF;
    IF jsonb_typeof(p_value) = 'array' THEN
        SELECT COALESCE(jsonb_agg(redact_audit_details(t.item) ORDER BY t.ord), '[]'::jsonb)
        INTO v_result
        FROM jsonb_array_elements(p_value) WITH ORDINALITY AS t(item, ord);
        RETURN v_result;
    END IF;
    RETURN p_value;
END;
$$
"""


REDACT_DETAILS_SIGNATURE = "redact_audit_details(jsonb)"

AUDIT_ACTION_CHECK = "ck_audit_logs_action"


def log_audit_event_sql(*, redact: bool = True) -> str:
    """Single write path for audit rows.

    ``redact=False`` reproduces the first revision of the function, which
    stored details verbatim; later revisions route them through
    ``redact_audit_details``.
    """
    details = "redact_audit_details(p_details)" if redact else "COALESCE(p_details, '{}'::jsonb)"
    return f"""
CREATE OR REPLACE FUNCTION log_audit_event(
    p_user_id text,
    p_organization_id text,
    p_user_email text,
    p_action text,
    p_resource_type text DEFAULT NULL,
    p_resource_id text DEFAULT NULL,
    p_details jsonb DEFAULT '{{}}'::jsonb,
    p_ip_address text DEFAULT NULL,
    p_user_agent text DEFAULT NULL,
    p_request_path text DEFAULT NULL,
    p_status text DEFAULT 'success',
    p_error_message text DEFAULT NULL
)
RETURNS text
LANGUAGE plpgsql
SECURITY DEFINER
SET search_path = public
AS $$
DECLARE
    v_id text := replace(gen_random_uuid()::text, '-', '');
BEGIN
    INSERT INTO audit_logs (
        id, user_id, organization_id, user_email, action, resource_type, resource_id,
        details, ip_address, user_agent, request_path, status, error_message, created_at
    ) VALUES (
        v_id, p_user_id, p_organization_id, p_user_email, p_action, p_resource_type, p_resource_id,
        {details}, p_ip_address, p_user_agent, p_request_path,
        COALESCE(p_status, 'success'), p_error_message, now()
    );
    RETURN v_id;
END;
$$
"""

LOG_AUDIT_EVENT_SIGNATURE = (
    "log_audit_event(text, text, text, text, text, text, jsonb, text, text, text, text, text)"
)


def audit_recent_view_sql(window_hours: int) -> str:
    return f"""
CREATE OR REPLACE VIEW audit_logs_recent AS
SELECT
    al.id,
    al.user_email,
    o.name AS organization_name,
    al.action,
    al.resource_type,
    al.status,
    al.ip_address,
    al.created_at
FROM audit_logs al
LEFT JOIN organizations o ON o.id = al.organization_id
WHERE al.created_at > now() - interval '{int(window_hours)} hours'
ORDER BY al.created_at DESC
"""


SLUG_IMMUTABLE_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION prevent_organization_slug_change()
RETURNS trigger
LANGUAGE plpgsql
AS $$
BEGIN
    IF NEW.slug IS DISTINCT FROM OLD.slug THEN
        RAISE EXCEPTION 'organization slug is immutable'
            USING ERRCODE = 'check_violation';
    END IF;
    RETURN NEW;
END;
$$
"""

SLUG_IMMUTABLE_TRIGGER_SQL = """
CREATE TRIGGER trg_organizations_slug_immutable
BEFORE UPDATE OF slug ON organizations
FOR EACH ROW EXECUTE FUNCTION prevent_organization_slug_change()
"""

# Only platform super admins may move an organization's tier or app quota.
# Sessions with no acting user (migrations, the service owner connection) are
# not checked; the UPDATE policy already rejects app-role sessions without one.
QUOTA_GUARD_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION prevent_organization_quota_change()
RETURNS trigger
LANGUAGE plpgsql
AS $$
DECLARE
    v_actor text := current_app_user_id();
BEGIN
    IF (NEW.tier IS DISTINCT FROM OLD.tier OR NEW.max_apps IS DISTINCT FROM OLD.max_apps)
       AND v_actor IS NOT NULL
       AND NOT is_platform_super_admin(v_actor) THEN
        RAISE EXCEPTION 'only platform super admins may change tier or max_apps'
            USING ERRCODE = 'insufficient_privilege';
    END IF;
    RETURN NEW;
END;
$$
"""

QUOTA_GUARD_TRIGGER_SQL = """
CREATE TRIGGER trg_organizations_quota_guard
BEFORE UPDATE OF tier, max_apps ON organizations
FOR EACH ROW EXECUTE FUNCTION prevent_organization_quota_change()
"""


def create_app_role_sql(role_name: str) -> str:
    # Policies target this NOLOGIN role; login roles are granted membership out of band.
    return f"""
DO $$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{role_name}') THEN
        CREATE ROLE "{role_name}" NOLOGIN;
    END IF;
END
$$
"""
