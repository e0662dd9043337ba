from __future__ import annotations

from collections import Counter

import pytest

from orgauthz.domain.roles import LEGACY_ROLE_ALIASES
from orgauthz.persistence import ddl, rls


class FakeBind:
    """Records executed SQL and answers ``pg_policies`` lookups from a dict."""

    def __init__(self, policies: dict[str, list[str]]) -> None:
        self.policies = policies
        self.statements: list[str] = []

    def execute(self, statement, params=None):
        sql = str(statement)
        self.statements.append(sql)
        if "FROM pg_policies" in sql:
            return [(name,) for name in sorted(self.policies.get(params["table"], []))]
        return []


@pytest.mark.parametrize("table", sorted(rls.POLICY_CATALOG))
def test_at_most_one_policy_per_command(table: str) -> None:
    counts = Counter(spec.command for spec in rls.POLICY_CATALOG[table])
    assert all(count == 1 for count in counts.values()), counts
    assert all(spec.table == table for spec in rls.POLICY_CATALOG[table])


def test_audit_log_is_read_only_for_the_app_role() -> None:
    assert rls.allowed_commands("audit_logs") == {"SELECT"}


def test_core_tables_are_covered() -> None:
    assert {"organizations", "user_roles", "agency_clients", "audit_logs"} <= set(rls.POLICY_CATALOG)
    assert "DELETE" not in rls.allowed_commands("organizations")


def test_policies_use_shared_predicates() -> None:
    org_select = next(s for s in rls.POLICY_CATALOG["organizations"] if s.command == "SELECT")
    assert org_select.using == "can_access_organization(id, current_app_user_id())"
    for specs in rls.POLICY_CATALOG.values():
        for spec in specs:
            body = f"{spec.using or ''} {spec.with_check or ''}"
            assert "agency_clients ac" not in body


@pytest.mark.parametrize(
    "kwargs",
    [
        {"command": "MERGE", "using": "true"},
        {"command": "INSERT", "using": "true"},
        {"command": "SELECT", "with_check": "true"},
        {"command": "DELETE", "with_check": "true"},
    ],
)
def test_policy_spec_rejects_malformed_clauses(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        rls.PolicySpec(name="p", table="t", **kwargs)


def test_create_sql_quotes_identifiers() -> None:
    spec = rls.PolicySpec("t_update", "t", "UPDATE", using="a", with_check="b")
    assert spec.create_sql("app_authenticated") == (
        'CREATE POLICY "t_update" ON "t"\nFOR UPDATE\nTO "app_authenticated"\nUSING (a)\nWITH CHECK (b)'
    )
    assert rls.quote_ident('we"ird') == '"we""ird"'


def test_drop_enumerates_live_names() -> None:
    bind = FakeBind({"organizations": ["organizations_select", "Users can view their organizations"]})
    dropped = rls.drop_all_policies(bind, "organizations")
    assert dropped == ["Users can view their organizations", "organizations_select"]
    drops = [sql for sql in bind.statements if sql.startswith("DROP POLICY")]
    assert drops == [
        'DROP POLICY "Users can view their organizations" ON "public"."organizations"',
        'DROP POLICY "organizations_select" ON "public"."organizations"',
    ]


def test_reset_replaces_with_catalog() -> None:
    bind = FakeBind({"audit_logs": ["legacy_audit_read"]})
    dropped = rls.reset_table_policies(bind, "audit_logs", "app_authenticated")
    assert dropped == ["legacy_audit_read"]
    creates = [sql for sql in bind.statements if sql.startswith("CREATE POLICY")]
    assert len(creates) == 1 and creates[0].startswith('CREATE POLICY "audit_logs_select"')
    assert 'ALTER TABLE "audit_logs" ENABLE ROW LEVEL SECURITY' in bind.statements


def test_verify_reports_missing_and_stale() -> None:
    bind = FakeBind(
        {
            "organizations": ["organizations_select", "organizations_select_old"],
            "audit_logs": ["audit_logs_select"],
        }
    )
    report = rls.verify_policy_set(bind, ["organizations", "audit_logs"])
    assert report["audit_logs"].ok
    drift = report["organizations"]
    assert not drift.ok
    assert drift.missing == ["organizations_insert", "organizations_update"]
    assert drift.stale == ["organizations_select_old"]


def test_permission_view_normalizes_legacy_spellings() -> None:
    sql = ddl.permission_view_sql()
    for alias, canonical in LEGACY_ROLE_ALIASES.items():
        assert f"WHEN '{alias}' THEN '{canonical}'" in sql
    assert "upper(btrim(ur.role))" in sql
    assert "LEFT JOIN organizations o" in sql


def test_recent_view_window_is_an_integer() -> None:
    assert "interval '24 hours'" in ddl.audit_recent_view_sql(24)
    assert "interval '6 hours'" in ddl.audit_recent_view_sql("6")  # type: ignore[arg-type]


def _agency_write_checks(catalog: dict[str, tuple[rls.PolicySpec, ...]]) -> set[str]:
    return {spec.with_check for spec in catalog["agency_clients"] if spec.command in {"INSERT", "UPDATE"}}


def test_agency_grant_writes_follow_admin_policy_setting() -> None:
    super_only = _agency_write_checks(rls.build_catalog(rls.GRANT_POLICY_SUPER_ADMIN))
    assert super_only == {"is_platform_super_admin(current_app_user_id())"}
    with_agency = _agency_write_checks(rls.build_catalog(rls.GRANT_POLICY_AGENCY_ADMIN))
    assert with_agency == {
        "is_platform_super_admin(current_app_user_id()) "
        "OR is_org_admin_of(agency_org_id, current_app_user_id())"
    }
    assert rls.expected_policy_names("agency_clients") == sorted(
        spec.name for spec in rls.build_catalog(rls.GRANT_POLICY_AGENCY_ADMIN)["agency_clients"]
    )


def test_audit_function_redacts_and_shares_key_list() -> None:
    redact = ddl.redact_details_function_sql()
    for key in ddl.SENSITIVE_DETAIL_KEYS:
        assert key in redact
    assert ddl.REDACTED_VALUE in redact
    assert "redact_audit_details(p_details)" in ddl.log_audit_event_sql()
    assert "redact_audit_details" not in ddl.log_audit_event_sql(redact=False)


def test_quota_guard_covers_tier_and_max_apps() -> None:
    assert "BEFORE UPDATE OF tier, max_apps ON organizations" in ddl.QUOTA_GUARD_TRIGGER_SQL
    assert "is_platform_super_admin(v_actor)" in ddl.QUOTA_GUARD_FUNCTION_SQL
    assert "insufficient_privilege" in ddl.QUOTA_GUARD_FUNCTION_SQL
