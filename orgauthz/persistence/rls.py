"""Row-level security policy catalog.

Every RLS-protected table has exactly one policy per command it allows.
Commands missing from a table's entry are denied by default, which is how the
audit log stays append-only. Policy bodies compose the security-definer
predicates from ``orgauthz.persistence.ddl`` instead of re-deriving
membership inline.

Retiring policies always enumerates ``pg_policies`` and drops what it finds;
dropping by an assumed name silently no-ops when the name is wrong and leaves
the stale policy in force.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable

from sqlalchemy import text

from orgauthz.core.config import get_settings


logger = logging.getLogger(__name__)

COMMANDS = ("SELECT", "INSERT", "UPDATE", "DELETE")

_ME = "current_app_user_id()"

GRANT_POLICY_SUPER_ADMIN = "super_admin"
GRANT_POLICY_AGENCY_ADMIN = "agency_admin"


@dataclass(frozen=True)
class PolicySpec:
    name: str
    table: str
    command: str
    using: str | None = None
    with_check: str | None = None

    def __post_init__(self) -> None:
        if self.command not in COMMANDS:
            raise ValueError(f"Unsupported policy command: {self.command}")
        if self.command == "INSERT" and self.using is not None:
            raise ValueError("INSERT policies only accept WITH CHECK")
        if self.command in {"SELECT", "DELETE"} and self.with_check is not None:
            raise ValueError(f"{self.command} policies only accept USING")

    def create_sql(self, role: str) -> str:
        parts = [
            f"CREATE POLICY {quote_ident(self.name)} ON {quote_ident(self.table)}",
            f"FOR {self.command}",
            f"TO {quote_ident(role)}",
        ]
        if self.using is not None:
            parts.append(f"USING ({self.using})")
        if self.with_check is not None:
            parts.append(f"WITH CHECK ({self.with_check})")
        return "\n".join(parts)


@dataclass
class PolicyDrift:
    table: str
    missing: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.stale


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _insert_update_pair(table: str, predicate: str) -> tuple[PolicySpec, PolicySpec]:
    return (
        PolicySpec(f"{table}_insert", table, "INSERT", with_check=predicate),
        PolicySpec(f"{table}_update", table, "UPDATE", using=predicate, with_check=predicate),
    )


def build_catalog(agency_grant_admin_policy: str) -> dict[str, tuple[PolicySpec, ...]]:
    """Policy set for every RLS table; agency grant writes follow ``agency_grant_admin_policy``."""
    org_admin_write = (
        f"is_platform_super_admin({_ME}) OR ("
        "organization_id IS NOT NULL AND role <> 'SUPER_ADMIN' "
        f"AND is_org_admin_of(organization_id, {_ME}))"
    )
    agency_grant_write = f"is_platform_super_admin({_ME})"
    if agency_grant_admin_policy == GRANT_POLICY_AGENCY_ADMIN:
        agency_grant_write += f" OR is_org_admin_of(agency_org_id, {_ME})"
    chat_owner = f"user_id = {_ME} AND can_access_organization(organization_id, {_ME})"
    return {
        "organizations": (
            PolicySpec(
                "organizations_select", "organizations", "SELECT",
                using=f"can_access_organization(id, {_ME})",
            ),
            PolicySpec(
                "organizations_insert", "organizations", "INSERT",
                with_check=f"is_platform_super_admin({_ME})",
            ),
            PolicySpec(
                "organizations_update", "organizations", "UPDATE",
                using=f"is_org_admin_of(id, {_ME})",
                with_check=f"is_org_admin_of(id, {_ME})",
            ),
        ),
        "user_roles": (
            PolicySpec(
                "user_roles_select", "user_roles", "SELECT",
                using=(
                    f"user_id = {_ME} OR is_platform_super_admin({_ME}) "
                    f"OR (organization_id IS NOT NULL AND is_org_admin_of(organization_id, {_ME}))"
                ),
            ),
            *_insert_update_pair("user_roles", org_admin_write),
            PolicySpec("user_roles_delete", "user_roles", "DELETE", using=org_admin_write),
        ),
        "agency_clients": (
            PolicySpec(
                "agency_clients_select", "agency_clients", "SELECT",
                using=(
                    f"can_access_organization(agency_org_id, {_ME}) "
                    f"OR can_access_organization(client_org_id, {_ME})"
                ),
            ),
            *_insert_update_pair("agency_clients", agency_grant_write),
        ),
        "audit_logs": (
            # Append-only: no INSERT/UPDATE/DELETE policy; writes go through log_audit_event().
            PolicySpec(
                "audit_logs_select", "audit_logs", "SELECT",
                using=(
                    f"user_id = {_ME} "
                    f"OR (organization_id IS NOT NULL AND is_org_admin_of(organization_id, {_ME})) "
                    f"OR is_platform_super_admin({_ME})"
                ),
            ),
        ),
        "org_app_access": (
            PolicySpec(
                "org_app_access_select", "org_app_access", "SELECT",
                using=f"can_access_organization(organization_id, {_ME})",
            ),
            *_insert_update_pair(
                "org_app_access", f"can_administer_organization(organization_id, {_ME})"
            ),
        ),
        "review_cache": (
            PolicySpec(
                "review_cache_select", "review_cache", "SELECT",
                using=f"can_access_organization(organization_id, {_ME})",
            ),
        ),
        "chat_sessions": (
            PolicySpec("chat_sessions_select", "chat_sessions", "SELECT", using=chat_owner),
            *_insert_update_pair("chat_sessions", chat_owner),
            PolicySpec("chat_sessions_delete", "chat_sessions", "DELETE", using=f"user_id = {_ME}"),
        ),
    }


POLICY_CATALOG: dict[str, tuple[PolicySpec, ...]] = build_catalog(get_settings().agency_grant_admin_policy)


def expected_policy_names(table: str) -> list[str]:
    return sorted(spec.name for spec in POLICY_CATALOG[table])


def allowed_commands(table: str) -> set[str]:
    return {spec.command for spec in POLICY_CATALOG[table]}


_LIST_POLICIES = text(
    "SELECT policyname FROM pg_policies "
    "WHERE schemaname = :schema AND tablename = :table ORDER BY policyname"
)


def list_policy_names(bind: Any, table: str, *, schema: str = "public") -> list[str]:
    """Read the live policy names for ``table`` from the system catalog.

    ``bind`` is anything with a synchronous ``execute`` (Connection or Session);
    async callers go through ``run_sync``.
    """
    result = bind.execute(_LIST_POLICIES, {"schema": schema, "table": table})
    return [row[0] for row in result]


def drop_all_policies(bind: Any, table: str, *, schema: str = "public") -> list[str]:
    # Enumerate-then-drop: whatever exists is removed, whatever its name.
    dropped = list_policy_names(bind, table, schema=schema)
    for name in dropped:
        bind.execute(text(f"DROP POLICY {quote_ident(name)} ON {quote_ident(schema)}.{quote_ident(table)}"))
    if dropped:
        logger.info("rls_policies_dropped table=%s count=%d names=%s", table, len(dropped), dropped)
    return dropped


def enable_rls(bind: Any, table: str) -> None:
    bind.execute(text(f"ALTER TABLE {quote_ident(table)} ENABLE ROW LEVEL SECURITY"))


def install_policies(bind: Any, table: str, role: str) -> list[str]:
    created = []
    for spec in POLICY_CATALOG[table]:
        bind.execute(text(spec.create_sql(role)))
        created.append(spec.name)
    return created


def reset_table_policies(bind: Any, table: str, role: str) -> list[str]:
    """Replace every policy on ``table`` with the catalog set; returns the dropped names."""
    dropped = drop_all_policies(bind, table)
    enable_rls(bind, table)
    install_policies(bind, table, role)
    return dropped


def grant_app_role(bind: Any, tables: Iterable[str], role: str) -> None:
    # Table privileges stay broad; the policies above decide row visibility.
    for table in tables:
        bind.execute(
            text(f"GRANT SELECT, INSERT, UPDATE, DELETE ON {quote_ident(table)} TO {quote_ident(role)}")
        )


def verify_policy_set(bind: Any, tables: Iterable[str] | None = None) -> dict[str, PolicyDrift]:
    report: dict[str, PolicyDrift] = {}
    for table in tables or POLICY_CATALOG:
        expected = set(expected_policy_names(table))
        actual = set(list_policy_names(bind, table))
        report[table] = PolicyDrift(
            table=table,
            missing=sorted(expected - actual),
            stale=sorted(actual - expected),
        )
    return report
