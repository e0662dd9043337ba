from __future__ import annotations

from contextlib import asynccontextmanager
import re

import pytest

from orgauthz.persistence import rls
from scripts import verify_policies


_CREATE = re.compile(r'^CREATE POLICY "(?P<name>[^"]+)" ON "(?P<table>[^"]+)"')
_DROP = re.compile(r'^DROP POLICY "(?P<name>[^"]+)" ON "public"\."(?P<table>[^"]+)"')


class CatalogBind:
    """In-memory ``pg_policies``: CREATE/DROP POLICY statements edit it."""

    def __init__(self, policies: dict[str, list[str]], *, apply_creates: bool = True) -> None:
        self.policies = {table: list(names) for table, names in policies.items()}
        self.apply_creates = apply_creates

    def execute(self, statement, params=None):
        sql = str(statement)
        if "FROM pg_policies" in sql:
            return [(name,) for name in sorted(self.policies.get(params["table"], []))]
        dropped = _DROP.match(sql)
        if dropped:
            self.policies[dropped["table"]].remove(dropped["name"])
        created = _CREATE.match(sql)
        if created and self.apply_creates:
            self.policies.setdefault(created["table"], []).append(created["name"])
        return []


class _Conn:
    def __init__(self, bind: CatalogBind) -> None:
        self.bind = bind

    async def run_sync(self, fn, *args):
        return fn(self.bind, *args)


class _Engine:
    def __init__(self, bind: CatalogBind) -> None:
        self.bind = bind

    @asynccontextmanager
    async def connect(self):
        yield _Conn(self.bind)

    begin = connect


def _healthy() -> dict[str, list[str]]:
    return {table: rls.expected_policy_names(table) for table in rls.POLICY_CATALOG}


@pytest.mark.asyncio
async def test_fix_reinstalls_drifted_tables_and_rechecks(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    policies = _healthy()
    policies["organizations"] = ["Users can view their organizations", "organizations_select"]
    bind = CatalogBind(policies)
    monkeypatch.setattr(verify_policies, "engine", _Engine(bind))

    assert await verify_policies._verify(None, fix=False, reset=False) == 1
    assert await verify_policies._verify(None, fix=True, reset=False) == 0

    output = capsys.readouterr().out
    assert "organizations: reset dropped=['Users can view their organizations', 'organizations_select']" in output
    assert output.rstrip().endswith("organizations: ok missing=[] stale=[]")
    assert sorted(bind.policies["organizations"]) == rls.expected_policy_names("organizations")


@pytest.mark.asyncio
async def test_fix_fails_when_reinstall_does_not_take(monkeypatch: pytest.MonkeyPatch) -> None:
    policies = _healthy()
    policies["audit_logs"] = ["legacy_audit_insert"]
    monkeypatch.setattr(verify_policies, "engine", _Engine(CatalogBind(policies, apply_creates=False)))

    assert await verify_policies._verify(["audit_logs"], fix=True, reset=False) == 1


@pytest.mark.asyncio
async def test_reset_reinstalls_matching_tables(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(verify_policies, "engine", _Engine(CatalogBind(_healthy())))

    assert await verify_policies._verify(["agency_clients"], fix=False, reset=True) == 0
    assert "agency_clients: reset dropped=['agency_clients_insert', 'agency_clients_select', 'agency_clients_update']" in (
        capsys.readouterr().out
    )
