from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orgauthz.core.errors import AuditWriteError, ConstraintViolationError
from orgauthz.domain.models import AuditLog
from orgauthz.domain.roles import Role
from orgauthz.services import audit as audit_service
from orgauthz.tests.utils.seed import seed_organization, seed_user


def test_details_redact_credentials_recursively() -> None:
    payload = {
        "api_key": "k",
        "nested": {"Authorization": "Bearer abc", "items": [{"refresh_token": "t", "ok": 1}]},
        "password_hint": "x",
        "safe": "value",
    }
    sanitized = audit_service.sanitize_details(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["nested"]["Authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0] == {"refresh_token": "[REDACTED]", "ok": 1}
    assert sanitized["password_hint"] == "[REDACTED]"
    assert sanitized["safe"] == "value"
    assert payload["api_key"] == "k"


@pytest.mark.asyncio
async def test_each_call_appends_a_new_entry(db: AsyncSession) -> None:
    org = await seed_organization(db, slug="acme")
    user = await seed_user(db, role=Role.VIEWER, organization_id=org.id, email="v@example.com")
    fields = {
        "user_id": user,
        "organization_id": org.id,
        "user_email": "v@example.com",
        "action": "view_dashboard",
    }
    first = await audit_service.log_audit_event(db, **fields)
    second = await audit_service.log_audit_event(db, **fields)
    assert first != second
    count = await db.execute(select(func.count()).select_from(AuditLog).where(AuditLog.action == "view_dashboard"))
    assert count.scalar() == 2
    entry = (await db.execute(select(AuditLog).where(AuditLog.id == first))).scalar_one()
    assert entry.status == "success"
    assert entry.details == {}


@pytest.mark.asyncio
async def test_optional_fields_are_stored(db: AsyncSession) -> None:
    entry_id = await audit_service.log_audit_event(
        db,
        user_id=None,
        organization_id=None,
        user_email=None,
        action="login",
        resource_type="session",
        resource_id="s-1",
        details={"token": "secret", "method": "sso"},
        ip_address="203.0.113.9",
        user_agent="pytest",
        request_path="/v1/login",
        status="denied",
        error_message="mfa required",
    )
    entry = (await db.execute(select(AuditLog).where(AuditLog.id == entry_id))).scalar_one()
    assert entry.details == {"token": "[REDACTED]", "method": "sso"}
    assert (entry.status, entry.error_message, entry.ip_address) == ("denied", "mfa required", "203.0.113.9")


@pytest.mark.parametrize(("action", "status"), [("", "success"), ("Bad Action", "success"), ("login", "maybe")])
@pytest.mark.asyncio
async def test_invalid_action_or_status_rejected(db: AsyncSession, action: str, status: str) -> None:
    with pytest.raises(ConstraintViolationError):
        await audit_service.log_audit_event(
            db, user_id=None, organization_id=None, user_email=None, action=action, status=status
        )


@pytest.mark.asyncio
async def test_dangling_organization_raises(db: AsyncSession) -> None:
    with pytest.raises(AuditWriteError):
        await audit_service.log_audit_event(
            db, user_id=None, organization_id="org-missing", user_email=None, action="login"
        )


@pytest.mark.asyncio
async def test_safe_wrapper_logs_and_continues(
    session_factory: async_sessionmaker[AsyncSession], caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="orgauthz.services.audit")
    result = await audit_service.safe_log_audit_event(
        session_factory=session_factory,
        user_id=None,
        organization_id="org-missing",
        user_email=None,
        action="login",
    )
    assert result is None
    assert "audit_event_write_failed" in caplog.text


@pytest.mark.asyncio
async def test_safe_wrapper_survives_missing_table() -> None:
    # An engine whose schema was never created stands in for an unreachable audit store.
    engine = create_async_engine(
        "sqlite+aiosqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    try:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        result = await audit_service.safe_log_audit_event(
            session_factory=factory, user_id=None, organization_id=None, user_email=None, action="login"
        )
        assert result is None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_visibility_follows_role(db: AsyncSession) -> None:
    x = await seed_organization(db, slug="x")
    y = await seed_organization(db, slug="y")
    root = await seed_user(db, role=Role.SUPER_ADMIN)
    admin_x = await seed_user(db, role=Role.ORG_ADMIN, organization_id=x.id)
    viewer_x = await seed_user(db, role=Role.VIEWER, organization_id=x.id)
    viewer_y = await seed_user(db, role=Role.VIEWER, organization_id=y.id)
    for user_id, org_id in ((viewer_x, x.id), (viewer_y, y.id), (admin_x, x.id)):
        await audit_service.log_audit_event(
            db, user_id=user_id, organization_id=org_id, user_email=None, action="login"
        )

    async def visible(actor: str) -> set[str | None]:
        rows = await audit_service.list_visible_audit_logs(db, actor_user_id=actor)
        return {row.user_id for row in rows}

    assert await visible(viewer_x) == {viewer_x}
    assert await visible(admin_x) == {viewer_x, admin_x}
    assert await visible(root) == {viewer_x, viewer_y, admin_x}
    assert await visible("nobody") == set()


@pytest.mark.asyncio
async def test_recent_listing_joins_organization_name(db: AsyncSession) -> None:
    org = await seed_organization(db, slug="acme", name="Acme Inc")
    recent = await audit_service.log_audit_event(
        db, user_id=None, organization_id=org.id, user_email="a@example.com", action="login"
    )
    old = AuditLog(
        id="old",
        action="login",
        organization_id=org.id,
        status="success",
        details={},
        created_at=datetime.now(timezone.utc) - timedelta(hours=48),
    )
    db.add(old)
    await db.commit()
    rows = await audit_service.list_recent_audit_events(db, window_hours=24)
    assert [row["id"] for row in rows] == [recent]
    assert rows[0]["organization_name"] == "Acme Inc"


def test_request_context_without_request() -> None:
    assert audit_service.get_request_context(None) == {
        "ip_address": None,
        "user_agent": None,
        "request_path": None,
    }


class _PostgresSession:
    """Stands in for a PostgreSQL session; ORM inserts are not expected."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.committed = False

    def get_bind(self) -> SimpleNamespace:
        return SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))

    async def execute(self, statement, params=None):
        self.executed.append((str(statement), params or {}))
        return SimpleNamespace(scalar_one=lambda: "f" * 32)

    def add(self, _obj) -> None:
        raise AssertionError("audit rows must be written by log_audit_event()")

    async def commit(self) -> None:
        self.committed = True

    async def flush(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


@pytest.mark.asyncio
async def test_postgres_writes_go_through_the_insert_function() -> None:
    session = _PostgresSession()
    entry_id = await audit_service.log_audit_event(
        session,  # type: ignore[arg-type]
        user_id="u1",
        organization_id="o1",
        user_email=None,
        action="role_assigned",
        details={"token": "t", "role": "VIEWER"},
    )
    assert entry_id == "f" * 32
    assert session.committed
    [(sql, params)] = session.executed
    assert sql.startswith("SELECT log_audit_event(")
    assert params["details"] == {"token": "[REDACTED]", "role": "VIEWER"}
    assert params["status"] == "success"


@pytest.mark.asyncio
async def test_sqlite_sessions_use_orm_insert(db: AsyncSession) -> None:
    assert not audit_service.uses_audit_function(db)
