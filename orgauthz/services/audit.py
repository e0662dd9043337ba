from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re
from typing import Any
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request

from orgauthz.core.config import get_settings
from orgauthz.core.errors import AuditWriteError, ConstraintViolationError
from orgauthz.domain.models import AuditLog
from orgauthz.domain.roles import AuditStatus
from orgauthz.persistence.db import SessionLocal
from orgauthz.persistence.ddl import AUDIT_ACTION_PATTERN, REDACTED_VALUE, SENSITIVE_DETAIL_KEYS
from orgauthz.persistence.repos import audit as audit_repo
from orgauthz.services.access import load_role_scope


logger = logging.getLogger(__name__)

_ACTION_PATTERN = re.compile(AUDIT_ACTION_PATTERN)

_LOG_AUDIT_EVENT = text(
    "SELECT log_audit_event(:user_id, :organization_id, :user_email, :action, :resource_type, "
    ":resource_id, CAST(:details AS jsonb), :ip_address, :user_agent, :request_path, :status, :error_message)"
).bindparams(bindparam("details", type_=JSONB))


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in SENSITIVE_DETAIL_KEYS)


def sanitize_details(value: Any) -> Any:
    # Recursively scrub credential-like fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = REDACTED_VALUE
            else:
                sanitized[key] = sanitize_details(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_details(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    if request is None:
        return {"ip_address": None, "user_agent": None, "request_path": None}
    ip_address = request.client.host if request.client else None
    return {
        "ip_address": ip_address,
        "user_agent": request.headers.get("user-agent"),
        "request_path": request.url.path,
    }


def _validate(action: str, status: str) -> str:
    if not action or not _ACTION_PATTERN.match(action):
        raise ConstraintViolationError(f"Invalid audit action: {action!r}")
    try:
        return AuditStatus(status).value
    except ValueError as exc:
        raise ConstraintViolationError(f"Invalid audit status: {status!r}") from exc


async def log_audit_event(
    session: AsyncSession,
    *,
    user_id: str | None,
    organization_id: str | None,
    user_email: str | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_path: str | None = None,
    status: str = AuditStatus.SUCCESS.value,
    error_message: str | None = None,
    commit: bool = True,
) -> str:
    """Append one audit entry and return its id.

    Every call is a new event, even with identical arguments. On PostgreSQL
    the row is written by the ``log_audit_event()`` database function, the
    same path available to direct database clients; other backends insert
    through the ORM. Database failures raise ``AuditWriteError``; callers
    that must not be blocked by auditing use ``safe_log_audit_event`` instead.
    """
    fields: dict[str, Any] = {
        "user_id": user_id,
        "organization_id": organization_id,
        "user_email": user_email,
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "details": sanitize_details(details or {}),
        "ip_address": ip_address,
        "user_agent": user_agent,
        "request_path": request_path,
        "status": _validate(action, status),
        "error_message": error_message,
    }
    try:
        if uses_audit_function(session):
            entry_id = (await session.execute(_LOG_AUDIT_EVENT, fields)).scalar_one()
        else:
            entry_id = uuid4().hex
            session.add(AuditLog(id=entry_id, created_at=datetime.now(timezone.utc), **fields))
        if commit:
            await session.commit()
        else:
            await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise AuditWriteError(f"audit write failed for action={action}") from exc
    return entry_id


def uses_audit_function(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name == "postgresql"


async def safe_log_audit_event(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    **fields: Any,
) -> str | None:
    """Best-effort wrapper: log-and-continue so auditing never blocks the audited action."""
    factory = session_factory or SessionLocal
    try:
        async with factory() as audit_session:
            return await log_audit_event(audit_session, commit=True, **fields)
    except (AuditWriteError, ConstraintViolationError, SQLAlchemyError) as exc:
        logger.warning(
            "audit_event_write_failed action=%s user_id=%s organization_id=%s",
            fields.get("action"),
            fields.get("user_id"),
            fields.get("organization_id"),
            exc_info=exc,
        )
        return None


def audit_session_factory(session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    # Audit rows go through a separate session on the same engine so a failed
    # audit insert can never roll back the caller's transaction.
    return async_sessionmaker(session.bind, expire_on_commit=False)


async def list_recent_audit_events(
    session: AsyncSession,
    *,
    window_hours: int | None = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    hours = window_hours if window_hours is not None else get_settings().audit_recent_window_hours
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    rows = await audit_repo.list_recent_audit_logs(session, since=since, limit=limit)
    return [
        {
            "id": entry.id,
            "user_email": entry.user_email,
            "organization_name": organization_name,
            "action": entry.action,
            "resource_type": entry.resource_type,
            "status": entry.status,
            "ip_address": entry.ip_address,
            "created_at": entry.created_at,
        }
        for entry, organization_name in rows
    ]


@dataclass(frozen=True)
class AuditContext:
    """Who and where an administrative action came from, for the audit trail."""

    user_email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_path: str | None = None
    session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_request(cls, request: Request | None, *, user_email: str | None = None) -> "AuditContext":
        return cls(user_email=user_email, **get_request_context(request))


async def record_admin_event(
    session: AsyncSession,
    *,
    context: AuditContext | None,
    user_id: str | None,
    organization_id: str | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    status: str = AuditStatus.SUCCESS.value,
    error_message: str | None = None,
) -> str | None:
    ctx = context or AuditContext()
    return await safe_log_audit_event(
        session_factory=ctx.session_factory or audit_session_factory(session),
        user_id=user_id,
        organization_id=organization_id,
        user_email=ctx.user_email,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        request_path=ctx.request_path,
        status=status,
        error_message=error_message,
    )


async def list_visible_audit_logs(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str | None = None,
    action: str | None = None,
    status: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    # Same visibility as the audit_logs SELECT policy: own entries, directly
    # administered organizations, or everything for super admins.
    scope = await load_role_scope(session, actor_user_id)
    if scope is not None and scope.is_super_admin:
        admin_ids: frozenset[str] | None = None
    elif scope is not None and scope.is_org_admin and scope.organization_id is not None:
        admin_ids = frozenset({scope.organization_id})
    else:
        admin_ids = frozenset()
    return await audit_repo.list_audit_logs(
        session,
        viewer_user_id=actor_user_id,
        admin_organization_ids=admin_ids,
        organization_id=organization_id,
        action=action,
        status=status,
        created_from=created_from,
        created_to=created_to,
        offset=offset,
        limit=limit,
    )
