from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import AuditLog, Organization


async def list_audit_logs(
    session: AsyncSession,
    *,
    viewer_user_id: str,
    admin_organization_ids: frozenset[str] | None,
    organization_id: str | None = None,
    action: str | None = None,
    status: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    """List entries visible to a viewer.

    ``admin_organization_ids`` is the set of organizations the viewer administers
    (``None`` for platform scope). The viewer always sees their own entries.
    """
    stmt = select(AuditLog)
    if admin_organization_ids is not None:
        visibility = AuditLog.user_id == viewer_user_id
        if admin_organization_ids:
            visibility = or_(visibility, AuditLog.organization_id.in_(sorted(admin_organization_ids)))
        stmt = stmt.where(visibility)
    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if status:
        stmt = stmt.where(AuditLog.status == status)
    if created_from:
        stmt = stmt.where(AuditLog.created_at >= created_from)
    if created_to:
        stmt = stmt.where(AuditLog.created_at <= created_to)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_recent_audit_logs(
    session: AsyncSession,
    *,
    since: datetime,
    limit: int = 200,
) -> list[tuple[AuditLog, str | None]]:
    # Same projection as the audit_logs_recent view, usable on any dialect.
    result = await session.execute(
        select(AuditLog, Organization.name)
        .outerjoin(Organization, Organization.id == AuditLog.organization_id)
        .where(AuditLog.created_at > since)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]
