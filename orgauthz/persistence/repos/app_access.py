from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import OrgAppAccess
from orgauthz.persistence.guards import organization_predicate, organization_scope_predicate


async def list_app_access(
    session: AsyncSession,
    *,
    organization_ids: frozenset[str] | None,
    include_detached: bool = False,
) -> list[OrgAppAccess]:
    stmt = select(OrgAppAccess).where(organization_scope_predicate(OrgAppAccess, organization_ids))
    if not include_detached:
        stmt = stmt.where(OrgAppAccess.detached_at.is_(None))
    result = await session.execute(
        stmt.order_by(OrgAppAccess.organization_id.asc(), OrgAppAccess.attached_at.asc())
    )
    return list(result.scalars().all())


async def get_app_access(
    session: AsyncSession, *, organization_id: str, app_id: str
) -> OrgAppAccess | None:
    result = await session.execute(
        select(OrgAppAccess).where(
            organization_predicate(OrgAppAccess, organization_id),
            OrgAppAccess.app_id == app_id,
        )
    )
    return result.scalar_one_or_none()


async def count_attached_apps(session: AsyncSession, *, organization_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(OrgAppAccess)
        .where(
            organization_predicate(OrgAppAccess, organization_id),
            OrgAppAccess.detached_at.is_(None),
        )
    )
    return int(result.scalar() or 0)
