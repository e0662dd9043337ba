from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import Organization


async def get_organization(session: AsyncSession, organization_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_organization_by_slug(session: AsyncSession, slug: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def list_organizations(
    session: AsyncSession,
    *,
    organization_ids: Iterable[str] | None = None,
    include_inactive: bool = True,
) -> list[Organization]:
    # None means every organization (platform scope); an empty iterable means none.
    stmt = select(Organization)
    if organization_ids is not None:
        stmt = stmt.where(Organization.id.in_(sorted(set(organization_ids))))
    if not include_inactive:
        stmt = stmt.where(Organization.is_active.is_(True))
    result = await session.execute(stmt.order_by(Organization.name.asc(), Organization.id.asc()))
    return list(result.scalars().all())
