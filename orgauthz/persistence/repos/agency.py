from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import AgencyClient


async def get_grant(session: AsyncSession, grant_id: str) -> AgencyClient | None:
    result = await session.execute(
        select(AgencyClient).where(AgencyClient.id == grant_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_grant_for_pair(
    session: AsyncSession, *, agency_org_id: str, client_org_id: str
) -> AgencyClient | None:
    result = await session.execute(
        select(AgencyClient).where(
            AgencyClient.agency_org_id == agency_org_id,
            AgencyClient.client_org_id == client_org_id,
        )
    )
    return result.scalar_one_or_none()


async def has_active_grant(session: AsyncSession, *, agency_org_id: str, client_org_id: str) -> bool:
    # Column select, not an entity load, so a toggled grant is seen on the next call.
    result = await session.execute(
        select(AgencyClient.id)
        .where(
            AgencyClient.agency_org_id == agency_org_id,
            AgencyClient.client_org_id == client_org_id,
            AgencyClient.is_active.is_(True),
        )
        .limit(1)
    )
    return result.first() is not None


async def list_active_client_ids(session: AsyncSession, *, agency_org_id: str) -> list[str]:
    result = await session.execute(
        select(AgencyClient.client_org_id).where(
            AgencyClient.agency_org_id == agency_org_id,
            AgencyClient.is_active.is_(True),
        )
    )
    return [row[0] for row in result]


async def list_grants(
    session: AsyncSession,
    *,
    agency_org_id: str | None = None,
    client_org_id: str | None = None,
    include_inactive: bool = False,
) -> list[AgencyClient]:
    stmt = select(AgencyClient)
    if agency_org_id is not None:
        stmt = stmt.where(AgencyClient.agency_org_id == agency_org_id)
    if client_org_id is not None:
        stmt = stmt.where(AgencyClient.client_org_id == client_org_id)
    if not include_inactive:
        stmt = stmt.where(AgencyClient.is_active.is_(True))
    result = await session.execute(stmt.order_by(AgencyClient.created_at.asc(), AgencyClient.id.asc()))
    return list(result.scalars().all())
