from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import Organization, User, UserRole
from orgauthz.persistence.guards import organization_predicate


async def get_role_row(session: AsyncSession, user_id: str) -> UserRole | None:
    # populate_existing so a long-lived session never answers from a stale identity map.
    result = await session.execute(
        select(UserRole).where(UserRole.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_role_with_organization(
    session: AsyncSession, user_id: str
) -> tuple[UserRole, Organization | None] | None:
    result = await session.execute(
        select(UserRole, Organization)
        .outerjoin(Organization, Organization.id == UserRole.organization_id)
        .where(UserRole.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def get_role_scope(session: AsyncSession, user_id: str) -> tuple[str | None, str] | None:
    """Return ``(organization_id, role)`` read straight from the table."""
    result = await session.execute(
        select(UserRole.organization_id, UserRole.role).where(UserRole.user_id == user_id)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def list_organization_members(session: AsyncSession, *, organization_id: str) -> list[UserRole]:
    result = await session.execute(
        select(UserRole)
        .where(organization_predicate(UserRole, organization_id))
        .order_by(UserRole.created_at.asc(), UserRole.user_id.asc())
    )
    return list(result.scalars().all())


async def delete_role_row(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(delete(UserRole).where(UserRole.user_id == user_id))
    return result.rowcount or 0


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()
