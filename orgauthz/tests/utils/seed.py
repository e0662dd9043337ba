from __future__ import annotations

from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.domain.models import AgencyClient, Organization, User, UserRole
from orgauthz.domain.roles import Role


async def seed_organization(
    session: AsyncSession,
    *,
    slug: str,
    name: str | None = None,
    tier: str = "standard",
    max_apps: int = 25,
    is_active: bool = True,
) -> Organization:
    # Insert organizations directly so tests do not depend on the admin services.
    organization = Organization(
        id=f"org-{slug}",
        name=name or slug.replace("-", " ").title(),
        slug=slug,
        tier=tier,
        max_apps=max_apps,
        is_active=is_active,
        settings={},
    )
    session.add(organization)
    await session.commit()
    return organization


async def seed_user(
    session: AsyncSession,
    *,
    user_id: str | None = None,
    email: str | None = None,
    role: Role | str | None = None,
    organization_id: str | None = None,
) -> str:
    # Create an identity and, when a role is given, its single role row.
    user_id = user_id or f"user-{uuid4().hex[:8]}"
    session.add(User(id=user_id, email=email))
    await session.flush()
    if role is not None:
        value = role.value if isinstance(role, Role) else role
        session.add(UserRole(user_id=user_id, organization_id=organization_id, role=value))
    await session.commit()
    return user_id


async def seed_grant(
    session: AsyncSession,
    *,
    agency_org_id: str,
    client_org_id: str,
    is_active: bool = True,
) -> AgencyClient:
    grant = AgencyClient(
        id=uuid4().hex,
        agency_org_id=agency_org_id,
        client_org_id=client_org_id,
        is_active=is_active,
    )
    session.add(grant)
    await session.commit()
    return grant
