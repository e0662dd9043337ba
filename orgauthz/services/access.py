"""Access-check predicates with the acting user passed explicitly.

These mirror the security-definer SQL functions the RLS policies call
(``is_platform_super_admin``, ``can_access_organization``, ...). Every check
reads the role and grant tables directly; there is no cache between a
predicate and the grant table, so deactivating a grant takes effect on the
next evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.errors import NotFoundError, UnknownRoleError
from orgauthz.domain.models import Organization
from orgauthz.domain.roles import Role
from orgauthz.persistence.repos import agency as agency_repo
from orgauthz.persistence.repos import organizations as organizations_repo
from orgauthz.persistence.repos import roles as roles_repo


logger = logging.getLogger(__name__)

ACCESS_PLATFORM = "platform"
ACCESS_DIRECT = "direct"
ACCESS_AGENCY = "agency"


@dataclass(frozen=True)
class RoleScope:
    organization_id: str | None
    role: Role

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN and self.organization_id is None

    @property
    def is_org_admin(self) -> bool:
        return self.role.is_org_admin


@dataclass(frozen=True)
class AccessibleOrganization:
    organization: Organization
    access_type: str


async def load_role_scope(session: AsyncSession, user_id: str | None) -> RoleScope | None:
    if not user_id:
        return None
    row = await roles_repo.get_role_scope(session, user_id)
    if row is None:
        return None
    organization_id, raw_role = row
    try:
        role = Role.parse(raw_role)
    except UnknownRoleError:
        # Unknown values grant nothing; the CHECK constraint should make this unreachable.
        logger.warning("role_unrecognized user_id=%s role=%s", user_id, raw_role)
        return None
    return RoleScope(organization_id=organization_id, role=role)


async def is_platform_super_admin(session: AsyncSession, user_id: str | None) -> bool:
    scope = await load_role_scope(session, user_id)
    return scope is not None and scope.is_super_admin


async def is_org_admin_of(session: AsyncSession, organization_id: str, user_id: str | None) -> bool:
    """Super admin, or org-admin-or-higher directly inside ``organization_id``."""
    scope = await load_role_scope(session, user_id)
    if scope is None:
        return False
    if scope.is_super_admin:
        return True
    return scope.organization_id == organization_id and scope.is_org_admin


async def _agency_path(session: AsyncSession, scope: RoleScope, organization_id: str) -> bool:
    # Agency expansion is gated to org-admin-or-higher inside the agency organization.
    if scope.organization_id is None or not scope.is_org_admin:
        return False
    return await agency_repo.has_active_grant(
        session, agency_org_id=scope.organization_id, client_org_id=organization_id
    )


async def can_access_organization(
    session: AsyncSession, organization_id: str, user_id: str | None
) -> bool:
    """Super admin OR direct membership OR org-admin of an agency with an active grant."""
    scope = await load_role_scope(session, user_id)
    if scope is None:
        return False
    if scope.is_super_admin:
        return True
    if scope.organization_id == organization_id:
        return True
    return await _agency_path(session, scope, organization_id)


async def can_administer_organization(
    session: AsyncSession, organization_id: str, user_id: str | None
) -> bool:
    """Admin rights over ``organization_id``: super admin, direct org-admin, or agency org-admin."""
    scope = await load_role_scope(session, user_id)
    if scope is None:
        return False
    if scope.is_super_admin:
        return True
    if scope.organization_id == organization_id:
        return scope.is_org_admin
    return await _agency_path(session, scope, organization_id)


async def accessible_organization_ids(
    session: AsyncSession, user_id: str | None, *, admin_only: bool = False
) -> frozenset[str] | None:
    """Resolve the organization scope for query filters; ``None`` means every organization."""
    scope = await load_role_scope(session, user_id)
    if scope is None:
        return frozenset()
    if scope.is_super_admin:
        return None
    ids: set[str] = set()
    if scope.organization_id is not None and (scope.is_org_admin or not admin_only):
        ids.add(scope.organization_id)
    if scope.organization_id is not None and scope.is_org_admin:
        ids.update(await agency_repo.list_active_client_ids(session, agency_org_id=scope.organization_id))
    return frozenset(ids)


async def list_accessible_organizations(
    session: AsyncSession, user_id: str | None
) -> list[AccessibleOrganization]:
    scope = await load_role_scope(session, user_id)
    if scope is None:
        return []
    if scope.is_super_admin:
        organizations = await organizations_repo.list_organizations(session)
        return [AccessibleOrganization(org, ACCESS_PLATFORM) for org in organizations]
    access: dict[str, str] = {}
    if scope.is_org_admin and scope.organization_id is not None:
        for client_id in await agency_repo.list_active_client_ids(
            session, agency_org_id=scope.organization_id
        ):
            access[client_id] = ACCESS_AGENCY
    if scope.organization_id is not None:
        access[scope.organization_id] = ACCESS_DIRECT
    organizations = await organizations_repo.list_organizations(session, organization_ids=access)
    return [AccessibleOrganization(org, access[org.id]) for org in organizations]


async def require_organization_access(
    session: AsyncSession,
    organization_id: str,
    user_id: str | None,
    *,
    admin: bool = False,
) -> Organization:
    """Load an organization the user may see (or administer); denial looks like absence."""
    check = can_administer_organization if admin else can_access_organization
    allowed = await check(session, organization_id, user_id)
    organization = await organizations_repo.get_organization(session, organization_id) if allowed else None
    if organization is None:
        logger.debug(
            "organization_access_denied user_id=%s organization_id=%s admin=%s",
            user_id,
            organization_id,
            admin,
        )
        raise NotFoundError("Organization not found")
    return organization
