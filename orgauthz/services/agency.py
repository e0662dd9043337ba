"""Agency-client grants.

A grant lets org-admins of the agency organization act on the client
organization. ``is_active`` is the only revocation path; rows are never
deleted so the grant history stays reviewable.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.config import get_settings
from orgauthz.core.errors import (
    AgencySelfGrantError,
    AuthorizationDeniedError,
    ConstraintViolationError,
    NotFoundError,
)
from orgauthz.domain.models import AgencyClient
from orgauthz.persistence.db import commit_or_raise
from orgauthz.persistence.repos import agency as agency_repo
from orgauthz.persistence.repos import organizations as organizations_repo
from orgauthz.persistence.rls import GRANT_POLICY_AGENCY_ADMIN, GRANT_POLICY_SUPER_ADMIN
from orgauthz.services.access import is_org_admin_of, is_platform_super_admin, require_organization_access
from orgauthz.services.audit import AuditContext, record_admin_event


logger = logging.getLogger(__name__)


async def can_manage_grants(session: AsyncSession, *, actor_user_id: str, agency_org_id: str) -> bool:
    if await is_platform_super_admin(session, actor_user_id):
        return True
    policy = get_settings().agency_grant_admin_policy
    if policy == GRANT_POLICY_AGENCY_ADMIN:
        return await is_org_admin_of(session, agency_org_id, actor_user_id)
    if policy != GRANT_POLICY_SUPER_ADMIN:
        logger.warning("agency_grant_policy_unknown policy=%s", policy)
    return False


async def create_agency_grant(
    session: AsyncSession,
    *,
    actor_user_id: str,
    agency_org_id: str,
    client_org_id: str,
    audit: AuditContext | None = None,
) -> AgencyClient:
    if agency_org_id == client_org_id:
        raise AgencySelfGrantError("An organization cannot be its own agency")
    if not await can_manage_grants(session, actor_user_id=actor_user_id, agency_org_id=agency_org_id):
        raise AuthorizationDeniedError("Actor may not manage agency grants")
    for organization_id in (agency_org_id, client_org_id):
        if await organizations_repo.get_organization(session, organization_id) is None:
            raise NotFoundError("Organization not found")
    if (
        await agency_repo.get_grant_for_pair(
            session, agency_org_id=agency_org_id, client_org_id=client_org_id
        )
        is not None
    ):
        raise ConstraintViolationError("Agency grant already exists for this pair")

    grant = AgencyClient(
        id=uuid4().hex,
        agency_org_id=agency_org_id,
        client_org_id=client_org_id,
        is_active=True,
    )
    session.add(grant)
    await commit_or_raise(session, conflict_message="Agency grant already exists for this pair")
    logger.info("agency_grant_created id=%s agency=%s client=%s", grant.id, agency_org_id, client_org_id)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=client_org_id,
        action="agency_grant_created",
        resource_type="agency_client",
        resource_id=grant.id,
        details={"agency_org_id": agency_org_id, "client_org_id": client_org_id},
    )
    return grant


async def set_agency_grant_active(
    session: AsyncSession,
    *,
    actor_user_id: str,
    grant_id: str,
    is_active: bool,
    audit: AuditContext | None = None,
) -> AgencyClient:
    """Toggle a grant; access checks see the new state on their next evaluation."""
    grant = await agency_repo.get_grant(session, grant_id)
    if grant is None:
        raise NotFoundError("Agency grant not found")
    if not await can_manage_grants(
        session, actor_user_id=actor_user_id, agency_org_id=grant.agency_org_id
    ):
        raise AuthorizationDeniedError("Actor may not manage agency grants")
    if grant.is_active == is_active:
        return grant
    grant.is_active = is_active
    await commit_or_raise(session, conflict_message="Agency grant update rejected by constraint")
    logger.info("agency_grant_toggled id=%s is_active=%s", grant.id, is_active)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=grant.client_org_id,
        action="agency_grant_activated" if is_active else "agency_grant_deactivated",
        resource_type="agency_client",
        resource_id=grant.id,
        details={"agency_org_id": grant.agency_org_id, "client_org_id": grant.client_org_id},
    )
    return grant


async def list_clients(
    session: AsyncSession,
    *,
    actor_user_id: str,
    agency_org_id: str,
    include_inactive: bool = False,
) -> list[AgencyClient]:
    await require_organization_access(session, agency_org_id, actor_user_id)
    return await agency_repo.list_grants(
        session, agency_org_id=agency_org_id, include_inactive=include_inactive
    )


async def list_agencies(
    session: AsyncSession,
    *,
    actor_user_id: str,
    client_org_id: str,
    include_inactive: bool = False,
) -> list[AgencyClient]:
    await require_organization_access(session, client_org_id, actor_user_id)
    return await agency_repo.list_grants(
        session, client_org_id=client_org_id, include_inactive=include_inactive
    )
