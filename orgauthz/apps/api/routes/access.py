from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.core.errors import NotFoundError
from orgauthz.services import access as access_service
from orgauthz.services.permissions import get_permission_cache, resolve_user_permissions


router = APIRouter(tags=["access"])


class PermissionsResponse(BaseModel):
    user_id: str
    organization_id: str | None
    role: str
    normalized_role: str
    org_name: str | None
    org_slug: str | None
    org_tier: str | None
    is_super_admin: bool
    is_org_admin: bool
    is_platform_role: bool


class OrganizationAccessResponse(BaseModel):
    organization_id: str
    can_access: bool
    can_administer: bool
    is_org_admin: bool


@router.get("/me/permissions", response_model=SuccessEnvelope[PermissionsResponse])
async def my_permissions(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    permissions = await resolve_user_permissions(db, actor.user_id, cache=get_permission_cache())
    if permissions is None:
        raise NotFoundError("No role assignment")
    return success_response(request=request, data=PermissionsResponse(**permissions.to_dict()))


@router.get(
    "/organizations/{organization_id}/access",
    response_model=SuccessEnvelope[OrganizationAccessResponse],
)
async def organization_access(
    organization_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Answers for any id; a false result says nothing about whether the organization exists.
    payload = OrganizationAccessResponse(
        organization_id=organization_id,
        can_access=await access_service.can_access_organization(db, organization_id, actor.user_id),
        can_administer=await access_service.can_administer_organization(
            db, organization_id, actor.user_id
        ),
        is_org_admin=await access_service.is_org_admin_of(db, organization_id, actor.user_id),
    )
    return success_response(request=request, data=payload)
