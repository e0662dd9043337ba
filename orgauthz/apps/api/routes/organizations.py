from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_audit_context, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.domain.models import Organization
from orgauthz.services import organizations as organizations_service
from orgauthz.services.access import list_accessible_organizations
from orgauthz.services.audit import AuditContext


router = APIRouter(prefix="/organizations", tags=["organizations"])


class OrganizationCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=100)
    tier: Literal["demo", "standard", "enterprise"] = "standard"
    max_apps: int | None = Field(default=None, ge=0)
    settings: dict[str, Any] | None = None

    model_config = {"extra": "forbid"}


class OrganizationPatchRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    # Accepted so a changed slug fails with a specific error instead of a schema error.
    slug: str | None = None
    tier: Literal["demo", "standard", "enterprise"] | None = None
    max_apps: int | None = Field(default=None, ge=0)
    settings: dict[str, Any] | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    tier: str
    is_active: bool
    max_apps: int
    settings: dict[str, Any]
    access_type: str | None = None
    created_at: str | None
    updated_at: str | None


class OrganizationListResponse(BaseModel):
    items: list[OrganizationResponse]


def _organization_payload(organization: Organization, *, access_type: str | None = None) -> OrganizationResponse:
    return OrganizationResponse(
        id=organization.id,
        name=organization.name,
        slug=organization.slug,
        tier=organization.tier,
        is_active=organization.is_active,
        max_apps=organization.max_apps,
        settings=organization.settings or {},
        access_type=access_type,
        created_at=organization.created_at.isoformat() if organization.created_at else None,
        updated_at=organization.updated_at.isoformat() if organization.updated_at else None,
    )


@router.get("", response_model=SuccessEnvelope[OrganizationListResponse])
async def list_organizations(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    accessible = await list_accessible_organizations(db, actor.user_id)
    items = [_organization_payload(item.organization, access_type=item.access_type) for item in accessible]
    return success_response(request=request, data=OrganizationListResponse(items=items))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[OrganizationResponse])
async def create_organization(
    payload: OrganizationCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    organization = await organizations_service.create_organization(
        db,
        actor_user_id=actor.user_id,
        name=payload.name,
        slug=payload.slug,
        tier=payload.tier,
        max_apps=payload.max_apps,
        settings=payload.settings,
        audit=audit,
    )
    return success_response(request=request, data=_organization_payload(organization))


@router.get("/{organization_id}", response_model=SuccessEnvelope[OrganizationResponse])
async def get_organization(
    organization_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    organization = await organizations_service.get_organization_for_user(
        db, actor_user_id=actor.user_id, organization_id=organization_id
    )
    return success_response(request=request, data=_organization_payload(organization))


@router.patch("/{organization_id}", response_model=SuccessEnvelope[OrganizationResponse])
async def patch_organization(
    organization_id: str,
    payload: OrganizationPatchRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True, exclude={"is_active"})
    organization = None
    if changes:
        organization = await organizations_service.update_organization(
            db,
            actor_user_id=actor.user_id,
            organization_id=organization_id,
            changes=changes,
            audit=audit,
        )
    if payload.is_active is not None:
        organization = await organizations_service.set_organization_active(
            db,
            actor_user_id=actor.user_id,
            organization_id=organization_id,
            is_active=payload.is_active,
            audit=audit,
        )
    if organization is None:
        organization = await organizations_service.get_organization_for_user(
            db, actor_user_id=actor.user_id, organization_id=organization_id
        )
    return success_response(request=request, data=_organization_payload(organization))
