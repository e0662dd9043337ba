from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_audit_context, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.domain.models import AgencyClient
from orgauthz.services import agency as agency_service
from orgauthz.services.audit import AuditContext


router = APIRouter(tags=["agency"])


class AgencyGrantCreateRequest(BaseModel):
    agency_org_id: str = Field(min_length=1)
    client_org_id: str = Field(min_length=1)

    model_config = {"extra": "forbid"}


class AgencyGrantPatchRequest(BaseModel):
    is_active: bool

    model_config = {"extra": "forbid"}


class AgencyGrantResponse(BaseModel):
    id: str
    agency_org_id: str
    client_org_id: str
    is_active: bool
    created_at: str | None
    updated_at: str | None


class AgencyGrantListResponse(BaseModel):
    items: list[AgencyGrantResponse]


def _grant_payload(grant: AgencyClient) -> AgencyGrantResponse:
    return AgencyGrantResponse(
        id=grant.id,
        agency_org_id=grant.agency_org_id,
        client_org_id=grant.client_org_id,
        is_active=grant.is_active,
        created_at=grant.created_at.isoformat() if grant.created_at else None,
        updated_at=grant.updated_at.isoformat() if grant.updated_at else None,
    )


@router.post(
    "/agency-grants",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[AgencyGrantResponse],
)
async def create_grant(
    payload: AgencyGrantCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    grant = await agency_service.create_agency_grant(
        db,
        actor_user_id=actor.user_id,
        agency_org_id=payload.agency_org_id,
        client_org_id=payload.client_org_id,
        audit=audit,
    )
    return success_response(request=request, data=_grant_payload(grant))


@router.patch("/agency-grants/{grant_id}", response_model=SuccessEnvelope[AgencyGrantResponse])
async def patch_grant(
    grant_id: str,
    payload: AgencyGrantPatchRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    grant = await agency_service.set_agency_grant_active(
        db,
        actor_user_id=actor.user_id,
        grant_id=grant_id,
        is_active=payload.is_active,
        audit=audit,
    )
    return success_response(request=request, data=_grant_payload(grant))


@router.get(
    "/organizations/{organization_id}/clients",
    response_model=SuccessEnvelope[AgencyGrantListResponse],
)
async def list_clients(
    organization_id: str,
    request: Request,
    include_inactive: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    grants = await agency_service.list_clients(
        db,
        actor_user_id=actor.user_id,
        agency_org_id=organization_id,
        include_inactive=include_inactive,
    )
    return success_response(
        request=request, data=AgencyGrantListResponse(items=[_grant_payload(g) for g in grants])
    )


@router.get(
    "/organizations/{organization_id}/agencies",
    response_model=SuccessEnvelope[AgencyGrantListResponse],
)
async def list_agencies(
    organization_id: str,
    request: Request,
    include_inactive: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    grants = await agency_service.list_agencies(
        db,
        actor_user_id=actor.user_id,
        client_org_id=organization_id,
        include_inactive=include_inactive,
    )
    return success_response(
        request=request, data=AgencyGrantListResponse(items=[_grant_payload(g) for g in grants])
    )
