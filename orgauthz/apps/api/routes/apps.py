from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_audit_context, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.domain.models import OrgAppAccess
from orgauthz.services import app_access as app_access_service
from orgauthz.services.audit import AuditContext


router = APIRouter(prefix="/organizations/{organization_id}/apps", tags=["apps"])


class AppAttachRequest(BaseModel):
    app_id: str = Field(min_length=1, max_length=200)

    model_config = {"extra": "forbid"}


class AppAccessResponse(BaseModel):
    id: str
    organization_id: str
    app_id: str
    attached_by: str | None
    attached_at: str | None
    detached_at: str | None


class AppAccessListResponse(BaseModel):
    items: list[AppAccessResponse]


def _app_payload(row: OrgAppAccess) -> AppAccessResponse:
    return AppAccessResponse(
        id=row.id,
        organization_id=row.organization_id,
        app_id=row.app_id,
        attached_by=row.attached_by,
        attached_at=row.attached_at.isoformat() if row.attached_at else None,
        detached_at=row.detached_at.isoformat() if row.detached_at else None,
    )


@router.get("", response_model=SuccessEnvelope[AppAccessListResponse])
async def list_apps(
    organization_id: str,
    request: Request,
    include_detached: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await app_access_service.list_accessible_apps(
        db,
        actor_user_id=actor.user_id,
        organization_id=organization_id,
        include_detached=include_detached,
    )
    return success_response(request=request, data=AppAccessListResponse(items=[_app_payload(r) for r in rows]))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[AppAccessResponse])
async def attach_app(
    organization_id: str,
    payload: AppAttachRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await app_access_service.attach_app(
        db,
        actor_user_id=actor.user_id,
        organization_id=organization_id,
        app_id=payload.app_id,
        audit=audit,
    )
    return success_response(request=request, data=_app_payload(row))


@router.delete("/{app_id}", response_model=SuccessEnvelope[AppAccessResponse])
async def detach_app(
    organization_id: str,
    app_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await app_access_service.detach_app(
        db,
        actor_user_id=actor.user_id,
        organization_id=organization_id,
        app_id=app_id,
        audit=audit,
    )
    return success_response(request=request, data=_app_payload(row))
