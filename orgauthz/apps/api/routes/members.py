from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_audit_context, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.domain.models import UserRole
from orgauthz.services import roles as roles_service
from orgauthz.services.audit import AuditContext


router = APIRouter(prefix="/organizations/{organization_id}/members", tags=["members"])


class MemberAddRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: str = "VIEWER"

    model_config = {"extra": "forbid"}


class MemberRoleRequest(BaseModel):
    role: str

    model_config = {"extra": "forbid"}


class MemberResponse(BaseModel):
    user_id: str
    organization_id: str | None
    role: str
    created_at: str | None
    updated_at: str | None


class MemberListResponse(BaseModel):
    items: list[MemberResponse]


def _member_payload(row: UserRole) -> MemberResponse:
    return MemberResponse(
        user_id=row.user_id,
        organization_id=row.organization_id,
        role=row.role,
        created_at=row.created_at.isoformat() if row.created_at else None,
        updated_at=row.updated_at.isoformat() if row.updated_at else None,
    )


@router.get("", response_model=SuccessEnvelope[MemberListResponse])
async def list_members(
    organization_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await roles_service.list_members(
        db, actor_user_id=actor.user_id, organization_id=organization_id
    )
    return success_response(request=request, data=MemberListResponse(items=[_member_payload(r) for r in rows]))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[MemberResponse])
async def add_member(
    organization_id: str,
    payload: MemberAddRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await roles_service.add_member_by_email(
        db,
        actor_user_id=actor.user_id,
        email=payload.email,
        organization_id=organization_id,
        role=payload.role,
        audit=audit,
    )
    return success_response(request=request, data=_member_payload(row))


@router.put("/{user_id}", response_model=SuccessEnvelope[MemberResponse])
async def set_member_role(
    organization_id: str,
    user_id: str,
    payload: MemberRoleRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await roles_service.assign_user_role(
        db,
        actor_user_id=actor.user_id,
        user_id=user_id,
        role=payload.role,
        organization_id=organization_id,
        audit=audit,
    )
    return success_response(request=request, data=_member_payload(row))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    audit: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await roles_service.revoke_user_role(
        db,
        actor_user_id=actor.user_id,
        user_id=user_id,
        organization_id=organization_id,
        audit=audit,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
