from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.apps.api.deps import Actor, get_current_actor, get_db
from orgauthz.apps.api.response import SuccessEnvelope, success_response
from orgauthz.core.errors import NotFoundError
from orgauthz.domain.models import AuditLog
from orgauthz.services import audit as audit_service
from orgauthz.services.access import is_platform_super_admin


router = APIRouter(prefix="/audit", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: str
    user_id: str | None
    organization_id: str | None
    user_email: str | None
    action: str
    resource_type: str | None
    resource_id: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    request_path: str | None
    status: str
    error_message: str | None
    created_at: str


class AuditLogsPage(BaseModel):
    items: list[AuditLogResponse]
    next_offset: int | None


class RecentAuditLogResponse(BaseModel):
    id: str
    user_email: str | None
    organization_name: str | None
    action: str
    resource_type: str | None
    status: str
    ip_address: str | None
    created_at: str


class RecentAuditLogList(BaseModel):
    items: list[RecentAuditLogResponse]


def _to_response(entry: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
        user_id=entry.user_id,
        organization_id=entry.organization_id,
        user_email=entry.user_email,
        action=entry.action,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        details=entry.details,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        request_path=entry.request_path,
        status=entry.status,
        error_message=entry.error_message,
        created_at=entry.created_at.isoformat(),
    )


@router.get("/logs", response_model=SuccessEnvelope[AuditLogsPage])
async def list_audit_logs(
    request: Request,
    organization_id: str | None = None,
    action: str | None = None,
    status: str | None = None,
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    entries = await audit_service.list_visible_audit_logs(
        db,
        actor_user_id=actor.user_id,
        organization_id=organization_id,
        action=action,
        status=status,
        created_from=created_from,
        created_to=created_to,
        offset=offset,
        limit=limit + 1,
    )
    next_offset = None
    if len(entries) > limit:
        entries = entries[:limit]
        next_offset = offset + limit
    page = AuditLogsPage(items=[_to_response(entry) for entry in entries], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.get("/logs/recent", response_model=SuccessEnvelope[RecentAuditLogList])
async def list_recent_audit_logs(
    request: Request,
    limit: int = Query(default=200, ge=1, le=1000),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # The recent feed spans every organization, so it is platform-only.
    if not await is_platform_super_admin(db, actor.user_id):
        raise NotFoundError("Not found")
    rows = await audit_service.list_recent_audit_events(db, limit=limit)
    items = [
        RecentAuditLogResponse(**{**row, "created_at": row["created_at"].isoformat()}) for row in rows
    ]
    return success_response(request=request, data=RecentAuditLogList(items=items))
