from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.config import get_settings
from orgauthz.persistence.db import get_session
from orgauthz.services.audit import AuditContext


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; the context manager closes it on success or error.
    async with get_session() as session:
        yield session


class Actor(BaseModel):
    # Identity asserted by the upstream gateway; authorization starts from user_id.
    user_id: str
    email: str | None = None


def get_current_actor(request: Request) -> Actor:
    settings = get_settings()
    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Missing user identity"},
        )
    email = (request.headers.get(settings.auth_email_header) or "").strip() or None
    return Actor(user_id=user_id, email=email)


def get_audit_context(request: Request, actor: Actor = Depends(get_current_actor)) -> AuditContext:
    return AuditContext.from_request(request, user_email=actor.email)
