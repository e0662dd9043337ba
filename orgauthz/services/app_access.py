from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.errors import ConstraintViolationError, NotFoundError, QuotaExceededError
from orgauthz.domain.models import OrgAppAccess
from orgauthz.persistence.db import commit_or_raise
from orgauthz.persistence.repos import app_access as app_access_repo
from orgauthz.services.access import accessible_organization_ids, require_organization_access
from orgauthz.services.audit import AuditContext, record_admin_event


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def list_accessible_apps(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str | None = None,
    include_detached: bool = False,
) -> list[OrgAppAccess]:
    """App attachments the actor can see, optionally narrowed to one organization."""
    if organization_id is not None:
        await require_organization_access(session, organization_id, actor_user_id)
        scope: frozenset[str] | None = frozenset({organization_id})
    else:
        scope = await accessible_organization_ids(session, actor_user_id)
    return await app_access_repo.list_app_access(
        session, organization_ids=scope, include_detached=include_detached
    )


async def attach_app(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str,
    app_id: str,
    audit: AuditContext | None = None,
) -> OrgAppAccess:
    app_id = (app_id or "").strip()
    if not app_id:
        raise ConstraintViolationError("app_id is required")
    organization = await require_organization_access(
        session, organization_id, actor_user_id, admin=True
    )
    existing = await app_access_repo.get_app_access(
        session, organization_id=organization_id, app_id=app_id
    )
    if existing is not None and existing.detached_at is None:
        return existing
    attached = await app_access_repo.count_attached_apps(session, organization_id=organization_id)
    if attached >= organization.max_apps:
        raise QuotaExceededError(
            f"Organization reached its app quota ({organization.max_apps})"
        )

    if existing is not None:
        # Re-attaching reuses the row; the unique (organization, app) pair stays intact.
        existing.detached_at = None
        existing.attached_at = _utc_now()
        existing.attached_by = actor_user_id
        row = existing
    else:
        row = OrgAppAccess(
            id=uuid4().hex,
            organization_id=organization_id,
            app_id=app_id,
            attached_by=actor_user_id,
            attached_at=_utc_now(),
        )
        session.add(row)
    await commit_or_raise(session, conflict_message="App is already attached to this organization")
    logger.info("org_app_attached organization_id=%s app_id=%s", organization_id, app_id)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="app_attached",
        resource_type="app",
        resource_id=app_id,
    )
    return row


async def detach_app(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str,
    app_id: str,
    audit: AuditContext | None = None,
) -> OrgAppAccess:
    await require_organization_access(session, organization_id, actor_user_id, admin=True)
    existing = await app_access_repo.get_app_access(
        session, organization_id=organization_id, app_id=app_id
    )
    if existing is None or existing.detached_at is not None:
        raise NotFoundError("App attachment not found")
    existing.detached_at = _utc_now()
    await commit_or_raise(session, conflict_message="App detach rejected by constraint")
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="app_detached",
        resource_type="app",
        resource_id=app_id,
    )
    return existing
