from __future__ import annotations

import logging
import re
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.config import get_settings
from orgauthz.core.errors import (
    AuthorizationDeniedError,
    ConstraintViolationError,
    InvalidSlugError,
    NotFoundError,
    SlugImmutableError,
)
from orgauthz.domain.models import Organization
from orgauthz.domain.roles import Tier
from orgauthz.persistence.ddl import SLUG_PATTERN
from orgauthz.persistence.db import commit_or_raise
from orgauthz.persistence.repos import organizations as organizations_repo
from orgauthz.services.access import (
    is_org_admin_of,
    is_platform_super_admin,
    require_organization_access,
)
from orgauthz.services.audit import AuditContext, record_admin_event
from orgauthz.services.permissions import PermissionCache, get_permission_cache


logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(SLUG_PATTERN)
_UPDATABLE_FIELDS = ("name", "tier", "max_apps", "settings")


def validate_slug(slug: str) -> str:
    # Same regex as the database CHECK; SQLite test schemas rely on this alone.
    if not slug or not _SLUG_RE.match(slug):
        raise InvalidSlugError(f"Invalid organization slug: {slug!r}")
    return slug


def parse_tier(tier: str | Tier) -> Tier:
    try:
        return Tier(tier)
    except ValueError as exc:
        raise ConstraintViolationError(f"Unsupported tier: {tier!r}") from exc


def default_max_apps(tier: str | Tier) -> int:
    settings = get_settings()
    quotas = {
        Tier.DEMO: settings.tier_demo_max_apps,
        Tier.STANDARD: settings.tier_standard_max_apps,
        Tier.ENTERPRISE: settings.tier_enterprise_max_apps,
    }
    return quotas[parse_tier(tier)]


async def create_organization(
    session: AsyncSession,
    *,
    actor_user_id: str,
    name: str,
    slug: str,
    tier: str | Tier = Tier.STANDARD,
    max_apps: int | None = None,
    settings: dict[str, Any] | None = None,
    audit: AuditContext | None = None,
) -> Organization:
    if not await is_platform_super_admin(session, actor_user_id):
        raise AuthorizationDeniedError("Only platform super admins can create organizations")
    validate_slug(slug)
    parsed_tier = parse_tier(tier)
    if not name or not name.strip():
        raise ConstraintViolationError("Organization name is required")
    if max_apps is not None and max_apps < 0:
        raise ConstraintViolationError("max_apps must be non-negative")
    if await organizations_repo.get_organization_by_slug(session, slug) is not None:
        raise ConstraintViolationError(f"Organization slug already exists: {slug}")

    organization = Organization(
        id=uuid4().hex,
        name=name.strip(),
        slug=slug,
        tier=parsed_tier.value,
        is_active=True,
        max_apps=max_apps if max_apps is not None else default_max_apps(parsed_tier),
        settings=dict(settings or {}),
    )
    session.add(organization)
    await commit_or_raise(session, conflict_message=f"Organization slug already exists: {slug}")
    logger.info("organization_created id=%s slug=%s tier=%s", organization.id, slug, parsed_tier.value)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization.id,
        action="organization_created",
        resource_type="organization",
        resource_id=organization.id,
        details={"slug": slug, "tier": parsed_tier.value, "max_apps": organization.max_apps},
    )
    return organization


async def get_organization_for_user(
    session: AsyncSession, *, actor_user_id: str, organization_id: str
) -> Organization:
    return await require_organization_access(session, organization_id, actor_user_id)


async def update_organization(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str,
    changes: dict[str, Any],
    cache: PermissionCache | None = None,
    audit: AuditContext | None = None,
) -> Organization:
    """Apply a partial update; the slug is fixed for the organization's lifetime."""
    # Same rule as the organizations UPDATE policy: direct org-admin or super admin.
    if not await is_org_admin_of(session, organization_id, actor_user_id):
        raise NotFoundError("Organization not found")
    organization = await organizations_repo.get_organization(session, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    if "slug" in changes and changes["slug"] != organization.slug:
        raise SlugImmutableError("Organization slug cannot be changed")
    unknown = set(changes) - set(_UPDATABLE_FIELDS) - {"slug"}
    if unknown:
        raise ConstraintViolationError(f"Unsupported organization fields: {sorted(unknown)}")

    tier = parse_tier(changes["tier"]).value if changes.get("tier") is not None else organization.tier
    max_apps = int(changes["max_apps"]) if changes.get("max_apps") is not None else organization.max_apps
    if max_apps < 0:
        raise ConstraintViolationError("max_apps must be non-negative")
    # Tier and quota are platform decisions; org admins only edit name and settings.
    if (tier, max_apps) != (organization.tier, organization.max_apps) and not await is_platform_super_admin(
        session, actor_user_id
    ):
        raise AuthorizationDeniedError("Only platform super admins can change tier or max_apps")

    applied: dict[str, Any] = {}
    if changes.get("name") is not None:
        name = str(changes["name"]).strip()
        if not name:
            raise ConstraintViolationError("Organization name is required")
        organization.name = name
        applied["name"] = name
    if tier != organization.tier:
        organization.tier = tier
        applied["tier"] = tier
    if max_apps != organization.max_apps:
        organization.max_apps = max_apps
        applied["max_apps"] = max_apps
    if changes.get("settings") is not None:
        organization.settings = dict(changes["settings"])
        applied["settings"] = sorted(organization.settings)

    await commit_or_raise(session, conflict_message="Organization update rejected by constraint")
    # Projections carry org name/slug/tier, so every cached entry may be stale now.
    await (cache or get_permission_cache()).clear()
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="organization_updated",
        resource_type="organization",
        resource_id=organization_id,
        details={"changes": applied},
    )
    return organization


async def set_organization_active(
    session: AsyncSession,
    *,
    actor_user_id: str,
    organization_id: str,
    is_active: bool,
    audit: AuditContext | None = None,
) -> Organization:
    if not await is_platform_super_admin(session, actor_user_id):
        raise AuthorizationDeniedError("Only platform super admins can change organization status")
    organization = await organizations_repo.get_organization(session, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    organization.is_active = is_active
    await commit_or_raise(session, conflict_message="Organization status change rejected")
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="organization_activated" if is_active else "organization_deactivated",
        resource_type="organization",
        resource_id=organization_id,
    )
    return organization
