from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
import logging
import time
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.config import get_settings
from orgauthz.domain.models import Organization, UserRole
from orgauthz.domain.roles import Role
from orgauthz.persistence.repos import roles as roles_repo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserPermissions:
    """One row of the permission projection: role + organization + capability flags."""

    user_id: str
    organization_id: str | None
    role: str
    normalized_role: Role
    org_name: str | None
    org_slug: str | None
    org_tier: str | None
    is_super_admin: bool
    is_org_admin: bool
    is_platform_role: bool

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["normalized_role"] = self.normalized_role.value
        return payload


def project_permissions(role_row: UserRole, organization: Organization | None) -> UserPermissions:
    # Mirrors the user_permissions view; the flags are derived here and nowhere else.
    normalized = Role.parse(role_row.role)
    is_platform_role = role_row.organization_id is None
    return UserPermissions(
        user_id=role_row.user_id,
        organization_id=role_row.organization_id,
        role=role_row.role,
        normalized_role=normalized,
        org_name=organization.name if organization is not None else None,
        org_slug=organization.slug if organization is not None else None,
        org_tier=organization.tier if organization is not None else None,
        is_super_admin=normalized is Role.SUPER_ADMIN and is_platform_role,
        is_org_admin=normalized.is_org_admin,
        is_platform_role=is_platform_role,
    )


class PermissionCache:
    """In-memory projection cache keyed by user id.

    Role writes must call ``invalidate``; organization edits call ``clear``.
    Access checks never read from here, so grant toggles apply immediately.
    """

    def __init__(self, ttl_s: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, tuple[float, UserPermissions]] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_s > 0

    async def get(self, user_id: str) -> UserPermissions | None:
        if not self.enabled:
            return None
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            expires_at, permissions = entry
            if expires_at <= now:
                self._entries.pop(user_id, None)
                return None
            return permissions

    async def set(self, permissions: UserPermissions) -> None:
        if not self.enabled:
            return
        async with self._lock:
            self._entries[permissions.user_id] = (self._clock() + self.ttl_s, permissions)

    async def invalidate(self, user_id: str) -> None:
        async with self._lock:
            self._entries.pop(user_id, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


_cache: PermissionCache | None = None


def get_permission_cache() -> PermissionCache:
    global _cache
    if _cache is None:
        _cache = PermissionCache(get_settings().permission_cache_ttl_s)
    return _cache


def reset_permission_cache() -> None:
    # Drop the singleton so the next call picks up changed settings.
    global _cache
    _cache = None


async def resolve_user_permissions(
    session: AsyncSession,
    user_id: str,
    *,
    cache: PermissionCache | None = None,
) -> UserPermissions | None:
    """Resolve a user's projection; ``None`` when the identity has no role row."""
    if cache is not None:
        cached = await cache.get(user_id)
        if cached is not None:
            return cached
    loaded = await roles_repo.get_role_with_organization(session, user_id)
    if loaded is None:
        logger.debug("permissions_unresolved user_id=%s", user_id)
        return None
    role_row, organization = loaded
    permissions = project_permissions(role_row, organization)
    if cache is not None:
        await cache.set(permissions)
    return permissions
