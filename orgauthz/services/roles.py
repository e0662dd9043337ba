"""Role administration over the single role-assignment table.

Every identity holds at most one row. Writers are platform super admins, or
org-admins acting inside their own organization; org-admins can neither mint
super admins nor reach into another organization's members.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import logging
import re
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.errors import (
    AuthorizationDeniedError,
    ConstraintViolationError,
    DuplicateRoleAssignmentError,
    InvalidEmailError,
    NotFoundError,
    RoleScopeError,
    UnknownRoleError,
)
from orgauthz.domain.models import User, UserRole
from orgauthz.domain.roles import Role
from orgauthz.persistence.db import commit_or_raise
from orgauthz.persistence.repos import organizations as organizations_repo
from orgauthz.persistence.repos import roles as roles_repo
from orgauthz.services.access import RoleScope, is_org_admin_of, load_role_scope
from orgauthz.services.audit import AuditContext, record_admin_event
from orgauthz.services.permissions import PermissionCache, get_permission_cache


logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_role_scope(role: Role, organization_id: str | None) -> None:
    # Mirrors ck_user_roles_platform_scope so callers fail before the write.
    if role is Role.SUPER_ADMIN and organization_id is not None:
        raise RoleScopeError("SUPER_ADMIN is a platform role and cannot belong to an organization")
    if role is not Role.SUPER_ADMIN and organization_id is None:
        raise RoleScopeError(f"{role.value} requires an organization")


def normalize_email(email: str) -> str:
    candidate = (email or "").strip().lower()
    if not _EMAIL_PATTERN.match(candidate):
        raise InvalidEmailError("Invalid email address")
    return candidate


def _authorize(
    actor: RoleScope | None,
    *,
    organization_id: str | None,
    role: Role | None,
    existing: UserRole | None,
) -> None:
    if actor is None:
        raise AuthorizationDeniedError("Actor has no role assignment")
    if actor.is_super_admin:
        return
    if not actor.is_org_admin or actor.organization_id is None:
        raise AuthorizationDeniedError("Org-admin role required")
    if organization_id != actor.organization_id:
        raise AuthorizationDeniedError("Role changes are limited to the actor's organization")
    if role is Role.SUPER_ADMIN:
        raise AuthorizationDeniedError("Only a platform super admin can grant SUPER_ADMIN")
    # Existing rows in another organization (or platform rows) stay out of reach.
    if existing is not None and existing.organization_id != actor.organization_id:
        raise AuthorizationDeniedError("Target user belongs to another organization")


async def _after_write(cache: PermissionCache | None, user_id: str) -> None:
    await (cache or get_permission_cache()).invalidate(user_id)


async def assign_user_role(
    session: AsyncSession,
    *,
    actor_user_id: str,
    user_id: str,
    role: str | Role,
    organization_id: str | None,
    cache: PermissionCache | None = None,
    audit: AuditContext | None = None,
) -> UserRole:
    """Create or replace ``user_id``'s role row."""
    parsed = Role.parse(role)
    validate_role_scope(parsed, organization_id)
    actor = await load_role_scope(session, actor_user_id)
    _authorize(actor, organization_id=organization_id, role=parsed, existing=None)

    if await roles_repo.get_user(session, user_id) is None:
        raise NotFoundError("User not found")
    if organization_id is not None:
        if await organizations_repo.get_organization(session, organization_id) is None:
            raise NotFoundError("Organization not found")

    existing = await roles_repo.get_role_row(session, user_id)
    _authorize(actor, organization_id=organization_id, role=parsed, existing=existing)
    previous = None
    if existing is None:
        row = UserRole(user_id=user_id, organization_id=organization_id, role=parsed.value)
        session.add(row)
    else:
        previous = {"organization_id": existing.organization_id, "role": existing.role}
        existing.organization_id = organization_id
        existing.role = parsed.value
        row = existing
    await commit_or_raise(session, conflict_message="Role assignment rejected by constraint")
    await _after_write(cache, user_id)
    logger.info(
        "role_assigned actor=%s user_id=%s organization_id=%s role=%s",
        actor_user_id,
        user_id,
        organization_id,
        parsed.value,
    )
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="role_assigned",
        resource_type="user_role",
        resource_id=user_id,
        details={"role": parsed.value, "previous": previous},
    )
    return row


async def add_member_by_email(
    session: AsyncSession,
    *,
    actor_user_id: str,
    email: str,
    organization_id: str,
    role: str | Role = Role.VIEWER,
    cache: PermissionCache | None = None,
    audit: AuditContext | None = None,
) -> UserRole:
    """Give an existing identity without any role a role in ``organization_id``."""
    normalized_email = normalize_email(email)
    parsed = Role.parse(role)
    if parsed is Role.SUPER_ADMIN:
        raise RoleScopeError("SUPER_ADMIN cannot be granted through organization membership")
    validate_role_scope(parsed, organization_id)
    actor = await load_role_scope(session, actor_user_id)
    _authorize(actor, organization_id=organization_id, role=parsed, existing=None)

    if await organizations_repo.get_organization(session, organization_id) is None:
        raise NotFoundError("Organization not found")
    user = await roles_repo.get_user_by_email(session, normalized_email)
    if user is None:
        raise NotFoundError("User not found")
    if await roles_repo.get_role_row(session, user.id) is not None:
        raise DuplicateRoleAssignmentError("User already has a role assignment")

    row = UserRole(user_id=user.id, organization_id=organization_id, role=parsed.value)
    session.add(row)
    await commit_or_raise(session, conflict_message="User already has a role assignment")
    await _after_write(cache, user.id)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="member_added",
        resource_type="user_role",
        resource_id=user.id,
        details={"role": parsed.value, "email": normalized_email},
    )
    return row


async def revoke_user_role(
    session: AsyncSession,
    *,
    actor_user_id: str,
    user_id: str,
    organization_id: str | None = None,
    cache: PermissionCache | None = None,
    audit: AuditContext | None = None,
) -> None:
    """Delete ``user_id``'s role row; ``organization_id`` pins the row to an expected organization."""
    existing = await roles_repo.get_role_row(session, user_id)
    if existing is None or (organization_id is not None and existing.organization_id != organization_id):
        raise NotFoundError("Role assignment not found")
    actor = await load_role_scope(session, actor_user_id)
    _authorize(actor, organization_id=existing.organization_id, role=None, existing=existing)
    organization_id = existing.organization_id
    revoked_role = existing.role
    await roles_repo.delete_role_row(session, user_id)
    await commit_or_raise(session, conflict_message="Role revocation rejected by constraint")
    await _after_write(cache, user_id)
    await record_admin_event(
        session,
        context=audit,
        user_id=actor_user_id,
        organization_id=organization_id,
        action="role_revoked",
        resource_type="user_role",
        resource_id=user_id,
        details={"role": revoked_role},
    )


async def list_members(
    session: AsyncSession, *, actor_user_id: str, organization_id: str
) -> list[UserRole]:
    # Same visibility as the user_roles SELECT policy: org-admins of the org and super admins.
    if not await is_org_admin_of(session, organization_id, actor_user_id):
        raise NotFoundError("Organization not found")
    return await roles_repo.list_organization_members(session, organization_id=organization_id)


async def _ensure_user(session: AsyncSession, *, user_id: str, email: str | None) -> User:
    user = await roles_repo.get_user(session, user_id)
    normalized = normalize_email(email) if email else None
    if normalized and (user is None or not user.email):
        owner = await roles_repo.get_user_by_email(session, normalized)
        if owner is not None and owner.id != user_id:
            raise ConstraintViolationError("Email already belongs to another user")
    if user is None:
        user = User(id=user_id, email=normalized)
        session.add(user)
        # Flush so the role row written next can reference the new user.
        await session.flush()
    elif normalized and not user.email:
        user.email = normalized
    return user


async def bootstrap_super_admin(
    session: AsyncSession,
    *,
    user_id: str,
    email: str | None = None,
    cache: PermissionCache | None = None,
) -> UserRole:
    """Operator-only path that creates the first platform role without an acting user."""
    await _ensure_user(session, user_id=user_id, email=email)
    existing = await roles_repo.get_role_row(session, user_id)
    if existing is None:
        row = UserRole(user_id=user_id, organization_id=None, role=Role.SUPER_ADMIN.value)
        session.add(row)
    else:
        existing.organization_id = None
        existing.role = Role.SUPER_ADMIN.value
        row = existing
    await commit_or_raise(session, conflict_message="Super admin bootstrap rejected by constraint")
    await _after_write(cache, user_id)
    logger.info("super_admin_bootstrapped user_id=%s", user_id)
    await record_admin_event(
        session,
        context=None,
        user_id=None,
        organization_id=None,
        action="super_admin_bootstrapped",
        resource_type="user_role",
        resource_id=user_id,
    )
    return row


@dataclass
class RoleImportReport:
    imported: Counter = field(default_factory=Counter)
    skipped: list[tuple[str, str]] = field(default_factory=list)


async def import_role_rows(
    session: AsyncSession,
    rows: Iterable[dict[str, Any]],
    *,
    cache: PermissionCache | None = None,
) -> RoleImportReport:
    """Load exported role rows, folding legacy spellings onto canonical roles.

    Each row needs ``user_id`` and ``role``; ``email`` and ``organization_id``
    are optional. Rows with unknown roles, a broken platform scope, or a
    missing organization are reported and skipped.
    """
    report = RoleImportReport()
    for raw in rows:
        user_id = str(raw.get("user_id") or "").strip()
        organization_id = str(raw.get("organization_id") or "").strip() or None
        if not user_id:
            report.skipped.append(("", "missing user_id"))
            continue
        try:
            role = Role.parse(raw.get("role") or "")
            validate_role_scope(role, organization_id)
        except (UnknownRoleError, RoleScopeError) as exc:
            report.skipped.append((user_id, str(exc)))
            continue
        if organization_id is not None:
            if await organizations_repo.get_organization(session, organization_id) is None:
                report.skipped.append((user_id, f"unknown organization {organization_id}"))
                continue
        try:
            await _ensure_user(session, user_id=user_id, email=(raw.get("email") or "").strip() or None)
        except ConstraintViolationError as exc:
            report.skipped.append((user_id, str(exc)))
            continue
        existing = await roles_repo.get_role_row(session, user_id)
        if existing is None:
            session.add(UserRole(user_id=user_id, organization_id=organization_id, role=role.value))
        else:
            existing.organization_id = organization_id
            existing.role = role.value
        report.imported[role.value] += 1
    await commit_or_raise(session, conflict_message="Role import rejected by constraint")
    await (cache or get_permission_cache()).clear()
    logger.info(
        "role_import_finished imported=%s skipped=%d",
        dict(report.imported),
        len(report.skipped),
    )
    return report
