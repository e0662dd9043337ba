from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgauthz.core.errors import (
    AuthorizationDeniedError,
    DuplicateRoleAssignmentError,
    InvalidEmailError,
    NotFoundError,
    RoleScopeError,
    UnknownRoleError,
)
from orgauthz.domain.models import AuditLog, UserRole
from orgauthz.domain.roles import Role
from orgauthz.persistence.repos import roles as roles_repo
from orgauthz.services import roles as roles_service
from orgauthz.services.audit import AuditContext
from orgauthz.services.permissions import PermissionCache, resolve_user_permissions
from orgauthz.tests.utils.seed import seed_organization, seed_user


@pytest.fixture
def audit(session_factory: async_sessionmaker[AsyncSession]) -> AuditContext:
    # Route best-effort audit writes to the in-memory test database.
    return AuditContext(user_email="actor@example.com", session_factory=session_factory)


async def _setup(db: AsyncSession) -> dict[str, str]:
    x = await seed_organization(db, slug="org-x")
    y = await seed_organization(db, slug="org-y")
    return {
        "x": x.id,
        "y": y.id,
        "super": await seed_user(db, user_id="super", role=Role.SUPER_ADMIN),
        "admin_x": await seed_user(db, user_id="admin-x", role=Role.ORG_ADMIN, organization_id=x.id),
        "viewer_x": await seed_user(db, user_id="viewer-x", role=Role.VIEWER, organization_id=x.id),
        "viewer_y": await seed_user(db, user_id="viewer-y", role=Role.VIEWER, organization_id=y.id),
        "fresh": await seed_user(db, user_id="fresh", email="fresh@example.com"),
    }


@pytest.mark.asyncio
async def test_org_admin_assigns_role_in_own_org(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    row = await roles_service.assign_user_role(
        db,
        actor_user_id=ids["admin_x"],
        user_id=ids["fresh"],
        role="aso_manager",
        organization_id=ids["x"],
        audit=audit,
    )
    assert row.role == Role.MANAGER.value
    stored = await roles_repo.get_role_row(db, ids["fresh"])
    assert stored is not None and stored.organization_id == ids["x"]

    entries = (await db.execute(select(AuditLog).where(AuditLog.action == "role_assigned"))).scalars().all()
    assert len(entries) == 1
    assert entries[0].user_email == "actor@example.com"
    assert entries[0].resource_id == ids["fresh"]


@pytest.mark.asyncio
async def test_reassignment_replaces_the_single_row(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    await roles_service.assign_user_role(
        db, actor_user_id=ids["admin_x"], user_id=ids["viewer_x"], role=Role.ANALYST, organization_id=ids["x"], audit=audit
    )
    rows = (await db.execute(select(UserRole).where(UserRole.user_id == ids["viewer_x"]))).scalars().all()
    assert [row.role for row in rows] == [Role.ANALYST.value]


@pytest.mark.parametrize(
    ("role", "organization_key"),
    [(Role.VIEWER, None), (Role.SUPER_ADMIN, "x")],
)
@pytest.mark.asyncio
async def test_platform_scope_rule_checked_before_write(
    db: AsyncSession, audit: AuditContext, role: Role, organization_key: str | None
) -> None:
    ids = await _setup(db)
    organization_id = ids[organization_key] if organization_key else None
    with pytest.raises(RoleScopeError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["super"], user_id=ids["fresh"], role=role, organization_id=organization_id, audit=audit
        )
    assert await roles_repo.get_role_row(db, ids["fresh"]) is None


@pytest.mark.asyncio
async def test_org_admin_cannot_reach_other_org_or_platform(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    with pytest.raises(AuthorizationDeniedError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["admin_x"], user_id=ids["fresh"], role=Role.VIEWER, organization_id=ids["y"], audit=audit
        )
    with pytest.raises(AuthorizationDeniedError):
        # Pulling a member out of another organization is also refused.
        await roles_service.assign_user_role(
            db, actor_user_id=ids["admin_x"], user_id=ids["viewer_y"], role=Role.VIEWER, organization_id=ids["x"], audit=audit
        )
    with pytest.raises(AuthorizationDeniedError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["admin_x"], user_id=ids["super"], role=Role.VIEWER, organization_id=ids["x"], audit=audit
        )


@pytest.mark.asyncio
async def test_non_admin_cannot_assign(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    with pytest.raises(AuthorizationDeniedError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["viewer_x"], user_id=ids["fresh"], role=Role.VIEWER, organization_id=ids["x"], audit=audit
        )


@pytest.mark.asyncio
async def test_super_admin_can_mint_platform_role(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    row = await roles_service.assign_user_role(
        db, actor_user_id=ids["super"], user_id=ids["fresh"], role="super_admin", organization_id=None, audit=audit
    )
    assert row.organization_id is None
    permissions = await resolve_user_permissions(db, ids["fresh"])
    assert permissions is not None and permissions.is_super_admin


@pytest.mark.asyncio
async def test_unknown_role_and_missing_targets(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    with pytest.raises(UnknownRoleError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["super"], user_id=ids["fresh"], role="OWNER", organization_id=ids["x"], audit=audit
        )
    with pytest.raises(NotFoundError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["super"], user_id="ghost", role=Role.VIEWER, organization_id=ids["x"], audit=audit
        )
    with pytest.raises(NotFoundError):
        await roles_service.assign_user_role(
            db, actor_user_id=ids["super"], user_id=ids["fresh"], role=Role.VIEWER, organization_id="org-ghost", audit=audit
        )


@pytest.mark.asyncio
async def test_assignment_invalidates_cached_projection(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    cache = PermissionCache(ttl_s=300)
    before = await resolve_user_permissions(db, ids["viewer_x"], cache=cache)
    assert before is not None and not before.is_org_admin
    await roles_service.assign_user_role(
        db,
        actor_user_id=ids["admin_x"],
        user_id=ids["viewer_x"],
        role=Role.ORG_ADMIN,
        organization_id=ids["x"],
        cache=cache,
        audit=audit,
    )
    after = await resolve_user_permissions(db, ids["viewer_x"], cache=cache)
    assert after is not None and after.is_org_admin


@pytest.mark.asyncio
async def test_add_member_by_email(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    row = await roles_service.add_member_by_email(
        db, actor_user_id=ids["admin_x"], email=" Fresh@Example.com ", organization_id=ids["x"], role="analyst", audit=audit
    )
    assert (row.user_id, row.role) == (ids["fresh"], Role.ANALYST.value)
    with pytest.raises(DuplicateRoleAssignmentError):
        await roles_service.add_member_by_email(
            db, actor_user_id=ids["admin_x"], email="fresh@example.com", organization_id=ids["x"], audit=audit
        )


@pytest.mark.asyncio
async def test_add_member_validation(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    with pytest.raises(InvalidEmailError):
        await roles_service.add_member_by_email(
            db, actor_user_id=ids["admin_x"], email="not-an-email", organization_id=ids["x"], audit=audit
        )
    with pytest.raises(RoleScopeError):
        await roles_service.add_member_by_email(
            db,
            actor_user_id=ids["super"],
            email="fresh@example.com",
            organization_id=ids["x"],
            role=Role.SUPER_ADMIN,
            audit=audit,
        )
    with pytest.raises(NotFoundError):
        await roles_service.add_member_by_email(
            db, actor_user_id=ids["admin_x"], email="nobody@example.com", organization_id=ids["x"], audit=audit
        )


@pytest.mark.asyncio
async def test_revoke_respects_scope(db: AsyncSession, audit: AuditContext) -> None:
    ids = await _setup(db)
    with pytest.raises(AuthorizationDeniedError):
        await roles_service.revoke_user_role(db, actor_user_id=ids["admin_x"], user_id=ids["viewer_y"], audit=audit)
    with pytest.raises(NotFoundError):
        await roles_service.revoke_user_role(
            db, actor_user_id=ids["super"], user_id=ids["viewer_y"], organization_id=ids["x"], audit=audit
        )
    await roles_service.revoke_user_role(db, actor_user_id=ids["admin_x"], user_id=ids["viewer_x"], audit=audit)
    assert await roles_repo.get_role_row(db, ids["viewer_x"]) is None
    with pytest.raises(NotFoundError):
        await roles_service.revoke_user_role(db, actor_user_id=ids["admin_x"], user_id=ids["viewer_x"], audit=audit)


@pytest.mark.asyncio
async def test_list_members_limited_to_org_admins(db: AsyncSession) -> None:
    ids = await _setup(db)
    members = await roles_service.list_members(db, actor_user_id=ids["admin_x"], organization_id=ids["x"])
    assert {row.user_id for row in members} == {ids["admin_x"], ids["viewer_x"]}
    with pytest.raises(NotFoundError):
        await roles_service.list_members(db, actor_user_id=ids["viewer_x"], organization_id=ids["x"])


@pytest.mark.asyncio
async def test_bootstrap_super_admin_creates_identity(db: AsyncSession) -> None:
    row = await roles_service.bootstrap_super_admin(db, user_id="root", email="root@example.com")
    assert (row.organization_id, row.role) == (None, Role.SUPER_ADMIN.value)
    assert (await roles_repo.get_user(db, "root")).email == "root@example.com"


@pytest.mark.asyncio
async def test_import_normalizes_legacy_spellings(db: AsyncSession) -> None:
    x = await seed_organization(db, slug="imported")
    rows = [
        {"user_id": "a", "email": "a@example.com", "organization_id": x.id, "role": "aso_manager"},
        {"user_id": "b", "email": "", "organization_id": x.id, "role": "ASO_MANAGER"},
        {"user_id": "c", "email": "", "organization_id": x.id, "role": "viewer"},
        {"user_id": "d", "email": "", "organization_id": "", "role": "super_admin"},
        {"user_id": "e", "email": "", "organization_id": x.id, "role": "owner"},
        {"user_id": "f", "email": "", "organization_id": "", "role": "viewer"},
        {"user_id": "g", "email": "", "organization_id": "org-missing", "role": "viewer"},
    ]
    report = await roles_service.import_role_rows(db, rows)
    assert dict(report.imported) == {"MANAGER": 2, "VIEWER": 1, "SUPER_ADMIN": 1}
    assert sorted(user_id for user_id, _reason in report.skipped) == ["e", "f", "g"]
    stored = (await db.execute(select(UserRole.user_id, UserRole.role).order_by(UserRole.user_id))).all()
    assert [tuple(row) for row in stored] == [
        ("a", "MANAGER"),
        ("b", "MANAGER"),
        ("c", "VIEWER"),
        ("d", "SUPER_ADMIN"),
    ]
