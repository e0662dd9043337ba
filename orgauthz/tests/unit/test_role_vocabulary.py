from __future__ import annotations

import pytest

from orgauthz.core.errors import ConstraintViolationError, UnknownRoleError
from orgauthz.domain.roles import (
    LEGACY_ROLE_ALIASES,
    ORG_ADMIN_ROLES,
    ROLE_VALUES,
    Role,
    legacy_spellings,
    role_allows,
)


def test_role_set_is_closed_and_ordered() -> None:
    assert ROLE_VALUES == ("SUPER_ADMIN", "ORG_ADMIN", "MANAGER", "ANALYST", "VIEWER", "CLIENT")
    ranks = [Role(value).rank for value in ROLE_VALUES]
    assert ranks == sorted(ranks, reverse=True)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("SUPER_ADMIN", Role.SUPER_ADMIN),
        ("super_admin", Role.SUPER_ADMIN),
        ("  org_admin ", Role.ORG_ADMIN),
        ("ASO_MANAGER", Role.MANAGER),
        ("aso_manager", Role.MANAGER),
        ("manager", Role.MANAGER),
        ("Client", Role.CLIENT),
    ],
)
def test_parse_folds_case_whitespace_and_legacy_aliases(raw: str, expected: Role) -> None:
    assert Role.parse(raw) is expected


@pytest.mark.parametrize("raw", ["", "OWNER", "org-admin", "admin"])
def test_parse_rejects_values_outside_the_set(raw: str) -> None:
    with pytest.raises(UnknownRoleError):
        Role.parse(raw)


def test_unknown_role_error_is_a_value_and_constraint_error() -> None:
    assert issubclass(UnknownRoleError, ValueError)
    assert issubclass(UnknownRoleError, ConstraintViolationError)


def test_org_admin_flag_covers_exactly_org_admin_and_super_admin() -> None:
    assert ORG_ADMIN_ROLES == {Role.SUPER_ADMIN, Role.ORG_ADMIN}
    assert [role for role in Role if role.is_org_admin] == [Role.SUPER_ADMIN, Role.ORG_ADMIN]
    assert [role for role in Role if role.is_platform_role] == [Role.SUPER_ADMIN]


def test_role_allows_compares_by_rank() -> None:
    assert role_allows(role=Role.ORG_ADMIN, minimum_role=Role.MANAGER)
    assert role_allows(role=Role.MANAGER, minimum_role=Role.MANAGER)
    assert not role_allows(role=Role.ANALYST, minimum_role=Role.MANAGER)


def test_every_legacy_spelling_parses_to_its_role() -> None:
    spellings = legacy_spellings()
    for alias in LEGACY_ROLE_ALIASES:
        assert alias in spellings
        assert alias.lower() in spellings
    for raw, role in spellings.items():
        assert Role.parse(raw) is role
