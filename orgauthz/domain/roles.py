from __future__ import annotations

from enum import Enum

from orgauthz.core.errors import UnknownRoleError


class Role(str, Enum):
    """Closed role set, ordered from most to least privileged."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    MANAGER = "MANAGER"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"
    CLIENT = "CLIENT"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    @property
    def is_platform_role(self) -> bool:
        # SUPER_ADMIN is the only role that lives outside an organization.
        return self is Role.SUPER_ADMIN

    @property
    def is_org_admin(self) -> bool:
        return self in ORG_ADMIN_ROLES

    def at_least(self, minimum: "Role") -> bool:
        return self.rank >= minimum.rank

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Map a canonical or legacy spelling onto the closed role set."""
        if isinstance(value, Role):
            return value
        key = str(value).strip().upper()
        key = LEGACY_ROLE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError as exc:
            raise UnknownRoleError(f"Unsupported role: {value}") from exc


ROLE_RANK: dict[Role, int] = {
    Role.SUPER_ADMIN: 6,
    Role.ORG_ADMIN: 5,
    Role.MANAGER: 4,
    Role.ANALYST: 3,
    Role.VIEWER: 2,
    Role.CLIENT: 1,
}

# is_org_admin is defined as membership in this set; adding a role means revisiting it.
ORG_ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.ORG_ADMIN})

# Upper-cased historical spellings mapped to canonical values.
LEGACY_ROLE_ALIASES: dict[str, str] = {
    "ASO_MANAGER": Role.MANAGER.value,
}

ROLE_VALUES: tuple[str, ...] = tuple(role.value for role in Role)


def legacy_spellings() -> dict[str, Role]:
    """Every stored spelling the permission view tolerates, keyed by raw value."""
    spellings: dict[str, Role] = {}
    for role in Role:
        spellings[role.value] = role
        spellings[role.value.lower()] = role
    for alias, canonical in LEGACY_ROLE_ALIASES.items():
        spellings[alias] = Role(canonical)
        spellings[alias.lower()] = Role(canonical)
    return spellings


def role_allows(*, role: Role, minimum_role: Role) -> bool:
    # Compare by rank so callers never hardcode role lists.
    return role.at_least(minimum_role)


class Tier(str, Enum):
    DEMO = "demo"
    STANDARD = "standard"
    ENTERPRISE = "enterprise"


TIER_VALUES: tuple[str, ...] = tuple(tier.value for tier in Tier)


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


AUDIT_STATUS_VALUES: tuple[str, ...] = tuple(status.value for status in AuditStatus)
