from __future__ import annotations

from dataclasses import dataclass

from orgauthz.core.config import get_settings


@dataclass(frozen=True)
class OrganizationPredicateError(RuntimeError):
    # Raised when an org-scoped query would run without an organization filter.
    message: str


def require_organization_id(organization_id: str | None) -> None:
    settings = get_settings()
    if not settings.authz_require_org_predicate:
        return
    if not organization_id:
        raise OrganizationPredicateError("Organization predicate required but organization_id is missing")


def organization_predicate(model, organization_id: str) -> object:
    # Build org predicates through one helper so guard coverage is uniform.
    require_organization_id(organization_id)
    return model.organization_id == organization_id


def organization_scope_predicate(model, organization_ids: frozenset[str] | None) -> object:
    """Filter ``model`` to a resolved access scope.

    ``None`` means platform-wide scope (super admin); an empty set matches nothing.
    """
    if organization_ids is None:
        return model.organization_id.isnot(None)
    return model.organization_id.in_(sorted(organization_ids))
