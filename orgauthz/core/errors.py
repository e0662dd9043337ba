from __future__ import annotations


class OrgAuthzError(Exception):
    """Base error for orgauthz."""


class ConstraintViolationError(OrgAuthzError):
    """A write was rejected by a schema or domain constraint."""


class InvalidSlugError(ConstraintViolationError):
    """Organization slug is not lowercase alphanumeric with single hyphens."""


class SlugImmutableError(ConstraintViolationError):
    """Organization slugs cannot change after creation."""


class RoleScopeError(ConstraintViolationError):
    """organization_id must be NULL exactly when the role is SUPER_ADMIN."""


class AgencySelfGrantError(ConstraintViolationError):
    """An organization cannot be its own agency."""


class InvalidEmailError(ConstraintViolationError):
    """Email address failed format validation."""


class QuotaExceededError(ConstraintViolationError):
    """Organization reached its resource quota."""


class DuplicateRoleAssignmentError(ConstraintViolationError):
    """The identity already holds a role assignment."""


class UnknownRoleError(ConstraintViolationError, ValueError):
    """Role value is outside the closed role set."""


class NotFoundError(OrgAuthzError):
    """Requested record does not exist (or is not visible to the caller)."""


class AuthorizationDeniedError(OrgAuthzError):
    """The acting user may not perform the requested operation."""


class PolicyEvaluationError(OrgAuthzError):
    """A row-level security policy failed while being evaluated."""


class AuditWriteError(OrgAuthzError):
    """Audit log insert failed."""


class DatabaseError(OrgAuthzError):
    """Database layer failure."""
