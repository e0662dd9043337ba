from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from orgauthz.apps.api.response import error_response
from orgauthz.core.errors import (
    AgencySelfGrantError,
    AuditWriteError,
    AuthorizationDeniedError,
    ConstraintViolationError,
    DatabaseError,
    DuplicateRoleAssignmentError,
    InvalidEmailError,
    InvalidSlugError,
    NotFoundError,
    OrgAuthzError,
    PolicyEvaluationError,
    QuotaExceededError,
    RoleScopeError,
    SlugImmutableError,
    UnknownRoleError,
)
from orgauthz.persistence.guards import OrganizationPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    402: "QUOTA_EXCEEDED",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific first; the first isinstance match wins.
_DOMAIN_ERRORS: tuple[tuple[type[OrgAuthzError], int, str], ...] = (
    (InvalidSlugError, 422, "ORG_SLUG_INVALID"),
    (SlugImmutableError, 422, "ORG_SLUG_IMMUTABLE"),
    (RoleScopeError, 422, "ROLE_SCOPE_INVALID"),
    (UnknownRoleError, 422, "ROLE_UNKNOWN"),
    (AgencySelfGrantError, 422, "AGENCY_SELF_GRANT"),
    (InvalidEmailError, 422, "EMAIL_INVALID"),
    (QuotaExceededError, 402, "QUOTA_EXCEEDED"),
    (DuplicateRoleAssignmentError, 409, "ROLE_ALREADY_ASSIGNED"),
    (ConstraintViolationError, 409, "CONSTRAINT_VIOLATION"),
    (PolicyEvaluationError, 500, "POLICY_EVALUATION_ERROR"),
    (AuditWriteError, 500, "AUDIT_WRITE_FAILED"),
    (DatabaseError, 503, "DATABASE_ERROR"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=jsonable_errors(payload), status_code=422)


def jsonable_errors(payload: dict[str, Any]) -> dict[str, Any]:
    # Pydantic error contexts can hold exception instances; stringify them.
    return jsonable_encoder(payload, custom_encoder={Exception: str})


async def domain_exception_handler(request: Request, exc: OrgAuthzError) -> JSONResponse:
    # Denial and absence share one response so organization existence never leaks.
    if isinstance(exc, (NotFoundError, AuthorizationDeniedError)):
        logger.debug("request_denied path=%s reason=%s", request.url.path, exc)
        payload = error_response(request=request, code="NOT_FOUND", message="Not found")
        return JSONResponse(content=payload, status_code=status.HTTP_404_NOT_FOUND)
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error("request_failed path=%s code=%s", request.url.path, code, exc_info=exc)
                message = "Internal server error"
            else:
                message = str(exc) or code
            payload = error_response(request=request, code=code, message=message)
            return JSONResponse(content=payload, status_code=status_code)
    return await unhandled_exception_handler(request, exc)


async def organization_predicate_exception_handler(
    request: Request, exc: OrganizationPredicateError
) -> JSONResponse:
    logger.error("organization_predicate_missing path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="ORG_PREDICATE_MISSING",
        message="Organization scope was not applied",
    )
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces; log them and return a stable envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
