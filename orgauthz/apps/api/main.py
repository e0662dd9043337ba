from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from orgauthz.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    organization_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from orgauthz.apps.api.response import API_VERSION
from orgauthz.apps.api.routes.access import router as access_router
from orgauthz.apps.api.routes.agency import router as agency_router
from orgauthz.apps.api.routes.apps import router as apps_router
from orgauthz.apps.api.routes.audit import router as audit_router
from orgauthz.apps.api.routes.health import router as health_router
from orgauthz.apps.api.routes.members import router as members_router
from orgauthz.apps.api.routes.organizations import router as organizations_router
from orgauthz.core.config import get_settings
from orgauthz.core.errors import OrgAuthzError
from orgauthz.core.logging import configure_logging
from orgauthz.persistence.guards import OrganizationPredicateError


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request ids or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(OrgAuthzError)
    async def _domain_exception_handler(request: Request, exc: OrgAuthzError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(OrganizationPredicateError)
    async def _organization_predicate_exception_handler(request: Request, exc: OrganizationPredicateError):
        return await organization_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    prefix = f"/{API_VERSION}"
    app.include_router(health_router, prefix=prefix)
    app.include_router(access_router, prefix=prefix)
    app.include_router(organizations_router, prefix=prefix)
    app.include_router(members_router, prefix=prefix)
    # Agency grants and the per-organization client/agency listings.
    app.include_router(agency_router, prefix=prefix)
    app.include_router(apps_router, prefix=prefix)
    app.include_router(audit_router, prefix=prefix)
    return app


app = create_app()
