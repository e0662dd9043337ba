from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from orgauthz.core.config import get_settings
from orgauthz.core.errors import ConstraintViolationError, DatabaseError, PolicyEvaluationError


settings = get_settings()
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    _engine_kwargs["pool_timeout"] = 30
    _engine_kwargs["pool_recycle"] = 1800
    if settings.db_statement_timeout_ms > 0:
        _engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
        }
engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def act_as_user(session: AsyncSession, user_id: str) -> None:
    """Switch the current transaction to the RLS app role acting for ``user_id``.

    Only meaningful on PostgreSQL; both settings are transaction-local so the
    pooled connection is clean once the transaction ends.
    """
    await session.execute(text(f'SET LOCAL ROLE "{settings.rls_app_role}"'))
    await session.execute(
        text("SELECT set_config(:name, :value, true)"),
        {"name": settings.rls_user_setting, "value": user_id},
    )


async def commit_or_raise(session: AsyncSession, *, conflict_message: str) -> None:
    """Commit, translating constraint failures into ``ConstraintViolationError``."""
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConstraintViolationError(conflict_message) from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DatabaseError("database write failed") from exc


_INSUFFICIENT_PRIVILEGE = "42501"


def is_permission_denied(exc: DBAPIError) -> bool:
    # asyncpg exposes the SQLSTATE as ``sqlstate``; the adapted error also carries ``pgcode``.
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _INSUFFICIENT_PRIVILEGE


async def execute_as_user(
    session: AsyncSession,
    user_id: str,
    statement: Any,
    params: dict[str, Any] | None = None,
) -> Any:
    """Run ``statement`` under RLS as ``user_id`` inside the current transaction.

    A policy that touches an object the app role cannot read makes Postgres
    fail the whole statement; that surfaces as ``PolicyEvaluationError``
    rather than a generic database error.
    """
    await act_as_user(session, user_id)
    try:
        return await session.execute(statement, params or {})
    except DBAPIError as exc:
        if is_permission_denied(exc):
            raise PolicyEvaluationError(f"RLS policy evaluation failed: {exc.orig}") from exc
        raise
