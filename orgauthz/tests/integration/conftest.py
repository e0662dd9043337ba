from __future__ import annotations

from typing import AsyncIterator

import pytest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from orgauthz.core.config import get_settings
from orgauthz.tests.utils.tracking import Tracker


@pytest.fixture
async def pg_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # Policies, triggers and security-definer functions only exist on a migrated PostgreSQL database.
    database_url = get_settings().database_url
    if not database_url.startswith("postgresql"):
        pytest.skip("PostgreSQL DATABASE_URL required")
    # NullPool keeps asyncpg connections from outliving the test's event loop.
    engine = create_async_engine(database_url, poolclass=NullPool)
    try:
        async with engine.connect() as conn:
            migrated = (await conn.execute(text("SELECT to_regprocedure('redact_audit_details(jsonb)')"))).scalar()
    except (OSError, SQLAlchemyError):
        await engine.dispose()
        pytest.skip("PostgreSQL unreachable")
    if migrated is None:
        await engine.dispose()
        pytest.skip("run `alembic upgrade head` first")
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def tracker(pg_session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[Tracker]:
    created = Tracker()
    yield created
    async with pg_session_factory() as session:
        await created.cleanup(session)
