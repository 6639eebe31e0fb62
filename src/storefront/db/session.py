"""
storefront.db.session

Async SQLAlchemy engine, session factory and schema bootstrap.

Responsibilities:
- Create the async engine from settings, with SQLite-specific connection setup.
- Create the async sessionmaker used by request-scoped services.
- Create tables for dev/test (production runs Alembic migrations).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.db import models  # noqa: F401  # registers tables on Base.metadata
from storefront.db.base import Base
from storefront.observability.logging import get_logger
from storefront.settings import Settings

log = get_logger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def create_engine(settings: Settings) -> AsyncEngine:
    connect_args: dict[str, Any] = {}
    if _is_sqlite(settings.database_url):
        # Concurrent conditional UPDATEs wait on SQLite's write lock instead of failing fast.
        connect_args["timeout"] = settings.db_busy_timeout_seconds

    engine = create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    if _is_sqlite(settings.database_url):

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: services return committed entities to the API layer.
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("db_initialized", tables=sorted(Base.metadata.tables))


# --- Module Notes -----------------------------------------------------------
# The API layer uses FastAPI dependencies for session scoping (`api.deps.db_session`).
# Each concurrent request gets its own session, so conflicts surface at the conditional
# UPDATE rather than inside a shared unit of work.
