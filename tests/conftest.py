"""
tests.conftest

Shared fixtures: a file-backed SQLite database per test, session factories, and helpers
for creating users with capability masks plus matching principals.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import User
from storefront.db.repositories.users import UserRepo
from storefront.db.session import create_engine, create_sessionmaker, init_db
from storefront.settings import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    # File-backed so concurrent sessions see each other's commits.
    return Settings(
        env="test",
        log_level="WARNING",
        jwt_secret="test-secret",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    engine = create_engine(settings)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as s:
        yield s


def principal_for(
    user: User,
    *,
    capabilities: int | None = None,
    expires_at: datetime | None = None,
) -> Principal:
    return Principal(
        subject=str(user.id),
        capabilities=user.capabilities if capabilities is None else int(capabilities),
        expires_at=expires_at or datetime.now(tz=UTC) + timedelta(hours=1),
    )


MakeUser = Callable[..., Awaitable[User]]


@pytest.fixture
def make_user(session: AsyncSession) -> MakeUser:
    async def _make(capabilities: int = Capability.USER, email: str | None = None) -> User:
        user = await UserRepo(session).create(
            email=email or f"{uuid.uuid4().hex[:10]}@example.test",
            # Service-level tests never log in, so a real hash is not needed here.
            password_hash="unused",
            capabilities=int(capabilities),
        )
        await session.commit()
        return user

    return _make
