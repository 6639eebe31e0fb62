"""
storefront.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and DB sessions.
- Build request-scoped service instances over the request's session.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.services.accounts import AccountService
from storefront.services.delivery import DeliveryAssignment
from storefront.services.orders import OrderLifecycle
from storefront.services.tickets import TicketLifecycle
from storefront.settings import Settings, get_settings


def settings_dep(settings: Settings = Depends(get_settings)) -> Settings:
    # Resolved through `get_settings` so app-level overrides apply.
    return settings


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # The sessionmaker is created in the app lifespan (`storefront.api.app.create_app`).
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed explicitly by the service layer.
    async with session_factory() as session:
        yield session


def account_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> AccountService:
    return AccountService(session=session, settings=settings)


def order_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> OrderLifecycle:
    return OrderLifecycle(session=session, settings=settings)


def delivery_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> DeliveryAssignment:
    return DeliveryAssignment(session=session, settings=settings)


def ticket_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> TicketLifecycle:
    return TicketLifecycle(session=session, settings=settings)


# --- Module Notes -----------------------------------------------------------
# FastAPI caches dependencies per request, so services in the same request share a session.
