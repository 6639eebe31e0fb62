from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import User, utcnow


class UserRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, email: str, password_hash: str, capabilities: int) -> User:
        user = User(email=email, password_hash=password_hash, capabilities=capabilities, cart=[])
        self._session.add(user)
        await self._session.flush()
        return user

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def set_capabilities(self, user: User, capabilities: int) -> None:
        user.capabilities = capabilities
        user.updated_at = utcnow()
        await self._session.flush()

    async def set_cart(self, user: User, cart: list[dict[str, Any]]) -> None:
        # Assign a new list so the JSON column is flagged dirty.
        user.cart = list(cart)
        user.updated_at = utcnow()
        await self._session.flush()
