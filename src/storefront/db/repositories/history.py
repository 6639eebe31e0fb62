"""
storefront.db.repositories.history

Repository for `StatusChange` rows.

Responsibilities:
- Append one row per accepted lifecycle transition.
- Read an entity's transition history in append order.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import EntityType, StatusChange


class HistoryRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        from_status: str,
        to_status: str,
        version: int,
        actor: str,
    ) -> StatusChange:
        # Append-only: there is deliberately no update/delete method on this repo.
        row = StatusChange(
            entity_type=entity_type,
            entity_id=entity_id,
            from_status=str(from_status),
            to_status=str(to_status),
            version=version,
            actor=actor,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for(self, entity_type: EntityType, entity_id: uuid.UUID) -> list[StatusChange]:
        stmt = (
            select(StatusChange)
            .where(StatusChange.entity_type == entity_type, StatusChange.entity_id == entity_id)
            .order_by(StatusChange.id)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Rows are written in the same transaction as the conditional status update, so a lost
# race never leaves a history row behind (the service rolls back).
