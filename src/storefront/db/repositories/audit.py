"""
storefront.db.repositories.audit

Repository for `AuditEvent` entities.

Responsibilities:
- Append administrative audit events (role changes, order notes, assignment releases).
- Query the audit trail per entity.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import AuditEvent, EntityType


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        actor: str,
        event_type: str,
        details: dict[str, Any],
    ) -> AuditEvent:
        ev = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            event_type=event_type,
            details=details,
        )
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_entity(self, entity_id: uuid.UUID, *, limit: int = 200) -> list[AuditEvent]:
        # Newest-first for admin consumption.
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(desc(AuditEvent.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Audit events are separate from `StatusChange`: notes may be added to terminal orders,
# which must never gain new status history.
