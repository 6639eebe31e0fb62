"""
storefront.db.repositories.agents

Repository for the delivery-agent availability pool.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import DeliveryAgent, utcnow


class AgentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, agent_id: uuid.UUID) -> DeliveryAgent | None:
        return await self._session.get(DeliveryAgent, agent_id)

    async def set_available(
        self, agent_id: uuid.UUID, available: bool, *, now: datetime | None = None
    ) -> DeliveryAgent:
        agent = await self.get(agent_id)
        if agent is None:
            agent = DeliveryAgent(agent_id=agent_id, available=available)
            self._session.add(agent)
        agent.available = available
        if available:
            # Going online counts as a heartbeat so the sweep doesn't drop the agent at once.
            agent.last_heartbeat_at = now or utcnow()
        await self._session.flush()
        return agent

    async def touch(self, agent_id: uuid.UUID, *, now: datetime | None = None) -> DeliveryAgent:
        agent = await self.get(agent_id)
        if agent is None:
            agent = DeliveryAgent(agent_id=agent_id, available=True)
            self._session.add(agent)
        agent.last_heartbeat_at = now or utcnow()
        await self._session.flush()
        return agent

    async def list_available(self) -> list[DeliveryAgent]:
        stmt = (
            select(DeliveryAgent)
            .where(DeliveryAgent.available.is_(True))
            .order_by(DeliveryAgent.agent_id)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_stale(self, cutoff: datetime) -> list[DeliveryAgent]:
        stmt = select(DeliveryAgent).where(
            DeliveryAgent.available.is_(True),
            (DeliveryAgent.last_heartbeat_at.is_(None))
            | (DeliveryAgent.last_heartbeat_at < cutoff),
        )
        return list((await self._session.execute(stmt)).scalars().all())
