"""
storefront.db.repositories.orders

Repository for `Order` entities.

Responsibilities:
- Create orders from a line-item snapshot.
- Apply version-checked conditional updates (the only way status is written).
- Answer load questions for delivery assignment.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import DeliveryAgent, Order, OrderStatus, utcnow

# Orders that count against an agent's load.
ACTIVE_DELIVERY_STATUSES = (OrderStatus.assigned, OrderStatus.out_for_delivery)


class OrderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, owner_id: uuid.UUID, items: list[dict[str, Any]]) -> Order:
        order = Order(
            owner_id=owner_id,
            items=items,
            status=OrderStatus.placed,
            assigned_agent_id=None,
            version=1,
        )
        self._session.add(order)
        await self._session.flush()
        return order

    async def get(self, order_id: uuid.UUID, *, refresh: bool = False) -> Order | None:
        # refresh=True bypasses the identity map so a re-read sees the latest committed row.
        return await self._session.get(Order, order_id, populate_existing=refresh)

    async def compare_and_set(
        self,
        order_id: uuid.UUID,
        *,
        expected_version: int,
        expected_status: OrderStatus | None = None,
        available_agent_id: uuid.UUID | None = None,
        **values: Any,
    ) -> bool:
        """
        Atomic conditional write: applies `values` and bumps the version only if the row
        still carries `expected_version` (and `expected_status`, when given).
        With `available_agent_id` the write also requires that agent to still be in the
        available pool, checked inside the same UPDATE.
        Returns False when another writer got there first.
        """

        conditions = [Order.id == order_id, Order.version == expected_version]
        if expected_status is not None:
            conditions.append(Order.status == expected_status)
        if available_agent_id is not None:
            conditions.append(
                exists().where(
                    DeliveryAgent.agent_id == available_agent_id,
                    DeliveryAgent.available.is_(True),
                )
            )
        stmt = (
            update(Order)
            .where(*conditions)
            .values(version=expected_version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def active_load(self, agent_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, int]:
        ids = list(agent_ids)
        load = {agent_id: 0 for agent_id in ids}
        if not ids:
            return load
        stmt = (
            select(Order.assigned_agent_id, func.count(Order.id))
            .where(
                Order.assigned_agent_id.in_(ids),
                Order.status.in_(ACTIVE_DELIVERY_STATUSES),
            )
            .group_by(Order.assigned_agent_id)
        )
        for agent_id, count in (await self._session.execute(stmt)).all():
            load[agent_id] = int(count)
        return load

    async def list_assigned_to(self, agent_id: uuid.UUID) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.assigned_agent_id == agent_id, Order.status == OrderStatus.assigned)
            .execution_options(populate_existing=True)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# `compare_and_set` relies on the database executing a single UPDATE atomically; the
# caller inspects the boolean and decides between retry, conflict, or exclusivity errors.
