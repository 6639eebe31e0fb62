"""
storefront.services.delivery

Delivery assignment (transaction owner for CONFIRMED -> ASSIGNED).

Responsibilities:
- Pick the least-loaded available agent (ties broken by agent id) and bind it to an order
  with a write conditioned on the order still being CONFIRMED at the read version.
- Maintain the agent availability pool (manual toggles, heartbeats, stale sweeps).
- Release an unavailable agent's ASSIGNED orders back to CONFIRMED.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.gate import IsSubject, all_of, any_of, ensure
from storefront.auth.models import Principal
from storefront.auth.permissions import has
from storefront.auth.roles import Capability
from storefront.db.models import DeliveryAgent, EntityType, Order, OrderStatus, utcnow
from storefront.db.repositories.agents import AgentRepo
from storefront.db.repositories.audit import AuditRepo
from storefront.db.repositories.history import HistoryRepo
from storefront.db.repositories.orders import OrderRepo
from storefront.db.repositories.users import UserRepo
from storefront.errors import (
    AlreadyAssigned,
    Forbidden,
    IllegalTransition,
    NoAgentAvailable,
    NotFound,
    StaleVersion,
)
from storefront.lifecycle.orders import RELEASE_EDGE
from storefront.observability.logging import get_logger
from storefront.settings import Settings

log = get_logger(__name__)

SYSTEM_ACTOR = "system"

# Statuses that mean an assignment already happened for this order.
_ASSIGNED_OR_LATER = frozenset(
    {
        OrderStatus.assigned,
        OrderStatus.out_for_delivery,
        OrderStatus.delivered,
        OrderStatus.returned,
    }
)


class DeliveryAssignment:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._orders = OrderRepo(session)
        self._agents = AgentRepo(session)
        self._users = UserRepo(session)
        self._history = HistoryRepo(session)
        self._audit = AuditRepo(session)

    async def assign(self, order_id: uuid.UUID, *, actor: str = SYSTEM_ACTOR) -> Order:
        """
        Bind exactly one agent to a CONFIRMED order.

        A lost conditional write re-reads the order: if someone else assigned it the caller
        gets AlreadyAssigned, otherwise (version moved, or the picked agent left the pool
        after it was read) we retry with a fresh pick.
        """

        for attempt in range(1, self._settings.assignment_max_retries + 1):
            order = await self._orders.get(order_id, refresh=True)
            if order is None:
                raise NotFound("Order not found")
            status, version = order.status, order.version
            if status in _ASSIGNED_OR_LATER:
                raise AlreadyAssigned(f"order {order_id} is already {status}")
            if status != OrderStatus.confirmed:
                raise IllegalTransition(status, OrderStatus.assigned)

            agent_id = await self._pick_agent()
            now = utcnow()
            won = await self._orders.compare_and_set(
                order_id,
                expected_version=version,
                expected_status=OrderStatus.confirmed,
                available_agent_id=agent_id,
                status=OrderStatus.assigned,
                assigned_agent_id=agent_id,
                assigned_at=now,
            )
            if won:
                await self._history.append(
                    entity_type=EntityType.order,
                    entity_id=order_id,
                    from_status=OrderStatus.confirmed,
                    to_status=OrderStatus.assigned,
                    version=version + 1,
                    actor=actor,
                )
                await self._session.commit()
                log.info(
                    "order_assigned",
                    order_id=str(order_id),
                    agent_id=str(agent_id),
                    version=version + 1,
                    attempt=attempt,
                )
                assigned = await self._orders.get(order_id, refresh=True)
                assert assigned is not None
                return assigned

            await self._session.rollback()
            log.info(
                "assignment_conflict",
                order_id=str(order_id),
                agent_id=str(agent_id),
                attempt=attempt,
            )

        raise StaleVersion(f"order {order_id} kept changing during assignment")

    async def _pick_agent(self) -> uuid.UUID:
        pool = [a.agent_id for a in await self._agents.list_available()]
        if not pool:
            raise NoAgentAvailable("no delivery agent is currently available")
        load = await self._orders.active_load(pool)
        return min(pool, key=lambda agent_id: (load[agent_id], agent_id))

    async def set_availability(
        self,
        agent_id: uuid.UUID,
        available: bool,
        *,
        principal: Principal,
    ) -> list[uuid.UUID]:
        # Agents toggle themselves; ADMIN may toggle anyone.
        ensure(
            principal,
            any_of(
                all_of(IsSubject(str(agent_id)), Capability.DELIVERY_AGENT),
                Capability.ADMIN,
            ),
        )
        user = await self._users.get(agent_id)
        if user is None:
            raise NotFound("User not found")
        if available:
            if not has(user.capabilities, Capability.DELIVERY_AGENT):
                raise Forbidden("user is not a delivery agent")
            await self._agents.set_available(agent_id, True)
            await self._session.commit()
            log.info("agent_available", agent_id=str(agent_id), actor=principal.subject)
            return []

        released = await self.mark_unavailable(agent_id, actor=principal.subject)
        await self._session.commit()
        await self.reassign(released)
        return released

    async def heartbeat(self, *, principal: Principal) -> DeliveryAgent:
        ensure(principal, Capability.DELIVERY_AGENT)
        agent = await self._agents.touch(principal.subject_id)
        await self._session.commit()
        return agent

    async def sweep(
        self,
        *,
        principal: Principal,
        now: datetime | None = None,
    ) -> dict[str, list[uuid.UUID]]:
        """
        Heartbeat policy: mark agents silent for longer than the timeout unavailable and
        release their ASSIGNED orders. A no-op under the manual policy.
        """

        ensure(principal, Capability.ADMIN)
        if self._settings.agent_unavailability_trigger != "heartbeat":
            log.info("agent_sweep_skipped", trigger=self._settings.agent_unavailability_trigger)
            return {}

        now = now or utcnow()
        cutoff = now - timedelta(seconds=self._settings.agent_heartbeat_timeout_seconds)
        stale = [a.agent_id for a in await self._agents.list_stale(cutoff)]
        result: dict[str, list[uuid.UUID]] = {}
        for agent_id in stale:
            result[str(agent_id)] = await self.mark_unavailable(agent_id, actor=SYSTEM_ACTOR)
        await self._session.commit()
        if stale:
            log.info("agent_sweep", stale_agents=[str(a) for a in stale])
        await self.reassign([oid for released in result.values() for oid in released])
        return result

    async def mark_unavailable(self, agent_id: uuid.UUID, *, actor: str) -> list[uuid.UUID]:
        """
        Take the agent out of the pool and hand its ASSIGNED orders back to CONFIRMED.
        OUT_FOR_DELIVERY orders stay with the agent. Does not commit.
        """

        await self._agents.set_available(agent_id, False)
        released: list[uuid.UUID] = []
        from_status, to_status = RELEASE_EDGE
        for order in await self._orders.list_assigned_to(agent_id):
            order_id, version = order.id, order.version
            won = await self._orders.compare_and_set(
                order_id,
                expected_version=version,
                expected_status=from_status,
                status=to_status,
                assigned_agent_id=None,
                assigned_at=None,
            )
            if not won:
                # The agent moved it forward (or it was released) concurrently; leave it.
                log.info("release_skipped", order_id=str(order_id), agent_id=str(agent_id))
                continue
            await self._history.append(
                entity_type=EntityType.order,
                entity_id=order_id,
                from_status=from_status,
                to_status=to_status,
                version=version + 1,
                actor=actor,
            )
            await self._audit.add(
                entity_type=EntityType.order,
                entity_id=order_id,
                actor=actor,
                event_type="ASSIGNMENT_RELEASED",
                details={"agent_id": str(agent_id)},
            )
            released.append(order_id)

        log.info(
            "agent_unavailable",
            agent_id=str(agent_id),
            actor=actor,
            released=[str(o) for o in released],
        )
        return released

    async def reassign(self, order_ids: list[uuid.UUID]) -> None:
        if not self._settings.auto_assign_on_confirm:
            return
        for order_id in order_ids:
            try:
                await self.assign(order_id)
            except (NoAgentAvailable, AlreadyAssigned, StaleVersion) as e:
                # The order stays CONFIRMED and can be assigned on the next dispatch.
                log.info("reassignment_deferred", order_id=str(order_id), reason=e.code)


# --- Module Notes -----------------------------------------------------------
# This service is the only writer of ASSIGNED and of the ASSIGNED -> CONFIRMED release edge.
# `services.orders.OrderLifecycle` rejects both when requested directly by a caller.
