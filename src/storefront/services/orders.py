"""
storefront.services.orders

Order lifecycle service (transaction + persistence owner).

Responsibilities:
- Checkout: snapshot the caller's cart into a PLACED order.
- Apply caller-requested transitions after `lifecycle.orders.check_transition` accepts them,
  through a version-checked conditional write plus one history row.
- Attach administrative audit notes (allowed on terminal orders).
- Optionally hand freshly confirmed orders to delivery assignment.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.gate import IsSubject, any_of, ensure, ensure_authenticated
from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import AuditEvent, EntityType, Order, OrderStatus, StatusChange, utcnow
from storefront.db.repositories.audit import AuditRepo
from storefront.db.repositories.history import HistoryRepo
from storefront.db.repositories.orders import OrderRepo
from storefront.db.repositories.users import UserRepo
from storefront.errors import Conflict, Forbidden, NoAgentAvailable, NotFound, StaleVersion
from storefront.lifecycle.orders import TIMESTAMP_FIELDS, check_transition
from storefront.observability.logging import get_logger
from storefront.services.delivery import DeliveryAssignment
from storefront.settings import Settings

log = get_logger(__name__)


class OrderLifecycle:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._orders = OrderRepo(session)
        self._users = UserRepo(session)
        self._history = HistoryRepo(session)
        self._audit = AuditRepo(session)

    @property
    def return_window(self) -> timedelta:
        return timedelta(days=self._settings.return_window_days)

    async def checkout(self, *, principal: Principal) -> Order:
        ensure(principal, Capability.USER)
        user = await self._users.get(principal.subject_id)
        if user is None:
            raise NotFound("User not found")
        if not user.cart:
            raise Conflict("cart is empty")

        # Snapshot: later cart edits never reach the order.
        items = [dict(item) for item in user.cart]
        order = await self._orders.create(owner_id=user.id, items=items)
        await self._users.set_cart(user, [])
        await self._session.commit()
        log.info("order_placed", order_id=str(order.id), owner_id=str(user.id), items=len(items))
        return order

    async def get(self, order_id: uuid.UUID, *, principal: Principal) -> Order:
        ensure_authenticated(principal)
        order = await self._load(order_id)
        # Hide orders from unrelated callers rather than revealing they exist.
        ensure_visible = any_of(
            IsSubject(str(order.owner_id)),
            IsSubject(None if order.assigned_agent_id is None else str(order.assigned_agent_id)),
            Capability.ADMIN,
            Capability.SUPPORT_AGENT,
        )
        try:
            ensure(principal, ensure_visible)
        except Forbidden:
            raise NotFound("Order not found") from None
        return order

    async def history(self, order_id: uuid.UUID, *, principal: Principal) -> list[StatusChange]:
        await self.get(order_id, principal=principal)
        return await self._history.list_for(EntityType.order, order_id)

    async def transition(
        self,
        order_id: uuid.UUID,
        target: OrderStatus,
        *,
        principal: Principal,
        now: datetime | None = None,
    ) -> Order:
        ensure_authenticated(principal)
        now = now or utcnow()
        order = await self._load(order_id)
        requirement = check_transition(
            order, target, principal, now=now, return_window=self.return_window
        )

        current, version = order.status, order.version
        won = await self._orders.compare_and_set(
            order_id,
            expected_version=version,
            expected_status=current,
            status=target,
            **{TIMESTAMP_FIELDS[target]: now},
        )
        if not won:
            await self._session.rollback()
            log.warning(
                "order_write_conflict",
                order_id=str(order_id),
                expected_version=version,
                target=str(target),
            )
            raise StaleVersion(f"order {order_id} changed since version {version}")

        await self._history.append(
            entity_type=EntityType.order,
            entity_id=order_id,
            from_status=current,
            to_status=target,
            version=version + 1,
            actor=principal.subject,
        )
        await self._session.commit()
        log.info(
            "order_transition",
            order_id=str(order_id),
            from_status=str(current),
            to_status=str(target),
            version=version + 1,
            actor=principal.subject,
            requirement=requirement.describe(),
        )

        if target == OrderStatus.confirmed and self._settings.auto_assign_on_confirm:
            return await self._auto_assign(order_id)
        return await self._load(order_id)

    async def confirm(self, order_id: uuid.UUID, *, principal: Principal) -> Order:
        return await self.transition(order_id, OrderStatus.confirmed, principal=principal)

    async def cancel(self, order_id: uuid.UUID, *, principal: Principal) -> Order:
        return await self.transition(order_id, OrderStatus.cancelled, principal=principal)

    async def request_return(
        self, order_id: uuid.UUID, *, principal: Principal, now: datetime | None = None
    ) -> Order:
        return await self.transition(order_id, OrderStatus.returned, principal=principal, now=now)

    async def add_note(
        self, order_id: uuid.UUID, note: str, *, principal: Principal
    ) -> AuditEvent:
        ensure(principal, Capability.ADMIN)
        await self._load(order_id)
        ev = await self._audit.add(
            entity_type=EntityType.order,
            entity_id=order_id,
            actor=principal.subject,
            event_type="ADMIN_NOTE",
            details={"note": note},
        )
        await self._session.commit()
        return ev

    async def notes(self, order_id: uuid.UUID, *, principal: Principal) -> list[dict[str, Any]]:
        ensure(principal, Capability.ADMIN)
        await self._load(order_id)
        events = await self._audit.list_for_entity(order_id)
        return [
            {
                "id": str(e.id),
                "event_type": e.event_type,
                "actor": e.actor,
                "details": e.details,
                "created_at": e.created_at.isoformat(),
            }
            for e in events
        ]

    async def _auto_assign(self, order_id: uuid.UUID) -> Order:
        delivery = DeliveryAssignment(session=self._session, settings=self._settings)
        try:
            return await delivery.assign(order_id)
        except NoAgentAvailable:
            # Confirmation already committed; the order waits for the next dispatch.
            log.info("auto_assign_deferred", order_id=str(order_id))
            return await self._load(order_id)

    async def _load(self, order_id: uuid.UUID) -> Order:
        # Always re-read: conditional writes bypass the identity map.
        order = await self._orders.get(order_id, refresh=True)
        if order is None:
            raise NotFound("Order not found")
        return order


# --- Module Notes -----------------------------------------------------------
# This service is the transaction boundary for caller-driven order transitions. It never
# writes ASSIGNED itself; that edge belongs to `services.delivery.DeliveryAssignment`.
