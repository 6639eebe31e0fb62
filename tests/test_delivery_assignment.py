"""
tests.test_delivery_assignment

Delivery assignment: agent selection, exclusivity under concurrency, availability changes.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import MakeUser, principal_for
from storefront.auth.roles import Capability
from storefront.db.models import EntityType, Order, OrderStatus, utcnow
from storefront.db.repositories.agents import AgentRepo
from storefront.db.repositories.audit import AuditRepo
from storefront.errors import (
    AlreadyAssigned,
    Forbidden,
    IllegalTransition,
    NoAgentAvailable,
    Unauthenticated,
)
from storefront.services.accounts import AccountService
from storefront.services.delivery import DeliveryAssignment
from storefront.services.orders import OrderLifecycle
from storefront.settings import Settings

S = OrderStatus
AGENT = Capability.USER | Capability.DELIVERY_AGENT


async def _confirmed_order(session: AsyncSession, settings: Settings, make_user: MakeUser) -> Order:
    owner = await make_user()
    admin = await make_user(Capability.USER | Capability.ADMIN)
    await AccountService(session=session, settings=settings).add_cart_item(
        {"product_id": "sku-9", "size": None, "color": None, "quantity": 1},
        principal=principal_for(owner),
    )
    orders = OrderLifecycle(session=session, settings=settings)
    order = await orders.checkout(principal=principal_for(owner))
    return await orders.confirm(order.id, principal=principal_for(admin))


async def _available_agent(session: AsyncSession, settings: Settings, make_user: MakeUser):
    agent = await make_user(AGENT)
    await DeliveryAssignment(session=session, settings=settings).set_availability(
        agent.id, True, principal=principal_for(agent)
    )
    return agent


@pytest.mark.asyncio
async def test_no_available_agent(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    order = await _confirmed_order(session, settings, make_user)
    # Registered as an agent but never went online.
    await make_user(AGENT)
    with pytest.raises(NoAgentAvailable):
        await DeliveryAssignment(session=session, settings=settings).assign(order.id)


@pytest.mark.asyncio
async def test_least_loaded_agent_wins(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    delivery = DeliveryAssignment(session=session, settings=settings)
    busy = await _available_agent(session, settings, make_user)

    first = await delivery.assign((await _confirmed_order(session, settings, make_user)).id)
    assert first.assigned_agent_id == busy.id

    idle = await _available_agent(session, settings, make_user)
    second = await delivery.assign((await _confirmed_order(session, settings, make_user)).id)
    assert second.assigned_agent_id == idle.id


@pytest.mark.asyncio
async def test_ties_are_broken_by_agent_id(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    a = await _available_agent(session, settings, make_user)
    b = await _available_agent(session, settings, make_user)
    order = await _confirmed_order(session, settings, make_user)

    assigned = await DeliveryAssignment(session=session, settings=settings).assign(order.id)
    assert assigned.assigned_agent_id == min(a.id, b.id)


@pytest.mark.asyncio
async def test_assign_rejects_orders_not_confirmed(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    await _available_agent(session, settings, make_user)
    owner = await make_user()
    await AccountService(session=session, settings=settings).add_cart_item(
        {"product_id": "sku-1", "quantity": 1}, principal=principal_for(owner)
    )
    placed = await OrderLifecycle(session=session, settings=settings).checkout(
        principal=principal_for(owner)
    )
    delivery = DeliveryAssignment(session=session, settings=settings)
    with pytest.raises(IllegalTransition):
        await delivery.assign(placed.id)


@pytest.mark.asyncio
async def test_second_assign_reports_already_assigned(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    await _available_agent(session, settings, make_user)
    order = await _confirmed_order(session, settings, make_user)
    delivery = DeliveryAssignment(session=session, settings=settings)
    await delivery.assign(order.id)
    with pytest.raises(AlreadyAssigned):
        await delivery.assign(order.id)


@pytest.mark.asyncio
async def test_concurrent_assigns_bind_exactly_one_agent(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
    make_user: MakeUser,
) -> None:
    for _ in range(3):
        await _available_agent(session, settings, make_user)
    order = await _confirmed_order(session, settings, make_user)
    order_id = order.id

    async def attempt():
        # One session per caller, as concurrent requests would have.
        async with sessionmaker() as s:
            try:
                won = await DeliveryAssignment(session=s, settings=settings).assign(order_id)
                return won.assigned_agent_id
            except AlreadyAssigned as e:
                return e

    results = await asyncio.gather(*(attempt() for _ in range(6)))

    winners = [r for r in results if not isinstance(r, AlreadyAssigned)]
    assert len(winners) == 1
    assert sum(isinstance(r, AlreadyAssigned) for r in results) == 5

    async with sessionmaker() as s:
        final = await s.get(Order, order_id)
        assert final.status == S.assigned
        assert final.version == 3
        assert final.assigned_agent_id == winners[0]

    history = await OrderLifecycle(session=session, settings=settings).history(
        order_id, principal=principal_for(await make_user(Capability.USER | Capability.ADMIN))
    )
    assert [h.to_status for h in history].count("ASSIGNED") == 1


@pytest.mark.asyncio
async def test_unavailable_agent_releases_assigned_orders(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    delivery = DeliveryAssignment(session=session, settings=settings)
    orders = OrderLifecycle(session=session, settings=settings)
    agent = await _available_agent(session, settings, make_user)
    as_agent = principal_for(agent)

    waiting = await delivery.assign((await _confirmed_order(session, settings, make_user)).id)
    underway = await delivery.assign((await _confirmed_order(session, settings, make_user)).id)
    await orders.transition(underway.id, S.out_for_delivery, principal=as_agent)

    released = await delivery.set_availability(agent.id, False, principal=as_agent)
    assert released == [waiting.id]

    admin = principal_for(await make_user(Capability.USER | Capability.ADMIN))
    back = await orders.get(waiting.id, principal=admin)
    assert back.status == S.confirmed
    assert back.assigned_agent_id is None
    assert back.version == 4

    kept = await orders.get(underway.id, principal=admin)
    assert kept.status == S.out_for_delivery
    assert kept.assigned_agent_id == agent.id

    history = await orders.history(waiting.id, principal=admin)
    assert (history[-1].from_status, history[-1].to_status) == ("ASSIGNED", "CONFIRMED")
    events = await AuditRepo(session).list_for_entity(waiting.id)
    assert [e.event_type for e in events] == ["ASSIGNMENT_RELEASED"]
    assert events[0].entity_type == EntityType.order


@pytest.mark.asyncio
async def test_availability_is_self_service_or_admin(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    delivery = DeliveryAssignment(session=session, settings=settings)
    agent = await make_user(AGENT)
    other = await make_user(AGENT)
    customer = await make_user()
    admin = await make_user(Capability.USER | Capability.ADMIN)

    with pytest.raises(Forbidden):
        await delivery.set_availability(agent.id, True, principal=principal_for(other))
    with pytest.raises(Forbidden):
        # ADMIN may toggle, but only delivery agents join the pool.
        await delivery.set_availability(customer.id, True, principal=principal_for(admin))
    assert await delivery.set_availability(agent.id, True, principal=principal_for(admin)) == []


@pytest.mark.asyncio
async def test_sweep_is_a_noop_under_manual_trigger(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    await _available_agent(session, settings, make_user)
    admin = principal_for(await make_user(Capability.USER | Capability.ADMIN))
    delivery = DeliveryAssignment(session=session, settings=settings)
    assert await delivery.sweep(principal=admin, now=utcnow() + timedelta(hours=1)) == {}


@pytest.mark.asyncio
async def test_heartbeat_sweep_releases_silent_agents(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    settings = settings.model_copy(update={"agent_unavailability_trigger": "heartbeat"})
    delivery = DeliveryAssignment(session=session, settings=settings)
    silent = await _available_agent(session, settings, make_user)
    order = await delivery.assign((await _confirmed_order(session, settings, make_user)).id)

    live = await _available_agent(session, settings, make_user)
    agents = AgentRepo(session)
    later = utcnow() + timedelta(seconds=settings.agent_heartbeat_timeout_seconds + 30)
    await agents.touch(live.id, now=later)
    await session.commit()

    admin = principal_for(await make_user(Capability.USER | Capability.ADMIN))
    result = await delivery.sweep(principal=admin, now=later)
    assert result == {str(silent.id): [order.id]}

    assert not (await agents.get(silent.id)).available
    assert (await agents.get(live.id)).available


@pytest.mark.asyncio
async def test_heartbeat_requires_delivery_agent(
    session: AsyncSession, settings: Settings, make_user: MakeUser
) -> None:
    delivery = DeliveryAssignment(session=session, settings=settings)
    with pytest.raises(Forbidden):
        await delivery.heartbeat(principal=principal_for(await make_user()))
    agent = await make_user(AGENT)
    beat = await delivery.heartbeat(principal=principal_for(agent))
    assert beat.last_heartbeat_at is not None


@pytest.mark.asyncio
async def test_agent_going_offline_mid_assignment_is_not_bound(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
    make_user: MakeUser,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first = await _available_agent(session, settings, make_user)
    second = await _available_agent(session, settings, make_user)
    leaving, staying = sorted([first.id, second.id])
    order = await _confirmed_order(session, settings, make_user)
    admin = principal_for(await make_user(Capability.USER | Capability.ADMIN))

    list_available = AgentRepo.list_available
    toggled: list[list] = []

    async def pool_then_toggle(self):
        pool = await list_available(self)
        if not toggled:
            # Another request takes the picked agent offline after the pool was read.
            async with sessionmaker() as other:
                toggled.append(
                    await DeliveryAssignment(session=other, settings=settings).set_availability(
                        leaving, False, principal=admin
                    )
                )
        return pool

    monkeypatch.setattr(AgentRepo, "list_available", pool_then_toggle)
    assigned = await DeliveryAssignment(session=session, settings=settings).assign(order.id)

    assert toggled == [[]]
    assert assigned.status == S.assigned
    assert assigned.assigned_agent_id == staying
    assert assigned.version == 3


@pytest.mark.asyncio
async def test_sole_agent_going_offline_mid_assignment_leaves_order_confirmed(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
    make_user: MakeUser,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    agent = await _available_agent(session, settings, make_user)
    order = await _confirmed_order(session, settings, make_user)
    admin = principal_for(await make_user(Capability.USER | Capability.ADMIN))

    list_available = AgentRepo.list_available
    toggled: list[bool] = []

    async def pool_then_toggle(self):
        pool = await list_available(self)
        if not toggled:
            async with sessionmaker() as other:
                await DeliveryAssignment(session=other, settings=settings).set_availability(
                    agent.id, False, principal=admin
                )
            toggled.append(True)
        return pool

    monkeypatch.setattr(AgentRepo, "list_available", pool_then_toggle)
    with pytest.raises(NoAgentAvailable):
        await DeliveryAssignment(session=session, settings=settings).assign(order.id)

    after = await OrderLifecycle(session=session, settings=settings).get(order.id, principal=admin)
    assert after.status == S.confirmed
    assert after.assigned_agent_id is None
    assert after.version == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["go_online", "go_offline", "heartbeat", "sweep"])
async def test_expired_principal_cannot_touch_the_pool(
    session: AsyncSession, settings: Settings, make_user: MakeUser, operation: str
) -> None:
    staff = await make_user(AGENT | Capability.ADMIN)
    expired = principal_for(staff, expires_at=datetime.now(tz=UTC) - timedelta(seconds=1))
    delivery = DeliveryAssignment(session=session, settings=settings)
    calls = {
        "go_online": lambda: delivery.set_availability(staff.id, True, principal=expired),
        "go_offline": lambda: delivery.set_availability(staff.id, False, principal=expired),
        "heartbeat": lambda: delivery.heartbeat(principal=expired),
        "sweep": lambda: delivery.sweep(principal=expired),
    }

    with pytest.raises(Unauthenticated):
        await calls[operation]()
    assert await AgentRepo(session).get(staff.id) is None
