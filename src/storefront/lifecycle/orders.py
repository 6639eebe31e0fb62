"""
storefront.lifecycle.orders

Order state machine.

Responsibilities:
- Define the order adjacency table; states without exits are terminal.
- Map each target state to the requirement the acting principal must satisfy.
- Apply the return-window policy against the DELIVERED timestamp.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

from storefront.auth.gate import IsSubject, Requirement, any_of, ensure, ensure_authenticated
from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import Order, OrderStatus
from storefront.errors import Forbidden, IllegalTransition

S = OrderStatus

ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    S.placed: frozenset({S.confirmed, S.cancelled}),
    S.confirmed: frozenset({S.assigned, S.cancelled}),
    S.assigned: frozenset({S.out_for_delivery}),
    S.out_for_delivery: frozenset({S.delivered}),
    S.delivered: frozenset({S.returned}),
    S.cancelled: frozenset(),
    S.returned: frozenset(),
}

# The one backward edge: an agent going unavailable hands its ASSIGNED orders back.
# It is only taken by delivery assignment, never requested by a caller.
RELEASE_EDGE = (S.assigned, S.confirmed)

TIMESTAMP_FIELDS: Mapping[OrderStatus, str] = {
    S.confirmed: "confirmed_at",
    S.assigned: "assigned_at",
    S.out_for_delivery: "out_for_delivery_at",
    S.delivered: "delivered_at",
    S.cancelled: "cancelled_at",
    S.returned: "returned_at",
}


def is_permitted(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def _subject(value: object) -> str | None:
    return None if value is None else str(value)


def requirement_for(order: Order, target: OrderStatus) -> Requirement:
    match target:
        case S.confirmed:
            return any_of(Capability.ADMIN, Capability.SUPPORT_AGENT)
        case S.out_for_delivery | S.delivered:
            return any_of(IsSubject(_subject(order.assigned_agent_id)), Capability.ADMIN)
        case S.cancelled:
            return any_of(IsSubject(_subject(order.owner_id)), Capability.ADMIN)
        case S.returned:
            return IsSubject(_subject(order.owner_id))
        case S.assigned:
            raise Forbidden("orders are assigned by delivery assignment only")
    raise IllegalTransition(order.status, target)


def within_return_window(
    delivered_at: datetime | None, *, now: datetime, window: timedelta
) -> bool:
    return delivered_at is not None and now - delivered_at <= window


def check_transition(
    order: Order,
    target: OrderStatus,
    principal: Principal | None,
    *,
    now: datetime,
    return_window: timedelta,
) -> Requirement:
    """
    Validate a caller-requested transition, raising the first failure found:
    Unauthenticated, then IllegalTransition, then Forbidden.

    `now` is naive UTC to match stored timestamps.
    """

    ensure_authenticated(principal)
    if not is_permitted(order.status, target):
        raise IllegalTransition(order.status, target)
    if target == S.returned and not within_return_window(
        order.delivered_at, now=now, window=return_window
    ):
        raise IllegalTransition(order.status, target, "return window has closed")
    requirement = requirement_for(order, target)
    ensure(principal, requirement)
    return requirement


# --- Module Notes -----------------------------------------------------------
# `check_transition` is deliberately side-effect free; `services.orders.OrderLifecycle`
# calls it against a freshly read row and then performs the conditional write.
