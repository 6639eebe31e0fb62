"""
storefront.api.routers.orders

Order endpoints.

Responsibilities:
- Checkout (`POST /orders`) and order reads for related callers.
- Lifecycle transitions: confirm, status updates, cancel, return.
- Dispatcher-only assignment trigger and administrative notes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from storefront.api.deps import delivery_service, order_service
from storefront.api.envelope import Envelope, ok
from storefront.auth.deps import get_principal, require
from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import OrderStatus
from storefront.services.delivery import DeliveryAssignment
from storefront.services.orders import OrderLifecycle

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    items: list[dict[str, Any]]
    status: OrderStatus
    assigned_agent_id: uuid.UUID | None
    version: int
    placed_at: datetime
    confirmed_at: datetime | None
    assigned_at: datetime | None
    out_for_delivery_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    returned_at: datetime | None


class StatusChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: str
    to_status: str
    version: int
    actor: str
    created_at: datetime


class StatusPatch(BaseModel):
    status: OrderStatus


class NoteRequest(BaseModel):
    note: str = Field(min_length=1, max_length=4000)


@router.post("", response_model=Envelope[OrderResponse], status_code=201)
async def checkout(
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    order = await orders.checkout(principal=principal)
    return ok(OrderResponse.model_validate(order))


@router.get("/{order_id}", response_model=Envelope[OrderResponse])
async def get_order(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    return ok(OrderResponse.model_validate(await orders.get(order_id, principal=principal)))


@router.get("/{order_id}/history", response_model=Envelope[list[StatusChangeResponse]])
async def get_order_history(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    rows = await orders.history(order_id, principal=principal)
    return ok([StatusChangeResponse.model_validate(r) for r in rows])


@router.post("/{order_id}/confirm", response_model=Envelope[OrderResponse])
async def confirm_order(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    return ok(OrderResponse.model_validate(await orders.confirm(order_id, principal=principal)))


@router.post("/{order_id}/assign", response_model=Envelope[OrderResponse])
async def assign_order(
    order_id: uuid.UUID,
    principal: Principal = Depends(require(Capability.ADMIN)),
    delivery: DeliveryAssignment = Depends(delivery_service),
) -> dict:
    # Dispatcher trigger: the caller cannot choose the agent, only start the assignment.
    order = await delivery.assign(order_id, actor=principal.subject)
    return ok(OrderResponse.model_validate(order))


@router.patch("/{order_id}/status", response_model=Envelope[OrderResponse])
async def update_order_status(
    order_id: uuid.UUID,
    body: StatusPatch,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    order = await orders.transition(order_id, body.status, principal=principal)
    return ok(OrderResponse.model_validate(order))


@router.post("/{order_id}/cancel", response_model=Envelope[OrderResponse])
async def cancel_order(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    return ok(OrderResponse.model_validate(await orders.cancel(order_id, principal=principal)))


@router.post("/{order_id}/return", response_model=Envelope[OrderResponse])
async def return_order(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    order = await orders.request_return(order_id, principal=principal)
    return ok(OrderResponse.model_validate(order))


@router.post("/{order_id}/notes", response_model=Envelope[dict[str, Any]], status_code=201)
async def add_order_note(
    order_id: uuid.UUID,
    body: NoteRequest,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    ev = await orders.add_note(order_id, body.note, principal=principal)
    return ok({"id": str(ev.id), "event_type": ev.event_type, "details": ev.details})


@router.get("/{order_id}/notes", response_model=Envelope[list[dict[str, Any]]])
async def list_order_notes(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycle = Depends(order_service),
) -> dict:
    return ok(await orders.notes(order_id, principal=principal))


# --- Module Notes -----------------------------------------------------------
# Entity-dependent rules (owner, assigned agent) are enforced in the services; only the
# dispatcher trigger is gated at the route.
