"""
storefront.api.routers.agents

Delivery-agent availability endpoints.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from storefront.api.deps import delivery_service
from storefront.api.envelope import Envelope, ok
from storefront.auth.deps import get_principal
from storefront.auth.models import Principal
from storefront.services.delivery import DeliveryAssignment

router = APIRouter(prefix="/agents", tags=["agents"])


class AvailabilityRequest(BaseModel):
    available: bool


class AvailabilityResponse(BaseModel):
    agent_id: uuid.UUID
    available: bool
    released_orders: list[uuid.UUID]


@router.put("/me/availability", response_model=Envelope[AvailabilityResponse])
async def set_my_availability(
    body: AvailabilityRequest,
    principal: Principal = Depends(get_principal),
    delivery: DeliveryAssignment = Depends(delivery_service),
) -> dict:
    agent_id = principal.subject_id
    released = await delivery.set_availability(agent_id, body.available, principal=principal)
    return ok(
        AvailabilityResponse(agent_id=agent_id, available=body.available, released_orders=released)
    )


@router.post("/me/heartbeat", response_model=Envelope[dict[str, str]])
async def heartbeat(
    principal: Principal = Depends(get_principal),
    delivery: DeliveryAssignment = Depends(delivery_service),
) -> dict:
    agent = await delivery.heartbeat(principal=principal)
    last_seen = agent.last_heartbeat_at.isoformat() if agent.last_heartbeat_at else ""
    return ok({"agent_id": str(agent.agent_id), "last_heartbeat_at": last_seen})


@router.put("/{agent_id}/availability", response_model=Envelope[AvailabilityResponse])
async def set_agent_availability(
    agent_id: uuid.UUID,
    body: AvailabilityRequest,
    principal: Principal = Depends(get_principal),
    delivery: DeliveryAssignment = Depends(delivery_service),
) -> dict:
    released = await delivery.set_availability(agent_id, body.available, principal=principal)
    return ok(
        AvailabilityResponse(agent_id=agent_id, available=body.available, released_orders=released)
    )


@router.post("/sweep", response_model=Envelope[dict[str, list[uuid.UUID]]])
async def sweep_stale_agents(
    principal: Principal = Depends(get_principal),
    delivery: DeliveryAssignment = Depends(delivery_service),
) -> dict:
    return ok(await delivery.sweep(principal=principal))
