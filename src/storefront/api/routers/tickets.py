"""
storefront.api.routers.tickets

Support-ticket endpoints.

Responsibilities:
- Open tickets and exchange messages.
- Claim, status updates (resolve/close) and reopen.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from storefront.api.deps import ticket_service
from storefront.api.envelope import Envelope, ok
from storefront.api.routers.orders import StatusChangeResponse
from storefront.auth.deps import get_principal
from storefront.auth.models import Principal
from storefront.db.models import TicketStatus
from storefront.services.tickets import TicketLifecycle

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    subject: str
    status: TicketStatus
    assigned_agent_id: uuid.UUID | None
    reopen_count: int
    version: int
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    author_id: str
    body: str
    created_at: datetime


class OpenTicketRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    body: str = Field(min_length=1, max_length=8000)


class MessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=8000)


class TicketStatusPatch(BaseModel):
    status: TicketStatus


@router.post("", response_model=Envelope[TicketResponse], status_code=201)
async def open_ticket(
    body: OpenTicketRequest,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    ticket = await tickets.open(principal=principal, subject=body.subject, body=body.body)
    return ok(TicketResponse.model_validate(ticket))


@router.get("/{ticket_id}", response_model=Envelope[TicketResponse])
async def get_ticket(
    ticket_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    return ok(TicketResponse.model_validate(await tickets.get(ticket_id, principal=principal)))


@router.get("/{ticket_id}/messages", response_model=Envelope[list[MessageResponse]])
async def list_messages(
    ticket_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    rows = await tickets.messages(ticket_id, principal=principal)
    return ok([MessageResponse.model_validate(m) for m in rows])


@router.post("/{ticket_id}/messages", response_model=Envelope[MessageResponse], status_code=201)
async def add_message(
    ticket_id: uuid.UUID,
    body: MessageRequest,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    msg = await tickets.add_message(ticket_id, body.body, principal=principal)
    return ok(MessageResponse.model_validate(msg))


@router.get("/{ticket_id}/history", response_model=Envelope[list[StatusChangeResponse]])
async def get_ticket_history(
    ticket_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    rows = await tickets.history(ticket_id, principal=principal)
    return ok([StatusChangeResponse.model_validate(r) for r in rows])


@router.post("/{ticket_id}/claim", response_model=Envelope[TicketResponse])
async def claim_ticket(
    ticket_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    return ok(TicketResponse.model_validate(await tickets.claim(ticket_id, principal=principal)))


@router.patch("/{ticket_id}/status", response_model=Envelope[TicketResponse])
async def update_ticket_status(
    ticket_id: uuid.UUID,
    body: TicketStatusPatch,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    ticket = await tickets.transition(ticket_id, body.status, principal=principal)
    return ok(TicketResponse.model_validate(ticket))


@router.post("/{ticket_id}/reopen", response_model=Envelope[TicketResponse])
async def reopen_ticket(
    ticket_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    tickets: TicketLifecycle = Depends(ticket_service),
) -> dict:
    return ok(TicketResponse.model_validate(await tickets.reopen(ticket_id, principal=principal)))
