from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models import Ticket, TicketMessage, TicketStatus, utcnow


class TicketRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, owner_id: uuid.UUID, subject: str) -> Ticket:
        ticket = Ticket(
            owner_id=owner_id,
            subject=subject,
            status=TicketStatus.open,
            assigned_agent_id=None,
            reopen_count=0,
            version=1,
        )
        self._session.add(ticket)
        await self._session.flush()
        return ticket

    async def get(self, ticket_id: uuid.UUID, *, refresh: bool = False) -> Ticket | None:
        return await self._session.get(Ticket, ticket_id, populate_existing=refresh)

    async def compare_and_set(
        self,
        ticket_id: uuid.UUID,
        *,
        expected_version: int,
        expected_status: TicketStatus | None = None,
        **values: Any,
    ) -> bool:
        conditions = [Ticket.id == ticket_id, Ticket.version == expected_version]
        if expected_status is not None:
            conditions.append(Ticket.status == expected_status)
        stmt = (
            update(Ticket)
            .where(*conditions)
            .values(version=expected_version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_message(
        self, *, ticket_id: uuid.UUID, author_id: str, body: str
    ) -> TicketMessage:
        # Messages are append-only child rows; they never touch the ticket's version.
        msg = TicketMessage(ticket_id=ticket_id, author_id=author_id, body=body)
        self._session.add(msg)
        await self._session.flush()
        return msg

    async def list_messages(self, ticket_id: uuid.UUID) -> list[TicketMessage]:
        stmt = (
            select(TicketMessage)
            .where(TicketMessage.ticket_id == ticket_id)
            .order_by(TicketMessage.id)
        )
        return list((await self._session.execute(stmt)).scalars().all())
