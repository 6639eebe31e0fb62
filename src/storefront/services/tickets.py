"""
storefront.services.tickets

Support-ticket lifecycle service.

Responsibilities:
- Open tickets and append conversation messages.
- Claim (first claim wins), resolve, close and reopen through version-checked writes.
- Enforce the reopen limit.
"""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.gate import IsSubject, any_of, ensure, ensure_authenticated
from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import EntityType, StatusChange, Ticket, TicketMessage, TicketStatus
from storefront.db.repositories.history import HistoryRepo
from storefront.db.repositories.tickets import TicketRepo
from storefront.errors import AlreadyClaimed, Conflict, Forbidden, NotFound, StaleVersion
from storefront.lifecycle.tickets import check_reopen, check_transition
from storefront.observability.logging import get_logger
from storefront.settings import Settings

log = get_logger(__name__)

# Past the first claim; a reopen clears the claim and returns the ticket to OPEN.
_CLAIMED_STATUSES = frozenset({TicketStatus.in_progress, TicketStatus.resolved})


def _subject(value: uuid.UUID | None) -> str | None:
    return None if value is None else str(value)


def _is_claimed(ticket: Ticket) -> bool:
    return ticket.assigned_agent_id is not None or ticket.status in _CLAIMED_STATUSES


class TicketLifecycle:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._tickets = TicketRepo(session)
        self._history = HistoryRepo(session)

    async def open(self, *, principal: Principal, subject: str, body: str) -> Ticket:
        ensure(principal, Capability.USER)
        ticket = await self._tickets.create(owner_id=principal.subject_id, subject=subject)
        await self._tickets.add_message(ticket_id=ticket.id, author_id=principal.subject, body=body)
        await self._session.commit()
        log.info("ticket_opened", ticket_id=str(ticket.id), owner_id=principal.subject)
        return ticket

    async def get(self, ticket_id: uuid.UUID, *, principal: Principal) -> Ticket:
        ensure_authenticated(principal)
        ticket = await self._load(ticket_id)
        visible = any_of(
            IsSubject(_subject(ticket.owner_id)),
            Capability.SUPPORT_AGENT,
            Capability.ADMIN,
        )
        try:
            ensure(principal, visible)
        except Forbidden:
            raise NotFound("Ticket not found") from None
        return ticket

    async def messages(self, ticket_id: uuid.UUID, *, principal: Principal) -> list[TicketMessage]:
        await self.get(ticket_id, principal=principal)
        return await self._tickets.list_messages(ticket_id)

    async def history(self, ticket_id: uuid.UUID, *, principal: Principal) -> list[StatusChange]:
        await self.get(ticket_id, principal=principal)
        return await self._history.list_for(EntityType.ticket, ticket_id)

    async def add_message(
        self, ticket_id: uuid.UUID, body: str, *, principal: Principal
    ) -> TicketMessage:
        ensure_authenticated(principal)
        ticket = await self._load(ticket_id)
        ensure(
            principal,
            any_of(
                IsSubject(_subject(ticket.owner_id)),
                IsSubject(_subject(ticket.assigned_agent_id)),
                Capability.ADMIN,
            ),
        )
        if ticket.status == TicketStatus.closed:
            raise Conflict("ticket is closed")
        msg = await self._tickets.add_message(
            ticket_id=ticket_id, author_id=principal.subject, body=body
        )
        await self._session.commit()
        return msg

    async def claim(self, ticket_id: uuid.UUID, *, principal: Principal) -> Ticket:
        ensure(principal, Capability.SUPPORT_AGENT)
        ticket = await self._load(ticket_id)
        if _is_claimed(ticket):
            raise AlreadyClaimed(f"ticket {ticket_id} is claimed by another agent")
        check_transition(ticket, TicketStatus.in_progress, principal)

        version = ticket.version
        won = await self._tickets.compare_and_set(
            ticket_id,
            expected_version=version,
            expected_status=TicketStatus.open,
            status=TicketStatus.in_progress,
            assigned_agent_id=principal.subject_id,
        )
        if not won:
            await self._session.rollback()
            latest = await self._load(ticket_id)
            if _is_claimed(latest):
                raise AlreadyClaimed(f"ticket {ticket_id} is claimed by another agent")
            raise StaleVersion(f"ticket {ticket_id} changed since version {version}")

        await self._history.append(
            entity_type=EntityType.ticket,
            entity_id=ticket_id,
            from_status=TicketStatus.open,
            to_status=TicketStatus.in_progress,
            version=version + 1,
            actor=principal.subject,
        )
        await self._session.commit()
        log.info("ticket_claimed", ticket_id=str(ticket_id), agent_id=principal.subject)
        return await self._load(ticket_id)

    async def transition(
        self, ticket_id: uuid.UUID, target: TicketStatus, *, principal: Principal
    ) -> Ticket:
        # Claim and reopen carry extra rules; route them to their own operations.
        if target == TicketStatus.in_progress:
            return await self.claim(ticket_id, principal=principal)
        if target in (TicketStatus.reopened, TicketStatus.open):
            return await self.reopen(ticket_id, principal=principal)

        ensure_authenticated(principal)
        ticket = await self._load(ticket_id)
        requirement = check_transition(ticket, target, principal)
        current, version = ticket.status, ticket.version
        await self._write(
            ticket_id,
            version=version,
            current=current,
            hops=[(current, target)],
            actor=principal.subject,
            status=target,
        )
        log.info(
            "ticket_transition",
            ticket_id=str(ticket_id),
            from_status=str(current),
            to_status=str(target),
            version=version + 1,
            actor=principal.subject,
            requirement=requirement.describe(),
        )
        return await self._load(ticket_id)

    async def resolve(self, ticket_id: uuid.UUID, *, principal: Principal) -> Ticket:
        return await self.transition(ticket_id, TicketStatus.resolved, principal=principal)

    async def close(self, ticket_id: uuid.UUID, *, principal: Principal) -> Ticket:
        return await self.transition(ticket_id, TicketStatus.closed, principal=principal)

    async def reopen(self, ticket_id: uuid.UUID, *, principal: Principal) -> Ticket:
        ensure_authenticated(principal)
        ticket = await self._load(ticket_id)
        check_reopen(ticket, principal, max_reopens=self._settings.max_ticket_reopens)

        version, reopen_count = ticket.version, ticket.reopen_count
        # CLOSED -> REOPENED -> OPEN in one write; the claim is released for a fresh triage.
        await self._write(
            ticket_id,
            version=version,
            current=TicketStatus.closed,
            hops=[
                (TicketStatus.closed, TicketStatus.reopened),
                (TicketStatus.reopened, TicketStatus.open),
            ],
            actor=principal.subject,
            status=TicketStatus.open,
            assigned_agent_id=None,
            reopen_count=reopen_count + 1,
        )
        log.info(
            "ticket_reopened",
            ticket_id=str(ticket_id),
            reopen_count=reopen_count + 1,
            actor=principal.subject,
        )
        return await self._load(ticket_id)

    async def _write(
        self,
        ticket_id: uuid.UUID,
        *,
        version: int,
        current: TicketStatus,
        hops: list[tuple[TicketStatus, TicketStatus]],
        actor: str,
        **values: object,
    ) -> None:
        won = await self._tickets.compare_and_set(
            ticket_id, expected_version=version, expected_status=current, **values
        )
        if not won:
            await self._session.rollback()
            log.warning("ticket_write_conflict", ticket_id=str(ticket_id), expected_version=version)
            raise StaleVersion(f"ticket {ticket_id} changed since version {version}")
        for from_status, to_status in hops:
            await self._history.append(
                entity_type=EntityType.ticket,
                entity_id=ticket_id,
                from_status=from_status,
                to_status=to_status,
                version=version + 1,
                actor=actor,
            )
        await self._session.commit()

    async def _load(self, ticket_id: uuid.UUID) -> Ticket:
        # Always re-read: conditional writes bypass the identity map.
        ticket = await self._tickets.get(ticket_id, refresh=True)
        if ticket is None:
            raise NotFound("Ticket not found")
        return ticket


# --- Module Notes -----------------------------------------------------------
# Mirrors `services.orders.OrderLifecycle`: rules come from `lifecycle.tickets`, and every
# status write is a version-checked UPDATE followed by history rows in the same transaction.
