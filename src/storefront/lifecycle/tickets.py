"""
storefront.lifecycle.tickets

Support-ticket state machine.

Responsibilities:
- Define the ticket adjacency table, including the CLOSED -> REOPENED -> OPEN path.
- Map each target state to the requirement the acting principal must satisfy.
"""

from __future__ import annotations

from collections.abc import Mapping

from storefront.auth.gate import Has, IsSubject, Requirement, any_of, ensure, ensure_authenticated
from storefront.auth.models import Principal
from storefront.auth.roles import Capability
from storefront.db.models import Ticket, TicketStatus
from storefront.errors import IllegalTransition, ReopenLimitExceeded

T = TicketStatus

TICKET_TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
    T.open: frozenset({T.in_progress}),
    T.in_progress: frozenset({T.resolved}),
    T.resolved: frozenset({T.closed}),
    T.closed: frozenset({T.reopened}),
    T.reopened: frozenset({T.open}),
}


def is_permitted(current: TicketStatus, target: TicketStatus) -> bool:
    return target in TICKET_TRANSITIONS.get(current, frozenset())


def _subject(value: object) -> str | None:
    return None if value is None else str(value)


def requirement_for(ticket: Ticket, target: TicketStatus) -> Requirement:
    agent = IsSubject(_subject(ticket.assigned_agent_id))
    owner = IsSubject(_subject(ticket.owner_id))
    match target:
        case T.in_progress:
            return Has(Capability.SUPPORT_AGENT)
        case T.resolved:
            return any_of(agent, Capability.ADMIN)
        case T.closed:
            return any_of(owner, agent, Capability.ADMIN)
        case T.reopened | T.open:
            return owner
    raise IllegalTransition(ticket.status, target)


def check_transition(
    ticket: Ticket, target: TicketStatus, principal: Principal | None
) -> Requirement:
    ensure_authenticated(principal)
    if not is_permitted(ticket.status, target):
        raise IllegalTransition(ticket.status, target)
    requirement = requirement_for(ticket, target)
    ensure(principal, requirement)
    return requirement


def check_reopen(ticket: Ticket, principal: Principal | None, *, max_reopens: int) -> Requirement:
    requirement = check_transition(ticket, T.reopened, principal)
    if ticket.reopen_count >= max_reopens:
        raise ReopenLimitExceeded(f"ticket was already reopened {ticket.reopen_count} time(s)")
    return requirement


# --- Module Notes -----------------------------------------------------------
# REOPENED is a pass-through state: `services.tickets.TicketLifecycle.reopen` records both
# hops in one conditional write and leaves the ticket OPEN and unclaimed.
