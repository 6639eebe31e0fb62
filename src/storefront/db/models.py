"""
storefront.db.models

Persistence schema for the storefront core.

Responsibilities:
- Define ORM models for the shared mutable records:
  - User: credentials, capability mask, embedded cart
  - Order: line-item snapshot, status, assigned agent, version, per-transition timestamps
  - Ticket / TicketMessage: support conversation with status, claim and reopen counter
  - DeliveryAgent: the availability pool used by assignment
- Define the append-only logs:
  - StatusChange: one row per accepted lifecycle transition
  - AuditEvent: administrative actions (role grants, notes, releases)
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


def utcnow() -> datetime:
    # Persist naive UTC timestamps; SQLite drops tzinfo anyway.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class OrderStatus(enum.StrEnum):
    placed = "PLACED"
    confirmed = "CONFIRMED"
    assigned = "ASSIGNED"
    out_for_delivery = "OUT_FOR_DELIVERY"
    delivered = "DELIVERED"
    cancelled = "CANCELLED"
    returned = "RETURNED"


class TicketStatus(enum.StrEnum):
    open = "OPEN"
    in_progress = "IN_PROGRESS"
    resolved = "RESOLVED"
    closed = "CLOSED"
    reopened = "REOPENED"


class EntityType(enum.StrEnum):
    user = "USER"
    order = "ORDER"
    ticket = "TICKET"
    agent = "AGENT"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    capabilities: Mapped[int] = mapped_column(nullable=False, default=1)

    # Ordered list of {product_id, size, color, quantity}.
    cart: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), nullable=False, index=True)
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True, index=True
    )
    # Bumped by every accepted write; conditional updates compare against it.
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    placed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    out_for_delivery_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("ix_orders_agent_status", "assigned_agent_id", "status"),)


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    subject: Mapped[str] = mapped_column(String(256), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(Enum(TicketStatus), nullable=False, index=True)
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True, index=True
    )
    reopen_count: Mapped[int] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class TicketMessage(Base):
    __tablename__ = "ticket_messages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("tickets.id"), nullable=False, index=True
    )
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class DeliveryAgent(Base):
    __tablename__ = "delivery_agents"

    agent_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), primary_key=True
    )
    available: Mapped[bool] = mapped_column(nullable=False, default=False, index=True)
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(nullable=True)

    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class StatusChange(Base):
    __tablename__ = "status_changes"

    # Integer PK gives a stable append order for history reads.
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)

    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)  # user id / "system"

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("ix_status_changes_entity", "entity_type", "entity_id", "id"),)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)

    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_audit_entity_created", "entity_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Status columns are only ever written by the lifecycle services, always through a
# version-checked UPDATE (see `db.repositories.orders` / `db.repositories.tickets`).
