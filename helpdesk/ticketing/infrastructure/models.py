"""
Ticketing Infrastructure Models
===============================

SQLAlchemy ORM models for the ticketing module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infrastructure.database import Base, UTCDateTime
from helpdesk.config import Priority, TicketStatus, UserRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """
    Database model for the user directory.

    Maps to the 'users' table. Read-only from this module's point of view.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[UserRole] = mapped_column(String(50), nullable=False, default=UserRole.REQUESTER)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. `version` is bumped by SQLAlchemy on every
    UPDATE; a stale write matches zero rows and raises StaleDataError.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Human-facing number
    number: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)

    # Ticket content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Participants
    requester_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    assignee_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)

    # Lifecycle
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.TODO)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Resolution clock
    sla_started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_target: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    total_paused_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # First-response clock
    first_response_target: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_first_response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Breach scanner lookups
    __table_args__ = (
        Index("ix_tickets_status_overdue", "status", "is_overdue"),
        Index("ix_tickets_status_first_response", "status", "is_first_response_breached"),
    )


class MessageModel(Base):
    """
    Database model for ticket messages.

    Maps to the 'ticket_messages' table. Rows are append-only.
    """
    __tablename__ = "ticket_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    sender_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_system_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attachments: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Set on copies created by a merge
    merged_from_ticket_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class SLAPolicyModel(Base):
    """
    Database model for SLA policies.

    Maps to the 'sla_policies' table, one row per priority.
    """
    __tablename__ = "sla_policies"

    priority: Mapped[Priority] = mapped_column(String(50), primary_key=True)
    resolution_budget_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    response_budget_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class OutboxEventModel(Base):
    """
    Database model for the transactional outbox.

    Maps to the 'outbox_events' table. Rows are written in the same
    transaction as the ticket change they describe.
    """
    __tablename__ = "outbox_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    aggregate_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    # Delivery tracking
    dispatched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    dead_lettered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
