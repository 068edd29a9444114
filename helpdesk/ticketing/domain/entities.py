"""
Ticketing Domain Entities
=========================

Pure Python domain entities for the ticket lifecycle and SLA clocks.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Time is never read
from the wall clock here: callers pass `now` explicitly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from helpdesk.config import (
    Priority, TicketStatus, UserRole,
    TERMINAL_STATUSES, STAFF_ROLES
)


@dataclass
class Ticket:
    """
    Ticket aggregate root.

    Holds two independent clocks:
    - resolution clock: sla_started_at / sla_target, paused while WAITING_VENDOR
    - first-response clock: first_response_target / first_response_at

    Breach flags (is_overdue, is_first_response_breached) are write-once.
    """

    # Core attributes
    id: str
    title: str
    description: str
    requester_id: str
    status: TicketStatus
    priority: Priority

    # Timestamps
    created_at: datetime
    updated_at: datetime

    number: Optional[str] = None
    assignee_id: Optional[str] = None

    # Resolution clock
    sla_started_at: Optional[datetime] = None
    sla_target: Optional[datetime] = None
    total_paused_minutes: int = 0
    last_paused_at: Optional[datetime] = None
    is_overdue: bool = False

    # First-response clock
    first_response_target: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    is_first_response_breached: bool = False

    resolved_at: Optional[datetime] = None

    # Optimistic concurrency counter, owned by the store
    version: int = 0

    def __post_init__(self):
        """Validate ticket on initialization."""
        if (self.sla_started_at is None) != (self.sla_target is None):
            raise ValueError("sla_target must be set iff sla_started_at is set")

        if self.total_paused_minutes < 0:
            raise ValueError("total_paused_minutes cannot be negative")

    @property
    def display_number(self) -> str:
        """Human-facing number, falling back to the first id segment."""
        return self.number or self.id.split("-")[0]

    @property
    def is_terminal(self) -> bool:
        """Resolved and cancelled tickets accept no further timer mutation."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_paused(self) -> bool:
        """Check if the clocks are currently frozen."""
        return self.status == TicketStatus.WAITING_VENDOR

    @property
    def has_sla_clock(self) -> bool:
        """Check if the resolution clock has started."""
        return self.sla_started_at is not None

    def current_pause(self, now: datetime) -> timedelta:
        """Length of the pause in progress (zero when not paused)."""
        if not self.is_paused or self.last_paused_at is None:
            return timedelta(0)
        return max(timedelta(0), now - self.last_paused_at)

    def effective_first_response_target(self, now: datetime) -> Optional[datetime]:
        """
        First-response deadline as it would stand if the ticket resumed now.

        While paused the stored target has not yet been shifted, so the
        pause in progress is added on top.
        """
        if self.first_response_target is None:
            return None
        return self.first_response_target + self.current_pause(now)

    def is_resolution_breached_at(self, now: datetime) -> bool:
        """Check if the resolution deadline has passed at `now`."""
        return self.sla_target is not None and now > self.sla_target

    def is_first_response_breached_at(self, now: datetime) -> bool:
        """Check if the first-response deadline has passed at `now`."""
        return (
            self.first_response_at is None
            and self.first_response_target is not None
            and now > self.first_response_target
        )

    def mark_overdue(self) -> bool:
        """
        Flip the resolution breach flag.

        Returns:
            True if the flag changed, False if it was already set
        """
        if self.is_overdue:
            return False
        self.is_overdue = True
        return True

    def mark_first_response_breached(self) -> bool:
        """
        Flip the first-response breach flag.

        Returns:
            True if the flag changed, False if it was already set
        """
        if self.is_first_response_breached:
            return False
        self.is_first_response_breached = True
        return True

    def mark_first_response(self, timestamp: datetime) -> bool:
        """Stamp the first staff response; never overwrites an existing stamp."""
        if self.first_response_at is not None:
            return False
        self.first_response_at = timestamp
        return True


@dataclass
class Message:
    """
    Ticket message entity.

    Immutable once stored. System messages are the audit trail written by
    the engine itself.
    """

    id: str
    ticket_id: str
    sender_id: str
    content: str
    created_at: datetime
    is_system_message: bool = False
    attachments: List[str] = field(default_factory=list)
    merged_from_ticket_id: Optional[str] = None


@dataclass
class User:
    """Read-only view of a user as returned by the identity provider."""

    id: str
    full_name: str
    role: UserRole

    @property
    def is_staff(self) -> bool:
        """Agents and admins may be assigned tickets and start SLA clocks."""
        return self.role in STAFF_ROLES
