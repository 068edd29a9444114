"""
Ticketing Domain Events
=======================

Immutable records of what happened to a ticket. Created by the services as
the last step of a successful mutation, never mutated afterwards, and
consumed by notification collaborators through the outbox.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, List, Optional


@dataclass(frozen=True)
class DomainEvent:
    """Base class for ticketing events."""

    event_type: ClassVar[str] = "domain_event"

    @property
    def aggregate_id(self) -> Optional[str]:
        """Ticket the event is about (None for list-level events)."""
        return getattr(self, "ticket_id", None)

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary for the outbox."""
        payload = {}
        for key, value in asdict(self).items():
            payload[key] = _json_safe(value)
        payload["event_type"] = self.event_type
        return payload


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass(frozen=True)
class TicketCreated(DomainEvent):
    event_type: ClassVar[str] = "ticket.created"

    ticket_id: str
    requester_id: str
    priority: str
    occurred_at: datetime


@dataclass(frozen=True)
class TicketUpdated(DomainEvent):
    event_type: ClassVar[str] = "ticket.updated"

    ticket_id: str
    actor_id: str
    changes: List[str]
    status: str
    occurred_at: datetime


@dataclass(frozen=True)
class TicketAssigned(DomainEvent):
    event_type: ClassVar[str] = "ticket.assigned"

    ticket_id: str
    assignee_id: str
    actor_id: str
    occurred_at: datetime
    previous_assignee_id: Optional[str] = None


@dataclass(frozen=True)
class TicketCancelled(DomainEvent):
    event_type: ClassVar[str] = "ticket.cancelled"

    ticket_id: str
    actor_id: str
    occurred_at: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class TicketReplied(DomainEvent):
    event_type: ClassVar[str] = "ticket.replied"

    ticket_id: str
    message_id: str
    sender_id: str
    is_staff_reply: bool
    occurred_at: datetime


@dataclass(frozen=True)
class TicketsMerged(DomainEvent):
    event_type: ClassVar[str] = "ticket.merged"

    ticket_id: str
    secondary_ids: List[str]
    actor_id: str
    occurred_at: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class TicketListRefreshed(DomainEvent):
    """One signal for a whole batch instead of one event per ticket."""

    event_type: ClassVar[str] = "ticket.list_refreshed"

    ticket_ids: List[str] = field(default_factory=list)
    actor_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class ResolutionBreached(DomainEvent):
    event_type: ClassVar[str] = "sla.resolution_breached"

    ticket_id: str
    deadline: datetime
    detected_at: datetime
    priority: Optional[str] = None


@dataclass(frozen=True)
class FirstResponseBreached(DomainEvent):
    event_type: ClassVar[str] = "sla.first_response_breached"

    ticket_id: str
    deadline: datetime
    detected_at: datetime
    priority: Optional[str] = None


@dataclass(frozen=True)
class SurveyRequested(DomainEvent):
    event_type: ClassVar[str] = "ticket.survey_requested"

    ticket_id: str
    requester_id: str
    occurred_at: datetime
