"""
Ticketing Domain Layer
======================

Domain layer for the ticket lifecycle and SLA clocks.

Contains:
- Entities: Ticket (aggregate root), Message, User
- Value Objects: SLAPolicy, SLAPolicyTable, SLAConfig, TicketChanges
- Domain Services: SLACalculator, TicketStateMachine
- Domain Events: what the services emit after a successful mutation

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.ticketing.domain.entities import Ticket, Message, User
from helpdesk.ticketing.domain.value_objects import (
    SLACalculator,
    SLAPolicy,
    SLAPolicyTable,
    SLAConfig,
    PolicyDefaults,
    VendorScheduleConfig,
    TicketChanges,
    DEFAULT_POLICY_MINUTES,
)
from helpdesk.ticketing.domain.state_machine import TicketStateMachine, TransitionResult
from helpdesk.ticketing.domain.events import (
    DomainEvent,
    TicketCreated,
    TicketUpdated,
    TicketAssigned,
    TicketCancelled,
    TicketReplied,
    TicketsMerged,
    TicketListRefreshed,
    ResolutionBreached,
    FirstResponseBreached,
    SurveyRequested,
)

__all__ = [
    # Entities
    "Ticket",
    "Message",
    "User",
    # Value Objects & Services
    "SLACalculator",
    "SLAPolicy",
    "SLAPolicyTable",
    "SLAConfig",
    "PolicyDefaults",
    "VendorScheduleConfig",
    "TicketChanges",
    "DEFAULT_POLICY_MINUTES",
    "TicketStateMachine",
    "TransitionResult",
    # Events
    "DomainEvent",
    "TicketCreated",
    "TicketUpdated",
    "TicketAssigned",
    "TicketCancelled",
    "TicketReplied",
    "TicketsMerged",
    "TicketListRefreshed",
    "ResolutionBreached",
    "FirstResponseBreached",
    "SurveyRequested",
]
