"""
Ticketing Application Layer
===========================

Application layer for the ticket lifecycle and SLA engine.

Contains:
- Services: Lifecycle, bulk update, merge and breach scanning
- DTOs: Request/result models
- Interfaces: Collaborator abstractions implemented by infrastructure

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.ticketing.application.dto import (
    TicketCreateDTO,
    BulkUpdateFields,
    BulkUpdateResult,
    ScanReport,
)
from helpdesk.ticketing.application.services import (
    Clock,
    utc_now,
    TicketLifecycleService,
    ITicketRepository,
    IMessageRepository,
    IUserDirectory,
    IEventSink,
    ISLAPolicyProvider,
    ISurveyService,
)
from helpdesk.ticketing.application.bulk import BulkOperationService
from helpdesk.ticketing.application.merge import TicketMergeService
from helpdesk.ticketing.application.scanner import BreachScanner

__all__ = [
    # DTOs
    "TicketCreateDTO",
    "BulkUpdateFields",
    "BulkUpdateResult",
    "ScanReport",
    # Services
    "Clock",
    "utc_now",
    "TicketLifecycleService",
    "BulkOperationService",
    "TicketMergeService",
    "BreachScanner",
    # Repository Interfaces
    "ITicketRepository",
    "IMessageRepository",
    "IUserDirectory",
    "IEventSink",
    "ISLAPolicyProvider",
    "ISurveyService",
]
