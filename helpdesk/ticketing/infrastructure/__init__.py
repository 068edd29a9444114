"""
Ticketing Infrastructure Layer
==============================

Infrastructure implementations for the ticketing module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the SLA policy cache
- Outbox: Transactional event sink, relay and dispatcher
- External: Config watcher, survey requests, scheduler
"""

from helpdesk.ticketing.infrastructure.models import (
    UserModel,
    TicketModel,
    MessageModel,
    SLAPolicyModel,
    OutboxEventModel,
)
from helpdesk.ticketing.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyMessageRepository,
    SQLAlchemyUserDirectory,
    SQLAlchemySLAPolicyProvider,
    SLAPolicyCache,
    get_policy_cache,
)
from helpdesk.ticketing.infrastructure.outbox import (
    OutboxEventSink,
    SQLAlchemyOutboxRepository,
    EventDispatcher,
    OutboxRelay,
    log_event_handler,
)
from helpdesk.ticketing.infrastructure.external import (
    SLAConfigManager,
    get_config_manager,
    OutboxSurveyService,
    SLAScheduler,
)

__all__ = [
    "UserModel",
    "TicketModel",
    "MessageModel",
    "SLAPolicyModel",
    "OutboxEventModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyMessageRepository",
    "SQLAlchemyUserDirectory",
    "SQLAlchemySLAPolicyProvider",
    "SLAPolicyCache",
    "get_policy_cache",
    "OutboxEventSink",
    "SQLAlchemyOutboxRepository",
    "EventDispatcher",
    "OutboxRelay",
    "log_event_handler",
    "SLAConfigManager",
    "get_config_manager",
    "OutboxSurveyService",
    "SLAScheduler",
]
