"""
Helpdesk SLA Engine - Main Application
======================================

Runtime wiring for the ticket lifecycle and SLA timer engine.

Clean Architecture Layers:
- Application: Lifecycle, bulk, merge and scanner services
- Domain: Entities, value objects, state machine, events
- Infrastructure: Database, outbox, config watcher, scheduler

Services are request-scoped: build them per session with the build_*
factories and run each call inside get_session_context().
"""

import asyncio
import signal
from datetime import timedelta
from typing import Optional

from helpdesk.config import get_settings
from helpdesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk.ticketing.application import (
    BreachScanner,
    BulkOperationService,
    Clock,
    TicketLifecycleService,
    TicketMergeService,
    utc_now,
)
from helpdesk.ticketing.domain import SLAConfig
from helpdesk.ticketing.infrastructure import (
    EventDispatcher,
    OutboxEventSink,
    OutboxRelay,
    OutboxSurveyService,
    SLAScheduler,
    SQLAlchemyMessageRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemySLAPolicyProvider,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserDirectory,
    get_config_manager,
    get_policy_cache,
    log_event_handler,
)

logger = get_logger(__name__)

# Global runtime instances
event_dispatcher = EventDispatcher()
sla_scheduler: Optional[SLAScheduler] = None


# ========== Service Factories ==========

def _current_sla_config() -> SLAConfig:
    manager = get_config_manager()
    return manager.config if manager.is_loaded else SLAConfig()


def build_policy_provider(session) -> SQLAlchemySLAPolicyProvider:
    """Policy provider seeded from the loaded config file."""
    return SQLAlchemySLAPolicyProvider(session, get_policy_cache(), _current_sla_config())


def build_lifecycle_service(session, clock: Clock = utc_now) -> TicketLifecycleService:
    """Lifecycle service bound to one unit of work."""
    events = OutboxEventSink(session)
    manager = get_config_manager()
    weekday = get_settings().vendor_visit_weekday
    if manager.is_loaded:
        weekday = manager.vendor_visit_weekday(weekday)

    return TicketLifecycleService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        events,
        build_policy_provider(session),
        clock=clock,
        survey_service=OutboxSurveyService(events, clock),
        vendor_visit_weekday=weekday,
    )


def build_bulk_service(session, clock: Clock = utc_now) -> BulkOperationService:
    return BulkOperationService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        OutboxEventSink(session),
        build_policy_provider(session),
        clock=clock,
    )


def build_merge_service(session, clock: Clock = utc_now) -> TicketMergeService:
    return TicketMergeService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        OutboxEventSink(session),
        build_policy_provider(session),
        clock=clock,
    )


def build_breach_scanner(session) -> BreachScanner:
    return BreachScanner(SQLAlchemyTicketRepository(session), OutboxEventSink(session))


def build_outbox_relay(session) -> OutboxRelay:
    """Relay configured from settings."""
    settings = get_settings()
    return OutboxRelay(
        SQLAlchemyOutboxRepository(session),
        event_dispatcher,
        max_attempts=settings.outbox_max_attempts,
        retry_base_seconds=settings.outbox_retry_base_seconds,
    )


# ========== Background Jobs ==========

async def breach_scan_job() -> None:
    """Background breach scan; one session per run."""
    try:
        async with get_session_context() as session:
            await build_breach_scanner(session).scan(utc_now())
    except Exception:
        # The next scheduled run retries
        logger.exception("Breach scan failed")


async def outbox_relay_job() -> None:
    """Background outbox relay; one session per batch."""
    try:
        async with get_session_context() as session:
            await build_outbox_relay(session).relay()
    except Exception:
        logger.exception("Outbox relay failed")


async def outbox_purge_job() -> None:
    """Drop dispatched outbox rows past the retention period."""
    try:
        async with get_session_context() as session:
            retention = timedelta(days=get_settings().outbox_retention_days)
            await build_outbox_relay(session).purge(retention)
    except Exception:
        logger.exception("Outbox purge failed")



# ========== Lifecycle ==========

async def startup() -> None:
    """
    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and start watching it
    4. Seed the policy table
    5. Start the scheduler (breach scan, outbox relay, outbox purge)
    """
    global sla_scheduler

    settings = get_settings()
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk SLA Engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    await create_tables()

    logger.info("Loading SLA configuration")
    config_manager = get_config_manager()
    config_manager.load(settings.sla_config_path)
    config_manager.add_reload_listener(lambda _config: get_policy_cache().invalidate())
    config_manager.start_watching()

    async with get_session_context() as session:
        table = await build_policy_provider(session).get_policy_table()
    logger.info("SLA policies loaded", extra={"priorities": sorted(p.value for p in table.policies)})

    event_dispatcher.subscribe(EventDispatcher.WILDCARD, log_event_handler())

    sla_scheduler = SLAScheduler()
    sla_scheduler.add_interval_job(
        "breach_scan", "SLA Breach Scan", breach_scan_job,
        settings.breach_scan_interval_seconds
    )
    sla_scheduler.add_interval_job(
        "outbox_relay", "Outbox Relay", outbox_relay_job,
        settings.outbox_relay_interval_seconds
    )
    sla_scheduler.add_interval_job(
        "outbox_purge", "Outbox Purge", outbox_purge_job,
        settings.outbox_purge_interval_seconds
    )
    await sla_scheduler.start()

    logger.info("Helpdesk SLA Engine started successfully")


async def shutdown() -> None:
    """
    SHUTDOWN:
    1. Stop scheduler
    2. Stop config watcher
    3. Close database connections
    """
    logger.info("Shutting down Helpdesk SLA Engine")

    if sla_scheduler:
        await sla_scheduler.stop()

    get_config_manager().stop_watching()
    await close_database()

    logger.info("Helpdesk SLA Engine shutdown complete")


async def run() -> None:
    """Run until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await startup()
    try:
        await stop.wait()
    finally:
        await shutdown()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
