"""
Transactional Outbox
====================

Domain events are not sent from inside a service call. They are written to
the 'outbox_events' table in the same transaction as the ticket change, and a
background relay later hands committed rows to subscribers.

Guarantees:
- An event is never delivered for a change that rolled back
- Delivery is at-least-once: a failing subscriber leaves the row pending
  until it succeeds or runs out of attempts
- Dispatched rows are purged after a retention period
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.ticketing.application import Clock, IEventSink, utc_now
from helpdesk.ticketing.domain import DomainEvent
from helpdesk.ticketing.infrastructure.models import OutboxEventModel

logger = get_logger(__name__)

EventHandler = Callable[[dict], Awaitable[None]]


class OutboxEventSink(IEventSink):
    """Event sink that appends events to the outbox in the caller's session."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def publish(self, event: DomainEvent) -> None:
        model = OutboxEventModel(
            id=uuid4(),
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=event.to_dict(),
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(model)
        await self._session.flush()

        logger.debug(
            "Event queued",
            extra={"event_type": event.event_type, "aggregate_id": event.aggregate_id}
        )


class SQLAlchemyOutboxRepository:
    """Reads and updates outbox rows for the relay."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_pending(self, limit: int = 100, now: Optional[datetime] = None) -> List[OutboxEventModel]:
        """
        Get events due for delivery.

        Dead-lettered rows and rows still backing off are skipped. Rows with
        fewer failed attempts come first, so one failing event cannot hold
        back the rest of the queue.
        """
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(OutboxEventModel)
            .where(
                OutboxEventModel.dispatched == False,
                OutboxEventModel.dead_lettered_at.is_(None),
                or_(
                    OutboxEventModel.next_attempt_at.is_(None),
                    OutboxEventModel.next_attempt_at <= now,
                ),
            )
            .order_by(OutboxEventModel.attempts, OutboxEventModel.created_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_dispatched(self, event_id: UUID, at: Optional[datetime] = None) -> None:
        """Mark an event as delivered."""
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id)
            .values(dispatched=True, dispatched_at=at or datetime.now(timezone.utc))
        )
        await self._session.execute(stmt)

    async def record_failure(self, event_id: UUID, error: str, next_attempt_at: datetime) -> None:
        """Count a failed delivery attempt; the row is retried after `next_attempt_at`."""
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id)
            .values(
                attempts=OutboxEventModel.attempts + 1,
                last_error=error[:2000],
                next_attempt_at=next_attempt_at,
            )
        )
        await self._session.execute(stmt)

    async def dead_letter(self, event_id: UUID, error: str, at: datetime) -> None:
        """Count the final failed attempt and stop retrying the event."""
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id)
            .values(
                attempts=OutboxEventModel.attempts + 1,
                last_error=error[:2000],
                next_attempt_at=None,
                dead_lettered_at=at,
            )
        )
        await self._session.execute(stmt)

    async def purge_dispatched(self, before: datetime) -> int:
        """
        Delete events dispatched before `before`.

        Pending and dead-lettered rows are kept.

        Returns:
            Number of rows deleted
        """
        stmt = (
            delete(OutboxEventModel)
            .where(
                OutboxEventModel.dispatched == True,
                OutboxEventModel.dispatched_at < before,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount


class EventDispatcher:
    """
    In-process pub/sub for relayed events.

    Handlers subscribe to an event type, or to "*" for every event.
    """

    WILDCARD = "*"

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event_type: str) -> List[EventHandler]:
        return self._handlers.get(event_type, []) + self._handlers.get(self.WILDCARD, [])

    async def dispatch(self, event_type: str, payload: dict) -> int:
        """
        Call every handler for `event_type`.

        Returns:
            Number of handlers called

        Raises:
            Whatever a handler raises; remaining handlers are not called
        """
        handlers = self.handlers_for(event_type)
        for handler in handlers:
            await handler(payload)
        return len(handlers)


class OutboxRelay:
    """
    Moves committed outbox rows to the dispatcher.

    A failed delivery is retried with exponential backoff. After
    `max_attempts` failures the event is dead-lettered and left for an
    operator; it is never purged.
    """

    def __init__(
        self,
        repository: SQLAlchemyOutboxRepository,
        dispatcher: EventDispatcher,
        batch_size: int = 100,
        max_attempts: int = 10,
        retry_base_seconds: int = 30,
        retry_max_seconds: int = 3600,
        clock: Clock = utc_now,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds
        self._retry_max_seconds = retry_max_seconds
        self._clock = clock

    def retry_delay(self, attempts: int) -> timedelta:
        """Wait before the next try, after `attempts` failures."""
        seconds = self._retry_base_seconds * 2 ** max(attempts - 1, 0)
        return timedelta(seconds=min(seconds, self._retry_max_seconds))

    async def relay(self) -> int:
        """
        Dispatch one batch of due events.

        Returns:
            Number of events marked dispatched
        """
        dispatched = 0
        now = self._clock()

        with log_latency(logger, "outbox_relay"):
            pending = await self._repository.get_pending(self._batch_size, now)
            for row in pending:
                try:
                    await self._dispatcher.dispatch(row.event_type, row.payload)
                except Exception as e:
                    await self._handle_failure(row, e, now)
                    continue

                await self._repository.mark_dispatched(row.id, now)
                dispatched += 1

        if dispatched:
            logger.info("Outbox events dispatched", extra={"count": dispatched})
        return dispatched

    async def purge(self, retention: timedelta) -> int:
        """Delete events dispatched longer than `retention` ago."""
        cutoff = self._clock() - retention
        purged = await self._repository.purge_dispatched(cutoff)
        if purged:
            logger.info("Dispatched outbox events purged", extra={"count": purged, "cutoff": cutoff.isoformat()})
        return purged

    async def _handle_failure(self, row: OutboxEventModel, error: Exception, now: datetime) -> None:
        attempt = row.attempts + 1
        details = {
            "event_id": str(row.id),
            "event_type": row.event_type,
            "attempt": attempt,
            "error": str(error),
        }

        if attempt >= self._max_attempts:
            logger.error("Event dead-lettered", extra=details)
            await self._repository.dead_letter(row.id, str(error), now)
            return

        retry_at = now + self.retry_delay(attempt)
        logger.error("Event delivery failed", extra={**details, "next_attempt_at": retry_at.isoformat()})
        await self._repository.record_failure(row.id, str(error), retry_at)


def log_event_handler() -> EventHandler:
    """Subscriber that writes every relayed event to the log."""

    async def handle(payload: dict) -> None:
        logger.info(
            "Domain event",
            extra={"event_type": payload.get("event_type"), "ticket_id": payload.get("ticket_id")}
        )

    return handle
