"""
SLA Breach Scanner
==================

Periodic sweep that flags tickets whose deadlines have passed.

The scanner is a plain function of (store, now): the scheduler supplies `now`
and a fresh unit of work for every run. Flags are write-once, so re-running a
scan over already-flagged tickets does nothing.
"""

from datetime import datetime
from uuid import uuid4

from helpdesk.shared.infrastructure.logging import get_context_logger, log_latency
from helpdesk.ticketing.application.dto import ScanReport
from helpdesk.ticketing.application.services import IEventSink, ITicketRepository
from helpdesk.ticketing.domain import (
    FirstResponseBreached,
    ResolutionBreached,
    Ticket,
)

# A scan slower than this is logged as a warning
SLOW_SCAN_MS = 60_000


class BreachScanner:
    """Detects resolution and first-response breaches."""

    def __init__(self, ticket_repository: ITicketRepository, event_sink: IEventSink):
        self._tickets = ticket_repository
        self._events = event_sink

    async def scan(self, now: datetime) -> ScanReport:
        """
        Run both breach passes at `now`.

        A failure on one ticket is logged and reported; its savepoint is
        rolled back and the rest of the scan goes on. A failing candidate
        query aborts the run.

        Returns:
            ScanReport listing newly flagged and failed tickets
        """
        logger = get_context_logger(__name__, correlation_id=str(uuid4()))
        report = ScanReport(scanned_at=now)

        with log_latency(logger, "breach_scan", slow_ms=SLOW_SCAN_MS):
            candidates = await self._tickets.find_resolution_breach_candidates()
            for ticket in candidates:
                if not ticket.is_resolution_breached_at(now):
                    continue
                try:
                    await self._flag_resolution(ticket, now)
                    report.resolution_breached_ids.append(ticket.id)
                except Exception:
                    logger.exception(
                        "Failed to flag resolution breach",
                        extra={"ticket_id": ticket.id}
                    )
                    report.failed_ids.append(ticket.id)

            candidates = await self._tickets.find_first_response_breach_candidates()
            for ticket in candidates:
                if not ticket.is_first_response_breached_at(now):
                    continue
                try:
                    await self._flag_first_response(ticket, now)
                    report.first_response_breached_ids.append(ticket.id)
                except Exception:
                    logger.exception(
                        "Failed to flag first response breach",
                        extra={"ticket_id": ticket.id}
                    )
                    report.failed_ids.append(ticket.id)

        if report.breach_count:
            logger.warning(
                "SLA breaches detected",
                extra={
                    "resolution_breaches": len(report.resolution_breached_ids),
                    "first_response_breaches": len(report.first_response_breached_ids),
                }
            )
        return report

    async def _flag_resolution(self, ticket: Ticket, now: datetime) -> None:
        if not ticket.mark_overdue():
            return
        async with self._tickets.savepoint():
            await self._tickets.save(ticket)
            await self._events.publish(ResolutionBreached(
                ticket_id=ticket.id,
                deadline=ticket.sla_target,
                detected_at=now,
                priority=ticket.priority.value,
            ))

    async def _flag_first_response(self, ticket: Ticket, now: datetime) -> None:
        if not ticket.mark_first_response_breached():
            return
        async with self._tickets.savepoint():
            await self._tickets.save(ticket)
            await self._events.publish(FirstResponseBreached(
                ticket_id=ticket.id,
                deadline=ticket.first_response_target,
                detected_at=now,
                priority=ticket.priority.value,
            ))
