"""
Ticket State Machine
====================

Pure decision logic: given a ticket, a change request and `now`, compute the
ticket's new state, the new SLA clock values and a human-readable change log.

No I/O, no wall clock. The input ticket is never mutated.

Rules, in precedence order:
1. -> IN_PROGRESS with no running clock: start the resolution clock.
2. -> WAITING_VENDOR: remember when the pause began.
3. WAITING_VENDOR -> anything: charge the pause and shift both deadlines.
4. Priority change on a started clock: re-derive the target from the start.
5. -> RESOLVED: stamp resolved_at.
6. Terminal transitions out of WAITING_VENDOR run rule 3 first.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import List

from helpdesk.config import TicketStatus
from helpdesk.core import InvalidStateException
from helpdesk.ticketing.domain.entities import Ticket
from helpdesk.ticketing.domain.value_objects import (
    SLACalculator, SLAPolicyTable, TicketChanges
)


@dataclass
class TransitionResult:
    """Outcome of a transition: the new ticket plus what changed."""
    ticket: Ticket
    previous_status: TicketStatus
    changes: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def status_changed(self) -> bool:
        return self.ticket.status != self.previous_status

    @property
    def resolved(self) -> bool:
        """True when this transition moved the ticket into RESOLVED."""
        return self.status_changed and self.ticket.status == TicketStatus.RESOLVED

    @property
    def left_vendor_wait(self) -> bool:
        return self.status_changed and self.previous_status == TicketStatus.WAITING_VENDOR


class TicketStateMachine:
    """Applies status and priority changes to a ticket's SLA clocks."""

    def __init__(self, policies: SLAPolicyTable):
        self._policies = policies

    def transition(
        self,
        ticket: Ticket,
        requested: TicketChanges,
        now: datetime
    ) -> TransitionResult:
        """
        Compute the result of applying `requested` to `ticket` at `now`.

        Args:
            ticket: Current ticket state (left untouched)
            requested: Requested status and/or priority
            now: Evaluation time

        Returns:
            TransitionResult with a new Ticket and the change log

        Raises:
            InvalidStateException: status change requested on a terminal ticket
        """
        updated = replace(ticket)
        result = TransitionResult(ticket=updated, previous_status=ticket.status)

        status_requested = requested.status is not None and requested.status != ticket.status
        priority_requested = requested.priority is not None and requested.priority != ticket.priority

        if status_requested and ticket.is_terminal:
            raise InvalidStateException(
                f"Cannot change status of a {ticket.status.value} ticket",
                ticket_id=ticket.id
            )

        if status_requested:
            self._apply_status(updated, requested.status, now, result.changes)

        if priority_requested:
            self._apply_priority(updated, requested.priority, result.changes)

        if result.changes:
            updated.updated_at = now

        return result

    def _apply_status(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        now: datetime,
        log: List[str]
    ) -> None:
        old_status = ticket.status
        log.append(f"Status changed from {old_status.value} to {new_status.value}")

        if old_status == TicketStatus.WAITING_VENDOR:
            self._resume(ticket, now, log)

        if new_status == TicketStatus.WAITING_VENDOR:
            ticket.last_paused_at = now
            log.append("SLA timer paused while waiting for vendor")

        ticket.status = new_status

        if new_status == TicketStatus.IN_PROGRESS and ticket.sla_started_at is None:
            self._start_clock(ticket, now, log)

        if new_status == TicketStatus.RESOLVED:
            ticket.resolved_at = now
            log.append(f"Ticket resolved at {now.isoformat()}")

    def _start_clock(self, ticket: Ticket, now: datetime, log: List[str]) -> None:
        budget = self._policies.resolution_budget_minutes(ticket.priority)
        ticket.sla_started_at = now
        ticket.sla_target = SLACalculator.calculate_deadline(now, budget)
        log.append(
            f"SLA Timer started, target {ticket.sla_target.isoformat()} "
            f"({budget} minutes for {ticket.priority.value})"
        )

    def _resume(self, ticket: Ticket, now: datetime, log: List[str]) -> None:
        if ticket.last_paused_at is None:
            return

        paused = max(now - ticket.last_paused_at, timedelta(0))
        minutes = SLACalculator.paused_minutes(paused)
        ticket.total_paused_minutes += minutes

        if ticket.sla_target is not None:
            ticket.sla_target = ticket.sla_target + paused

        if ticket.first_response_target is not None and ticket.first_response_at is None:
            ticket.first_response_target = ticket.first_response_target + paused

        ticket.last_paused_at = None

        if ticket.sla_target is not None:
            log.append(
                f"SLA Target adjusted by {minutes} minutes (Paused Duration), "
                f"new target {ticket.sla_target.isoformat()}"
            )
        else:
            log.append(f"SLA timer resumed after {minutes} minutes paused")

    def _apply_priority(self, ticket: Ticket, new_priority, log: List[str]) -> None:
        log.append(f"Priority changed from {ticket.priority.value} to {new_priority.value}")
        ticket.priority = new_priority

        if ticket.sla_started_at is None or ticket.is_terminal:
            return

        budget = self._policies.resolution_budget_minutes(new_priority)
        ticket.sla_target = SLACalculator.calculate_deadline(
            ticket.sla_started_at, budget, ticket.total_paused_minutes
        )
        log.append(
            f"SLA Target updated to {ticket.sla_target.isoformat()} "
            f"({budget} minutes for {new_priority.value})"
        )
