"""
Bulk Operation Service
======================

Applies the same status/priority/assignee change to many tickets.

Per-ticket failures do not abort the batch: they are reported in the result
and processing continues with the next ticket.
"""

from datetime import datetime
from typing import List, Optional, Sequence
from uuid import uuid4

from helpdesk.core import (
    InvalidAssigneeException,
    InvalidStateException,
    RepositoryException,
    ResourceNotFoundException,
)
from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.ticketing.application.dto import BulkUpdateFields, BulkUpdateResult
from helpdesk.ticketing.application.services import (
    Clock,
    IEventSink,
    IMessageRepository,
    ISLAPolicyProvider,
    ITicketRepository,
    IUserDirectory,
    utc_now,
)
from helpdesk.ticketing.domain import (
    Message,
    Ticket,
    TicketListRefreshed,
    TicketStateMachine,
    User,
)

logger = get_logger(__name__)


class BulkOperationService:
    """Batch updates over the ticket store."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        message_repository: IMessageRepository,
        user_directory: IUserDirectory,
        event_sink: IEventSink,
        policy_provider: ISLAPolicyProvider,
        clock: Clock = utc_now,
    ):
        self._tickets = ticket_repository
        self._messages = message_repository
        self._users = user_directory
        self._events = event_sink
        self._policies = policy_provider
        self._clock = clock

    async def bulk_update(
        self,
        ticket_ids: Sequence[str],
        fields: BulkUpdateFields,
        actor_id: str
    ) -> BulkUpdateResult:
        """
        Update many tickets.

        The actor and the assignee are validated once, before any ticket is
        touched. After that, unknown ids, status changes on resolved or
        cancelled tickets and store errors land in `failed_ids`.

        Raises:
            ResourceNotFoundException: actor or assignee does not exist
            InvalidAssigneeException: assignee is not an agent/admin
        """
        actor = await self._users.get_by_id(actor_id)
        if actor is None:
            raise ResourceNotFoundException("User", actor_id)

        assignee: Optional[User] = None
        if fields.assignee_id:
            assignee = await self._users.get_by_id(fields.assignee_id)
            if assignee is None:
                raise ResourceNotFoundException("Assignee", fields.assignee_id)
            if not assignee.is_staff:
                raise InvalidAssigneeException(assignee.id, assignee.role.value)

        now = self._clock()
        changes = fields.to_changes()
        machine = TicketStateMachine(await self._policies.get_policy_table())

        updated_ids: List[str] = []
        failed_ids: List[str] = []

        with log_latency(logger, "bulk_update", ticket_count=len(ticket_ids)):
            found = {t.id: t for t in await self._tickets.get_many(list(ticket_ids))}

            for ticket_id in ticket_ids:
                ticket = found.get(ticket_id)
                if ticket is None:
                    logger.warning("Bulk update skipped unknown ticket", extra={"ticket_id": ticket_id})
                    failed_ids.append(ticket_id)
                    continue

                try:
                    async with self._tickets.savepoint():
                        changed = await self._update_one(ticket, machine, changes, assignee, actor, now)
                    if changed:
                        updated_ids.append(ticket.id)
                except (InvalidStateException, RepositoryException) as e:
                    logger.warning(
                        "Bulk update failed for ticket",
                        extra={"ticket_id": ticket.id, "error": e.message}
                    )
                    failed_ids.append(ticket.id)

        if updated_ids:
            await self._events.publish(TicketListRefreshed(
                ticket_ids=updated_ids,
                actor_id=actor.id,
                occurred_at=now,
            ))

        logger.info(
            "Bulk update completed",
            extra={"updated_count": len(updated_ids), "failed_count": len(failed_ids)}
        )
        return BulkUpdateResult(updated_count=len(updated_ids), failed_ids=failed_ids)

    async def _update_one(
        self,
        ticket: Ticket,
        machine: TicketStateMachine,
        changes,
        assignee: Optional[User],
        actor: User,
        now: datetime
    ) -> bool:
        """Apply the batch change to one ticket. Returns False for a no-op."""
        result = machine.transition(ticket, changes, now)
        updated = result.ticket
        log = list(result.changes)

        if assignee is not None and updated.assignee_id != assignee.id:
            updated.assignee_id = assignee.id
            updated.updated_at = now
            log.append(f"Assigned to {assignee.full_name}")

        if not log:
            return False

        await self._tickets.save(updated)
        await self._messages.add(Message(
            id=str(uuid4()),
            ticket_id=updated.id,
            sender_id=actor.id,
            content=f"System: Bulk update by {actor.full_name} - {', '.join(log)}",
            is_system_message=True,
            created_at=now,
        ))
        return True
