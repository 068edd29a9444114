"""
Ticket Merge Service
====================

Folds duplicate tickets into a primary ticket: the secondaries' history is
copied into the primary and each secondary is cancelled.
"""

from typing import List, Optional, Sequence
from uuid import uuid4

from helpdesk.config import TicketStatus
from helpdesk.core import InvalidMergeException, ResourceNotFoundException
from helpdesk.shared.infrastructure.logging import get_logger
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
    TicketCancelled,
    TicketChanges,
    TicketsMerged,
    TicketStateMachine,
)

logger = get_logger(__name__)


class TicketMergeService:
    """Merges secondary tickets into a primary ticket."""

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

    async def merge(
        self,
        primary_id: str,
        secondary_ids: Sequence[str],
        actor_id: str,
        reason: Optional[str] = None
    ) -> Ticket:
        """
        Merge `secondary_ids` into `primary_id`.

        Every precondition is checked before the first write, so a rejected
        merge leaves all tickets untouched.

        Raises:
            InvalidMergeException: empty/duplicate list, primary listed as
                secondary, or a resolved/cancelled secondary
            ResourceNotFoundException: primary, actor or a secondary does not exist
        """
        secondary_ids = list(secondary_ids)
        if not secondary_ids:
            raise InvalidMergeException("At least one secondary ticket is required")
        if len(set(secondary_ids)) != len(secondary_ids):
            raise InvalidMergeException(
                "Secondary tickets must not contain duplicates",
                {"secondary_ids": secondary_ids}
            )
        if primary_id in secondary_ids:
            raise InvalidMergeException(
                "Primary ticket cannot be in the list of secondary tickets",
                {"primary_id": primary_id}
            )

        primary = await self._tickets.get_by_id(primary_id)
        if primary is None:
            raise ResourceNotFoundException("Primary ticket", primary_id)

        actor = await self._users.get_by_id(actor_id)
        if actor is None:
            raise ResourceNotFoundException("User", actor_id)

        found = {t.id: t for t in await self._tickets.get_many(secondary_ids)}
        missing = [ticket_id for ticket_id in secondary_ids if ticket_id not in found]
        if missing:
            raise ResourceNotFoundException(
                "Secondary ticket", missing[0], {"missing_ids": missing}
            )

        secondaries = [found[ticket_id] for ticket_id in secondary_ids]
        for secondary in secondaries:
            if secondary.is_terminal:
                raise InvalidMergeException(
                    f"Cannot merge resolved or cancelled ticket: #{secondary.display_number}",
                    {"ticket_id": secondary.id, "status": secondary.status.value}
                )

        now = self._clock()
        machine = TicketStateMachine(await self._policies.get_policy_table())
        pending_events = []

        for secondary in secondaries:
            await self._copy_history(secondary, primary)

            primary_note = (
                f"System: Ticket #{secondary.display_number} was merged into this ticket "
                f"by {actor.full_name}"
            )
            if reason:
                primary_note += f". Reason: {reason}"
            await self._system_message(primary.id, actor.id, primary_note, now)

            result = machine.transition(secondary, TicketChanges(status=TicketStatus.CANCELLED), now)
            cancelled = result.ticket
            cancelled.description = f"[MERGED INTO #{primary.display_number}] {cancelled.description}"
            await self._tickets.save(cancelled)

            await self._system_message(
                secondary.id, actor.id,
                f"System: This ticket was merged into #{primary.display_number} by {actor.full_name}",
                now
            )

            pending_events.append(TicketCancelled(
                ticket_id=secondary.id,
                actor_id=actor.id,
                reason=f"Merged into #{primary.display_number}",
                occurred_at=now,
            ))

        pending_events.append(TicketsMerged(
            ticket_id=primary.id,
            secondary_ids=secondary_ids,
            actor_id=actor.id,
            reason=reason,
            occurred_at=now,
        ))
        for event in pending_events:
            await self._events.publish(event)

        logger.info(
            "Tickets merged",
            extra={"primary_id": primary.id, "secondary_ids": secondary_ids}
        )
        return primary

    async def _copy_history(self, source: Ticket, target: Ticket) -> List[Message]:
        """Copy `source` messages into `target`, keeping sender and timestamps."""
        copied = []
        for message in await self._messages.list_for_ticket(source.id):
            copied.append(await self._messages.add(Message(
                id=str(uuid4()),
                ticket_id=target.id,
                sender_id=message.sender_id,
                content=f"[Merged from #{source.display_number}] {message.content}",
                attachments=list(message.attachments),
                is_system_message=message.is_system_message,
                created_at=message.created_at,
                merged_from_ticket_id=source.id,
            )))
        return copied

    async def _system_message(self, ticket_id: str, sender_id: str, content: str, now) -> Message:
        return await self._messages.add(Message(
            id=str(uuid4()),
            ticket_id=ticket_id,
            sender_id=sender_id,
            content=content,
            is_system_message=True,
            created_at=now,
        ))
