"""
Ticketing Application Services
==============================

Application services orchestrate the state machine against the ticket store:
load the current ticket, compute the transition, persist, write the audit
message and emit one domain event per meaningful change.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, List, Optional
from uuid import uuid4

from helpdesk.config import Priority, TicketStatus, UserRole
from helpdesk.core import (
    ForbiddenException,
    InvalidAssigneeException,
    InvalidStateException,
    ResourceNotFoundException,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.ticketing.application.dto import TicketCreateDTO
from helpdesk.ticketing.domain import (
    DomainEvent,
    FirstResponseBreached,
    Message,
    SLACalculator,
    SLAPolicyTable,
    Ticket,
    TicketAssigned,
    TicketCancelled,
    TicketChanges,
    TicketCreated,
    TicketReplied,
    TicketStateMachine,
    TicketUpdated,
    User,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def get_many(self, ticket_ids: List[str]) -> List[Ticket]:
        """Get the tickets that exist among `ticket_ids`."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Persist an existing ticket.

        Raises:
            ConflictException: the stored version moved since `ticket` was loaded
        """

    @abstractmethod
    def savepoint(self) -> AsyncContextManager:
        """
        Nested unit of work for one ticket inside a batch.

        Leaving the block with an exception undoes only the writes made
        inside it; the surrounding transaction stays usable.
        """

    @abstractmethod
    async def find_resolution_breach_candidates(self) -> List[Ticket]:
        """Running tickets with a started, unflagged resolution clock."""

    @abstractmethod
    async def find_first_response_breach_candidates(self) -> List[Ticket]:
        """Running tickets with an unanswered, unflagged first-response clock."""


class IMessageRepository(ABC):
    """Interface for ticket message data access."""

    @abstractmethod
    async def add(self, message: Message) -> Message:
        """Store a new message (same unit of work as the ticket save)."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[Message]:
        """Messages of a ticket in chronological order."""


class IUserDirectory(ABC):
    """Interface for the identity/role provider."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""


class IEventSink(ABC):
    """Interface for domain event delivery."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Hand an event over; delivery and retries belong to the sink."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy table access."""

    @abstractmethod
    async def get_policy_table(self) -> SLAPolicyTable:
        """Get current SLA policy table (seeded when empty)."""


class ISurveyService(ABC):
    """Interface for the satisfaction-survey collaborator."""

    @abstractmethod
    async def request_survey(self, ticket: Ticket) -> None:
        """Create a survey for a freshly resolved ticket."""


# ========== Application Services ==========

class TicketLifecycleService:
    """
    Single-ticket operations: create, update, assign, cancel, reply.

    Every operation validates before writing, so a failure leaves no partial
    state behind.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        message_repository: IMessageRepository,
        user_directory: IUserDirectory,
        event_sink: IEventSink,
        policy_provider: ISLAPolicyProvider,
        clock: Clock = utc_now,
        survey_service: Optional[ISurveyService] = None,
        vendor_visit_weekday: str = "friday",
    ):
        self._tickets = ticket_repository
        self._messages = message_repository
        self._users = user_directory
        self._events = event_sink
        self._policies = policy_provider
        self._clock = clock
        self._surveys = survey_service
        self._vendor_visit_weekday = vendor_visit_weekday

    async def create_ticket(
        self,
        requester_id: str,
        title: str,
        description: str,
        priority: str = "MEDIUM",
        number: Optional[str] = None,
        attachments: Optional[List[str]] = None
    ) -> Ticket:
        """
        Open a ticket and start its first-response clock.

        The resolution clock does not start until work begins (IN_PROGRESS).

        Raises:
            pydantic.ValidationError: malformed input
            ResourceNotFoundException: requester does not exist
        """
        request = TicketCreateDTO(
            requester_id=requester_id,
            title=title,
            description=description,
            priority=priority.value if isinstance(priority, Priority) else priority,
            number=number,
            attachments=attachments or [],
        )
        requester = await self._load_user(request.requester_id, "Requester")
        now = self._clock()
        priority = Priority(request.priority)
        policies = await self._policies.get_policy_table()

        ticket = Ticket(
            id=str(uuid4()),
            number=request.number,
            title=request.title,
            description=request.description,
            requester_id=requester.id,
            status=TicketStatus.TODO,
            priority=priority,
            created_at=now,
            updated_at=now,
            first_response_target=SLACalculator.calculate_deadline(
                now, policies.response_budget_minutes(priority)
            ),
        )
        ticket = await self._tickets.create(ticket)

        await self._messages.add(Message(
            id=str(uuid4()),
            ticket_id=ticket.id,
            sender_id=requester.id,
            content=request.description,
            attachments=list(request.attachments),
            created_at=now,
        ))

        await self._events.publish(TicketCreated(
            ticket_id=ticket.id,
            requester_id=requester.id,
            priority=priority.value,
            occurred_at=now,
        ))

        logger.info(
            "Ticket created",
            extra={"ticket_id": ticket.id, "priority": priority.value}
        )
        return ticket

    async def update_ticket(
        self,
        ticket_id: str,
        changes: TicketChanges,
        actor_id: str
    ) -> Ticket:
        """
        Apply a status and/or priority change.

        Raises:
            ResourceNotFoundException: ticket or actor does not exist
            InvalidStateException: status change on a resolved/cancelled ticket
        """
        ticket = await self._load_ticket(ticket_id)
        actor = await self._load_user(actor_id)
        now = self._clock()

        machine = TicketStateMachine(await self._policies.get_policy_table())
        result = machine.transition(ticket, changes, now)

        if not result.changed:
            return ticket

        saved = await self._tickets.save(result.ticket)

        summary = ", ".join(result.changes)
        if result.resolved and result.left_vendor_wait:
            summary += f". {self._vendor_note(now)}"

        await self._add_system_message(saved.id, actor.id, f"System: {summary} by {actor.full_name}", now)

        await self._events.publish(TicketUpdated(
            ticket_id=saved.id,
            actor_id=actor.id,
            changes=list(result.changes),
            status=saved.status.value,
            occurred_at=now,
        ))

        if result.resolved:
            await self._request_survey(saved)

        logger.info(
            "Ticket updated",
            extra={"ticket_id": saved.id, "changes": result.changes}
        )
        return saved

    async def assign_ticket(
        self,
        ticket_id: str,
        assignee_id: str,
        actor_id: str
    ) -> Ticket:
        """
        Reassign a ticket. SLA fields are not touched.

        Raises:
            ResourceNotFoundException: ticket, assignee or actor does not exist
            InvalidAssigneeException: assignee is not an agent/admin
        """
        ticket = await self._load_ticket(ticket_id)
        assignee = await self._load_user(assignee_id, "Assignee")
        if not assignee.is_staff:
            raise InvalidAssigneeException(assignee.id, assignee.role.value)
        actor = await self._load_user(actor_id, "Assigner")

        if ticket.assignee_id == assignee.id:
            return ticket

        now = self._clock()
        previous_id = ticket.assignee_id
        previous_name = "Unassigned"
        if previous_id:
            previous = await self._users.get_by_id(previous_id)
            previous_name = previous.full_name if previous else "Unassigned"

        saved = await self._tickets.save(replace(ticket, assignee_id=assignee.id, updated_at=now))

        await self._add_system_message(
            saved.id, actor.id,
            f"System: Ticket assigned to {assignee.full_name} (was {previous_name}) by {actor.full_name}",
            now
        )

        await self._events.publish(TicketAssigned(
            ticket_id=saved.id,
            assignee_id=assignee.id,
            actor_id=actor.id,
            previous_assignee_id=previous_id,
            occurred_at=now,
        ))

        logger.info(
            "Ticket assigned",
            extra={"ticket_id": saved.id, "assignee_id": assignee.id}
        )
        return saved

    async def cancel_ticket(
        self,
        ticket_id: str,
        actor_id: str,
        actor_role: UserRole,
        reason: Optional[str] = None
    ) -> Ticket:
        """
        Cancel a ticket.

        Requesters may only cancel their own tickets; agents and admins may
        cancel any open ticket.

        Raises:
            ResourceNotFoundException: ticket or actor does not exist
            ForbiddenException: requester cancelling someone else's ticket
            InvalidStateException: ticket already resolved or cancelled
        """
        ticket = await self._load_ticket(ticket_id)
        actor = await self._load_user(actor_id)

        if UserRole(actor_role) == UserRole.REQUESTER and ticket.requester_id != actor.id:
            raise ForbiddenException(
                "You can only cancel your own tickets",
                {"ticket_id": ticket.id, "actor_id": actor.id}
            )

        if ticket.is_terminal:
            raise InvalidStateException(
                "Cannot cancel a ticket that is already resolved or cancelled",
                ticket_id=ticket.id
            )

        now = self._clock()
        machine = TicketStateMachine(await self._policies.get_policy_table())
        result = machine.transition(ticket, TicketChanges(status=TicketStatus.CANCELLED), now)
        saved = await self._tickets.save(result.ticket)

        content = f"System: Ticket cancelled by {actor.full_name}"
        if reason:
            content += f": {reason}"
        # Anything beyond the status line is pause accounting
        if len(result.changes) > 1:
            content += f" ({', '.join(result.changes[1:])})"
        await self._add_system_message(saved.id, actor.id, content, now)

        await self._events.publish(TicketCancelled(
            ticket_id=saved.id,
            actor_id=actor.id,
            reason=reason,
            occurred_at=now,
        ))

        logger.info(
            "Ticket cancelled",
            extra={"ticket_id": saved.id, "actor_id": actor.id}
        )
        return saved

    async def reply_to_ticket(
        self,
        ticket_id: str,
        sender_id: str,
        content: str,
        attachments: Optional[List[str]] = None
    ) -> Message:
        """
        Post a reply.

        The first staff reply stamps first_response_at (checking it against
        the pause-adjusted target) and moves a TODO ticket to IN_PROGRESS,
        which starts the resolution clock.
        """
        ticket = await self._load_ticket(ticket_id)
        sender = await self._load_user(sender_id)
        now = self._clock()

        message = await self._messages.add(Message(
            id=str(uuid4()),
            ticket_id=ticket.id,
            sender_id=sender.id,
            content=content,
            attachments=list(attachments or []),
            created_at=now,
        ))

        updated = replace(ticket)
        dirty = False
        changes: List[str] = []
        pending_events: List[DomainEvent] = []

        if sender.is_staff and not ticket.is_terminal:
            if updated.first_response_at is None:
                deadline = ticket.effective_first_response_target(now)
                updated.mark_first_response(now)
                dirty = True
                if deadline is not None and now > deadline and updated.mark_first_response_breached():
                    pending_events.append(FirstResponseBreached(
                        ticket_id=ticket.id,
                        deadline=deadline,
                        detected_at=now,
                        priority=ticket.priority.value,
                    ))
                    logger.warning(
                        "First response SLA breached",
                        extra={"ticket_id": ticket.id, "deadline": deadline.isoformat()}
                    )

            if updated.status == TicketStatus.TODO:
                machine = TicketStateMachine(await self._policies.get_policy_table())
                result = machine.transition(updated, TicketChanges(status=TicketStatus.IN_PROGRESS), now)
                updated = result.ticket
                changes = result.changes
                dirty = True

        if dirty:
            updated.updated_at = now
            updated = await self._tickets.save(updated)

        if changes:
            await self._add_system_message(
                updated.id, sender.id,
                f"System: {', '.join(changes)} by {sender.full_name}",
                now
            )
            pending_events.append(TicketUpdated(
                ticket_id=updated.id,
                actor_id=sender.id,
                changes=list(changes),
                status=updated.status.value,
                occurred_at=now,
            ))

        pending_events.append(TicketReplied(
            ticket_id=ticket.id,
            message_id=message.id,
            sender_id=sender.id,
            is_staff_reply=sender.is_staff,
            occurred_at=now,
        ))
        for event in pending_events:
            await self._events.publish(event)

        return message

    async def get_messages(self, ticket_id: str) -> List[Message]:
        """Ordered message history of a ticket."""
        ticket = await self._load_ticket(ticket_id)
        return await self._messages.list_for_ticket(ticket.id)

    # ========== Helpers ==========

    async def _load_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def _load_user(self, user_id: str, resource_type: str = "User") -> User:
        user = await self._users.get_by_id(user_id)
        if user is None:
            raise ResourceNotFoundException(resource_type, user_id)
        return user

    async def _add_system_message(
        self,
        ticket_id: str,
        sender_id: str,
        content: str,
        now: datetime
    ) -> Message:
        return await self._messages.add(Message(
            id=str(uuid4()),
            ticket_id=ticket_id,
            sender_id=sender_id,
            content=content,
            is_system_message=True,
            created_at=now,
        ))

    def _vendor_note(self, now: datetime) -> str:
        visit = SLACalculator.next_weekday(now, self._vendor_visit_weekday)
        return f"Vendor follow-up visit scheduled for {visit.strftime('%A')}, {visit.isoformat()}"

    async def _request_survey(self, ticket: Ticket) -> None:
        if self._surveys is None:
            return
        try:
            await self._surveys.request_survey(ticket)
        except Exception as e:
            # Survey delivery is not part of the ticket's unit of work
            logger.error(
                "Satisfaction survey request failed",
                extra={"ticket_id": ticket.id, "error": str(e)}
            )
