"""
Ticketing Infrastructure Repositories
=====================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. All repositories share the caller's session,
so one service call is one transaction.
"""

import threading
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, event, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm.exc import StaleDataError

from helpdesk.config import ACTIVE_CLOCK_STATUSES, Priority, TicketStatus, UserRole
from helpdesk.core import ConflictException, RepositoryException, ValidationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.ticketing.application import (
    IMessageRepository,
    ISLAPolicyProvider,
    ITicketRepository,
    IUserDirectory,
)
from helpdesk.ticketing.domain import (
    Message,
    SLAConfig,
    SLAPolicy,
    SLAPolicyTable,
    Ticket,
    User,
)
from helpdesk.ticketing.infrastructure.models import (
    MessageModel,
    SLAPolicyModel,
    TicketModel,
    UserModel,
)

logger = get_logger(__name__)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    """Parse an id; malformed ids simply match nothing."""
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _str_or_none(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: TicketModel) -> Ticket:
        return Ticket(
            id=str(model.id),
            number=model.number,
            title=model.title,
            description=model.description,
            requester_id=str(model.requester_id),
            assignee_id=_str_or_none(model.assignee_id),
            status=TicketStatus(model.status),
            priority=Priority(model.priority),
            created_at=model.created_at,
            updated_at=model.updated_at,
            resolved_at=model.resolved_at,
            sla_started_at=model.sla_started_at,
            sla_target=model.sla_target,
            total_paused_minutes=model.total_paused_minutes,
            last_paused_at=model.last_paused_at,
            is_overdue=model.is_overdue,
            first_response_target=model.first_response_target,
            first_response_at=model.first_response_at,
            is_first_response_breached=model.is_first_response_breached,
            version=model.version,
        )

    @staticmethod
    def _apply(ticket: Ticket, model: TicketModel) -> None:
        """Copy mutable ticket state onto the model."""
        model.number = ticket.number
        model.title = ticket.title
        model.description = ticket.description
        model.assignee_id = _parse_uuid(ticket.assignee_id)
        model.status = ticket.status.value
        model.priority = ticket.priority.value
        model.updated_at = ticket.updated_at
        model.resolved_at = ticket.resolved_at
        model.sla_started_at = ticket.sla_started_at
        model.sla_target = ticket.sla_target
        model.total_paused_minutes = ticket.total_paused_minutes
        model.last_paused_at = ticket.last_paused_at
        model.is_overdue = ticket.is_overdue
        model.first_response_target = ticket.first_response_target
        model.first_response_at = ticket.first_response_at
        model.is_first_response_breached = ticket.is_first_response_breached

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = select(TicketModel).where(TicketModel.id == ticket_uuid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_many(self, ticket_ids: List[str]) -> List[Ticket]:
        """Get the tickets that exist among `ticket_ids` (unordered)."""
        uuids = [u for u in (_parse_uuid(t) for t in ticket_ids) if u is not None]
        if not uuids:
            return []

        stmt = select(TicketModel).where(TicketModel.id.in_(uuids))
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            id=UUID(ticket.id),
            requester_id=UUID(ticket.requester_id),
            created_at=ticket.created_at,
        )
        self._apply(ticket, model)

        self._session.add(model)
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to create ticket {ticket.id}", {"error": str(e)}
            ) from e

        return self._to_domain(model)

    async def save(self, ticket: Ticket) -> Ticket:
        """
        Persist an existing ticket.

        The ticket must carry the version it was loaded with. SQLAlchemy adds
        the version to the UPDATE's WHERE clause, so a concurrent writer makes
        the flush fail instead of silently overwriting.
        """
        ticket_uuid = _parse_uuid(ticket.id)
        model = await self._session.get(TicketModel, ticket_uuid) if ticket_uuid else None
        if model is None:
            raise RepositoryException(f"Ticket {ticket.id} not found")

        if model.version != ticket.version:
            raise ConflictException(
                ticket.id, {"expected_version": ticket.version, "current_version": model.version}
            )

        self._apply(ticket, model)
        try:
            await self._session.flush()
        except StaleDataError as e:
            raise ConflictException(ticket.id) from e
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to save ticket {ticket.id}", {"error": str(e)}
            ) from e

        return self._to_domain(model)

    def savepoint(self) -> AsyncSessionTransaction:
        """SAVEPOINT in the caller's transaction."""
        return self._session.begin_nested()

    async def find_resolution_breach_candidates(self) -> List[Ticket]:
        """Running tickets with a started, unflagged resolution clock."""
        stmt = select(TicketModel).where(
            and_(
                TicketModel.status.in_([s.value for s in ACTIVE_CLOCK_STATUSES]),
                TicketModel.is_overdue == False,
                TicketModel.sla_started_at.is_not(None),
                TicketModel.sla_target.is_not(None),
            )
        ).order_by(TicketModel.sla_target)

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def find_first_response_breach_candidates(self) -> List[Ticket]:
        """Running tickets with an unanswered, unflagged first-response clock."""
        stmt = select(TicketModel).where(
            and_(
                TicketModel.status.in_([s.value for s in ACTIVE_CLOCK_STATUSES]),
                TicketModel.is_first_response_breached == False,
                TicketModel.first_response_at.is_(None),
                TicketModel.first_response_target.is_not(None),
            )
        ).order_by(TicketModel.first_response_target)

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]


class SQLAlchemyMessageRepository(IMessageRepository):
    """
    SQLAlchemy implementation of message repository.

    Messages are append-only.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, message: Message) -> Message:
        """Store a new message."""
        model = MessageModel(
            id=UUID(message.id),
            ticket_id=UUID(message.ticket_id),
            sender_id=UUID(message.sender_id),
            content=message.content,
            is_system_message=message.is_system_message,
            attachments=list(message.attachments),
            merged_from_ticket_id=_parse_uuid(message.merged_from_ticket_id),
            created_at=message.created_at,
        )

        self._session.add(model)
        await self._session.flush()

        return message

    async def list_for_ticket(self, ticket_id: str) -> List[Message]:
        """Messages of a ticket, oldest first."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []

        stmt = (
            select(MessageModel)
            .where(MessageModel.ticket_id == ticket_uuid)
            .order_by(MessageModel.created_at)
        )
        result = await self._session.execute(stmt)

        return [
            Message(
                id=str(m.id),
                ticket_id=str(m.ticket_id),
                sender_id=str(m.sender_id),
                content=m.content,
                is_system_message=m.is_system_message,
                attachments=list(m.attachments or []),
                merged_from_ticket_id=_str_or_none(m.merged_from_ticket_id),
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]


class SQLAlchemyUserDirectory(IUserDirectory):
    """Read-only user lookups against the 'users' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return None

        model = await self._session.get(UserModel, user_uuid)
        if model is None:
            return None

        return User(id=str(model.id), full_name=model.full_name, role=UserRole(model.role))


class SLAPolicyCache:
    """
    Process-wide cache of the SLA policy table.

    Invalidated from the config watcher thread, read from the event loop.
    """

    def __init__(self):
        self._table: Optional[SLAPolicyTable] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[SLAPolicyTable]:
        with self._lock:
            return self._table

    def set(self, table: SLAPolicyTable) -> None:
        with self._lock:
            self._table = table

    def invalidate(self) -> None:
        with self._lock:
            self._table = None
        logger.info("SLA policy cache invalidated")


# Global cache instance
_policy_cache: Optional[SLAPolicyCache] = None


def get_policy_cache() -> SLAPolicyCache:
    """Get the global policy cache instance."""
    global _policy_cache
    if _policy_cache is None:
        _policy_cache = SLAPolicyCache()
    return _policy_cache


class SQLAlchemySLAPolicyProvider(ISLAPolicyProvider):
    """
    Policy table backed by the 'sla_policies' table.

    An empty table is seeded from `seed_config` (or the built-in defaults)
    on first read.

    The shared cache only ever holds committed policies. While this
    session has uncommitted policy writes it reads the table from the
    store, and the cache is invalidated once the outer transaction ends.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[SLAPolicyCache] = None,
        seed_config: Optional[SLAConfig] = None,
    ):
        self._session = session
        self._cache = cache or get_policy_cache()
        self._seed_config = seed_config
        self._has_pending_writes = False
        event.listen(session.sync_session, "after_transaction_end", self._on_transaction_end)

    async def get_policy_table(self) -> SLAPolicyTable:
        """Get current SLA policy table, seeding the store when empty."""
        if not self._has_pending_writes:
            table = self._cache.get()
            if table is not None:
                return table

        policies = await self.list_policies()
        if policies:
            table = SLAPolicyTable.from_policies(policies)
        else:
            table = await self._seed()

        if not self._has_pending_writes:
            self._cache.set(table)
        return table

    async def list_policies(self) -> List[SLAPolicy]:
        """All stored policies."""
        result = await self._session.execute(select(SLAPolicyModel))
        return [
            SLAPolicy(
                priority=Priority(m.priority),
                resolution_budget_minutes=m.resolution_budget_minutes,
                response_budget_minutes=m.response_budget_minutes,
            )
            for m in result.scalars().all()
        ]

    async def update_policy(
        self,
        priority: Priority,
        resolution_minutes: int,
        response_minutes: Optional[int] = None
    ) -> SLAPolicy:
        """
        Change the budgets of one priority.

        Tickets already running keep their target until their next
        priority change.
        """
        if resolution_minutes < 1 or (response_minutes is not None and response_minutes < 1):
            raise ValidationException(
                "SLA budgets must be at least one minute",
                {"priority": str(priority)}
            )

        priority = Priority(priority)
        await self.get_policy_table()

        model = await self._session.get(SLAPolicyModel, priority.value)
        if model is None:
            raise RepositoryException(f"No SLA policy stored for priority {priority.value}")

        model.resolution_budget_minutes = resolution_minutes
        if response_minutes is not None:
            model.response_budget_minutes = response_minutes
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        self._has_pending_writes = True
        self._cache.invalidate()
        logger.info(
            "SLA policy updated",
            extra={
                "priority": priority.value,
                "resolution_minutes": model.resolution_budget_minutes,
                "response_minutes": model.response_budget_minutes,
            }
        )

        return SLAPolicy(
            priority=priority,
            resolution_budget_minutes=model.resolution_budget_minutes,
            response_budget_minutes=model.response_budget_minutes,
        )

    async def _seed(self) -> SLAPolicyTable:
        table = (self._seed_config or SLAConfig()).to_policy_table()
        for policy in table.policies.values():
            self._session.add(SLAPolicyModel(
                priority=policy.priority.value,
                resolution_budget_minutes=policy.resolution_budget_minutes,
                response_budget_minutes=policy.response_budget_minutes,
            ))
        await self._session.flush()
        self._has_pending_writes = True

        logger.info("Seeded default SLA policies", extra={"count": len(table.policies)})
        return table

    def _on_transaction_end(self, session, transaction) -> None:
        # Savepoints end inside the outer transaction
        if transaction.parent is not None or not self._has_pending_writes:
            return
        self._has_pending_writes = False
        self._cache.invalidate()
