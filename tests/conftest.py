import pytest
import pytest_asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk.config import UserRole
from helpdesk.infrastructure.database import Base, enable_sqlite_savepoints
from helpdesk.ticketing.application import (
    BreachScanner,
    BulkOperationService,
    IEventSink,
    ISurveyService,
    TicketLifecycleService,
    TicketMergeService,
)
from helpdesk.ticketing.infrastructure import (
    SLAPolicyCache,
    SQLAlchemyMessageRepository,
    SQLAlchemySLAPolicyProvider,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserDirectory,
    TicketModel,
    UserModel,
)

# Test database URL (in-memory SQLite shared by one connection)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday 2026-10-19 09:00 UTC
T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class RecordingEventSink(IEventSink):
    """Event sink that keeps every published event in memory."""

    def __init__(self):
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_cls):
        return [e for e in self.events if isinstance(e, event_cls)]


class RecordingSurveyService(ISurveyService):
    def __init__(self):
        self.requested = []

    async def request_survey(self, ticket) -> None:
        self.requested.append(ticket.id)


class ConcurrentWriterRepository(SQLAlchemyTicketRepository):
    """Another writer bumps one ticket's version right before it is saved."""

    def __init__(self, session, contested_id):
        super().__init__(session)
        self.contested_id = contested_id

    async def save(self, ticket):
        if ticket.id == self.contested_id:
            await self._session.execute(
                update(TicketModel)
                .where(TicketModel.id == UUID(ticket.id))
                .values(version=TicketModel.version + 1)
                .execution_options(synchronize_session=False)
            )
        return await super().save(ticket)


@dataclass
class Directory:
    """Seeded users."""
    requester: str
    other_requester: str
    agent: str
    second_agent: str
    admin: str


@pytest_asyncio.fixture
async def engine():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session: AsyncSession) -> Directory:
    """Create one user per role (plus spares)."""
    rows = {
        "requester": UserModel(id=uuid4(), full_name="Rita Requester", role=UserRole.REQUESTER.value),
        "other_requester": UserModel(id=uuid4(), full_name="Oscar Other", role=UserRole.REQUESTER.value),
        "agent": UserModel(id=uuid4(), full_name="Alice Agent", role=UserRole.AGENT.value),
        "second_agent": UserModel(id=uuid4(), full_name="Bob Agent", role=UserRole.AGENT.value),
        "admin": UserModel(id=uuid4(), full_name="Adam Admin", role=UserRole.ADMIN.value),
    }
    session.add_all(rows.values())
    await session.commit()
    return Directory(**{key: str(model.id) for key, model in rows.items()})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def surveys() -> RecordingSurveyService:
    return RecordingSurveyService()


@pytest.fixture
def policy_provider(session) -> SQLAlchemySLAPolicyProvider:
    return SQLAlchemySLAPolicyProvider(session, SLAPolicyCache())


@pytest.fixture
def ticket_repository(session) -> SQLAlchemyTicketRepository:
    return SQLAlchemyTicketRepository(session)


@pytest.fixture
def message_repository(session) -> SQLAlchemyMessageRepository:
    return SQLAlchemyMessageRepository(session)


@pytest.fixture
def lifecycle(session, events, surveys, clock, policy_provider) -> TicketLifecycleService:
    return TicketLifecycleService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        events,
        policy_provider,
        clock=clock,
        survey_service=surveys,
    )


@pytest.fixture
def bulk_service(session, events, clock, policy_provider) -> BulkOperationService:
    return BulkOperationService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        events,
        policy_provider,
        clock=clock,
    )


@pytest.fixture
def merge_service(session, events, clock, policy_provider) -> TicketMergeService:
    return TicketMergeService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyMessageRepository(session),
        SQLAlchemyUserDirectory(session),
        events,
        policy_provider,
        clock=clock,
    )


@pytest.fixture
def scanner(session, events) -> BreachScanner:
    return BreachScanner(SQLAlchemyTicketRepository(session), events)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def concurrent_writer(session):
    """Build a ticket repository whose saves of one ticket always conflict."""

    def build(contested_id: str) -> ConcurrentWriterRepository:
        return ConcurrentWriterRepository(session, contested_id)

    return build
