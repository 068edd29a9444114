"""
Tests for the SQLAlchemy repositories and the SLA policy provider.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from helpdesk.config import Priority, TicketStatus, UserRole
from helpdesk.core import ConflictException, ValidationException
from helpdesk.ticketing.domain import SLAConfig, SLAPolicyTable, TicketChanges
from helpdesk.ticketing.infrastructure import (
    SLAPolicyCache,
    SQLAlchemySLAPolicyProvider,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserDirectory,
)


class TestTicketRepository:

    @pytest.mark.asyncio
    async def test_timestamps_come_back_timezone_aware(self, session, session_factory, lifecycle, users, t0):
        ticket = await lifecycle.create_ticket(users.requester, "Monitor", "Flickers")
        await session.commit()

        async with session_factory() as fresh:
            loaded = await SQLAlchemyTicketRepository(fresh).get_by_id(ticket.id)

        assert loaded.created_at == t0
        assert loaded.created_at.tzinfo is not None
        assert loaded.first_response_target == t0 + timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_malformed_id_matches_nothing(self, ticket_repository):
        assert await ticket_repository.get_by_id("not-a-uuid") is None
        assert await ticket_repository.get_many(["not-a-uuid"]) == []

    @pytest.mark.asyncio
    async def test_save_bumps_version(self, lifecycle, users, ticket_repository):
        ticket = await lifecycle.create_ticket(users.requester, "Monitor", "Flickers")
        loaded = await ticket_repository.get_by_id(ticket.id)

        saved = await ticket_repository.save(replace(loaded, title="Monitor flickers"))

        assert saved.version == loaded.version + 1
        assert saved.title == "Monitor flickers"

    @pytest.mark.asyncio
    async def test_stale_version_is_a_conflict(self, lifecycle, users, ticket_repository):
        ticket = await lifecycle.create_ticket(users.requester, "Monitor", "Flickers")
        first_reader = await ticket_repository.get_by_id(ticket.id)
        second_reader = await ticket_repository.get_by_id(ticket.id)

        await ticket_repository.save(replace(first_reader, priority=Priority.HIGH))

        with pytest.raises(ConflictException):
            await ticket_repository.save(replace(second_reader, priority=Priority.LOW))

        assert (await ticket_repository.get_by_id(ticket.id)).priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_breach_candidates_skip_paused_and_terminal(self, lifecycle, users, ticket_repository):
        running = await lifecycle.create_ticket(users.requester, "Running", "Body")
        await lifecycle.update_ticket(running.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        paused = await lifecycle.create_ticket(users.requester, "Paused", "Body")
        await lifecycle.update_ticket(paused.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        await lifecycle.update_ticket(paused.id, TicketChanges(status=TicketStatus.WAITING_VENDOR), users.agent)
        done = await lifecycle.create_ticket(users.requester, "Done", "Body")
        await lifecycle.update_ticket(done.id, TicketChanges(status=TicketStatus.RESOLVED), users.agent)
        fresh = await lifecycle.create_ticket(users.requester, "Fresh", "Body")

        resolution = {t.id for t in await ticket_repository.find_resolution_breach_candidates()}
        first_response = {t.id for t in await ticket_repository.find_first_response_breach_candidates()}

        assert resolution == {running.id}
        assert first_response == {running.id, fresh.id}


class TestUserDirectory:

    @pytest.mark.asyncio
    async def test_lookup(self, session, users):
        directory = SQLAlchemyUserDirectory(session)

        agent = await directory.get_by_id(users.agent)
        assert agent.full_name == "Alice Agent"
        assert agent.role == UserRole.AGENT
        assert agent.is_staff

        requester = await directory.get_by_id(users.requester)
        assert not requester.is_staff

        assert await directory.get_by_id("00000000-0000-4000-8000-000000000000") is None
        assert await directory.get_by_id("bogus") is None


class TestPolicyProvider:

    @pytest.mark.asyncio
    async def test_empty_store_is_seeded_with_defaults(self, policy_provider):
        table = await policy_provider.get_policy_table()

        assert table.resolution_budget_minutes(Priority.CRITICAL) == 120
        assert table.resolution_budget_minutes(Priority.LOW) == 2880
        assert len(await policy_provider.list_policies()) == 4

    @pytest.mark.asyncio
    async def test_seed_from_config(self, session):
        config = SLAConfig(default_policies={"high": {"resolution_minutes": 240, "response_minutes": 15}})
        provider = SQLAlchemySLAPolicyProvider(session, SLAPolicyCache(), seed_config=config)

        table = await provider.get_policy_table()

        assert table.resolution_budget_minutes(Priority.HIGH) == 240
        assert table.response_budget_minutes(Priority.HIGH) == 15
        assert table.resolution_budget_minutes(Priority.MEDIUM) == 1440

    @pytest.mark.asyncio
    async def test_table_is_cached_once_committed(self, session):
        cache = SLAPolicyCache()
        provider = SQLAlchemySLAPolicyProvider(session, cache)
        await provider.get_policy_table()

        # Seed rows are not visible to other sessions yet
        assert cache.get() is None

        await session.commit()
        table = await provider.get_policy_table()

        assert cache.get() is table
        assert await provider.get_policy_table() is table

    @pytest.mark.asyncio
    async def test_update_policy_invalidates_cache(self, session):
        cache = SLAPolicyCache()
        provider = SQLAlchemySLAPolicyProvider(session, cache)
        await provider.get_policy_table()
        await session.commit()

        policy = await provider.update_policy(Priority.HIGH, 240)

        assert policy.resolution_budget_minutes == 240
        assert policy.response_budget_minutes == 60
        assert cache.get() is None
        table = await provider.get_policy_table()
        assert table.resolution_budget_minutes(Priority.HIGH) == 240

    @pytest.mark.asyncio
    async def test_reader_caching_before_commit_is_invalidated(self, session, session_factory):
        cache = SLAPolicyCache()
        provider = SQLAlchemySLAPolicyProvider(session, cache)
        await provider.get_policy_table()
        await session.commit()
        await provider.update_policy(Priority.HIGH, 240)

        # Another session caches the committed budgets before this one commits
        cache.set(SLAPolicyTable.defaults())

        assert (await provider.get_policy_table()).resolution_budget_minutes(Priority.HIGH) == 240
        await session.commit()

        assert cache.get() is None
        async with session_factory() as other:
            table = await SQLAlchemySLAPolicyProvider(other, cache).get_policy_table()
        assert table.resolution_budget_minutes(Priority.HIGH) == 240
        assert cache.get() is table

    @pytest.mark.asyncio
    async def test_rolled_back_update_leaves_old_budgets(self, session):
        cache = SLAPolicyCache()
        provider = SQLAlchemySLAPolicyProvider(session, cache)
        await provider.get_policy_table()
        await session.commit()

        await provider.update_policy(Priority.HIGH, 240)
        await session.rollback()

        assert cache.get() is None
        assert (await provider.get_policy_table()).resolution_budget_minutes(Priority.HIGH) == 480
        assert cache.get() is not None

    @pytest.mark.asyncio
    async def test_update_policy_rejects_empty_budget(self, policy_provider):
        with pytest.raises(ValidationException):
            await policy_provider.update_policy(Priority.HIGH, 0)

    @pytest.mark.asyncio
    async def test_running_ticket_keeps_target_until_priority_change(
        self, lifecycle, users, policy_provider, ticket_repository, t0
    ):
        ticket = await lifecycle.create_ticket(users.requester, "Server", "Down", priority="HIGH")
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)

        await policy_provider.update_policy(Priority.HIGH, 240)
        assert (await ticket_repository.get_by_id(ticket.id)).sla_target == t0 + timedelta(minutes=480)

        await lifecycle.update_ticket(ticket.id, TicketChanges(priority=Priority.CRITICAL), users.agent)
        await lifecycle.update_ticket(ticket.id, TicketChanges(priority=Priority.HIGH), users.agent)
        assert (await ticket_repository.get_by_id(ticket.id)).sla_target == t0 + timedelta(minutes=240)
