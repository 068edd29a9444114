"""
Tests for TicketLifecycleService.

Runs against SQLite (aiosqlite) with a fixed clock and a recording event sink.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from helpdesk.config import Priority, TicketStatus, UserRole
from helpdesk.core import (
    ForbiddenException,
    InvalidAssigneeException,
    InvalidStateException,
    ResourceNotFoundException,
)
from helpdesk.ticketing.domain import (
    FirstResponseBreached,
    TicketAssigned,
    TicketCancelled,
    TicketChanges,
    TicketCreated,
    TicketReplied,
    TicketUpdated,
)

MISSING_ID = "00000000-0000-4000-8000-000000000000"


async def open_ticket(lifecycle, users, priority="MEDIUM"):
    return await lifecycle.create_ticket(
        users.requester, "VPN drops", "VPN disconnects every 10 minutes", priority=priority
    )


class TestCreateTicket:

    @pytest.mark.asyncio
    async def test_create_starts_first_response_clock_only(self, lifecycle, users, events, t0):
        """New tickets are TODO with a first-response target and no resolution clock."""
        ticket = await open_ticket(lifecycle, users, priority="HIGH")

        assert ticket.status == TicketStatus.TODO
        assert ticket.priority == Priority.HIGH
        assert ticket.first_response_target == t0 + timedelta(minutes=60)
        assert ticket.sla_started_at is None
        assert ticket.sla_target is None
        assert ticket.version == 1
        assert len(events.of_type(TicketCreated)) == 1

    @pytest.mark.asyncio
    async def test_create_stores_initial_message(self, lifecycle, users):
        ticket = await lifecycle.create_ticket(
            users.requester, "VPN drops", "It drops", attachments=["log.txt"]
        )

        messages = await lifecycle.get_messages(ticket.id)
        assert len(messages) == 1
        assert messages[0].content == "It drops"
        assert messages[0].sender_id == users.requester
        assert messages[0].attachments == ["log.txt"]
        assert messages[0].is_system_message is False

    @pytest.mark.asyncio
    async def test_create_unknown_requester(self, lifecycle, users):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.create_ticket(MISSING_ID, "Title", "Body")

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_priority(self, lifecycle, users):
        with pytest.raises(ValidationError):
            await lifecycle.create_ticket(users.requester, "Title", "Body", priority="URGENT")


class TestUpdateTicket:

    @pytest.mark.asyncio
    async def test_start_work_writes_audit_message(self, lifecycle, users, events, clock, t0):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=5)

        updated = await lifecycle.update_ticket(
            ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent
        )

        assert updated.sla_started_at == t0 + timedelta(minutes=5)
        assert updated.sla_target == t0 + timedelta(minutes=5 + 1440)

        messages = await lifecycle.get_messages(ticket.id)
        audit = [m for m in messages if m.is_system_message]
        assert len(audit) == 1
        assert audit[0].content.startswith(
            "System: Status changed from TODO to IN_PROGRESS, SLA Timer started"
        )
        assert audit[0].content.endswith("by Alice Agent")

        updates = events.of_type(TicketUpdated)
        assert len(updates) == 1
        assert updates[0].status == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_no_op_update_writes_nothing(self, lifecycle, users, events):
        ticket = await open_ticket(lifecycle, users)

        result = await lifecycle.update_ticket(
            ticket.id, TicketChanges(status=TicketStatus.TODO, priority=Priority.MEDIUM), users.agent
        )

        assert result.version == ticket.version
        assert len(await lifecycle.get_messages(ticket.id)) == 1
        assert events.of_type(TicketUpdated) == []

    @pytest.mark.asyncio
    async def test_unknown_ticket_or_actor(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)

        with pytest.raises(ResourceNotFoundException):
            await lifecycle.update_ticket(MISSING_ID, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), MISSING_ID)

    @pytest.mark.asyncio
    async def test_resolve_requests_survey(self, lifecycle, users, surveys, clock, t0):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        clock.advance(hours=2)

        resolved = await lifecycle.update_ticket(
            ticket.id, TicketChanges(status=TicketStatus.RESOLVED), users.agent
        )

        assert resolved.resolved_at == t0 + timedelta(hours=2)
        assert surveys.requested == [ticket.id]

    @pytest.mark.asyncio
    async def test_resolve_from_vendor_wait_adds_visit_note(self, lifecycle, users, clock):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        clock.advance(minutes=30)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.WAITING_VENDOR), users.agent)
        clock.advance(minutes=60)

        resolved = await lifecycle.update_ticket(
            ticket.id, TicketChanges(status=TicketStatus.RESOLVED), users.agent
        )

        assert resolved.total_paused_minutes == 60
        messages = await lifecycle.get_messages(ticket.id)
        # Monday 2026-10-19 -> the next Friday
        assert "Vendor follow-up visit scheduled for Friday, 2026-10-23" in messages[-1].content

    @pytest.mark.asyncio
    async def test_resolve_after_resuming_has_no_visit_note(self, lifecycle, users, clock):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.WAITING_VENDOR), users.agent)
        clock.advance(minutes=60)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)
        clock.advance(minutes=10)

        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.RESOLVED), users.agent)

        messages = await lifecycle.get_messages(ticket.id)
        assert "Vendor follow-up" not in messages[-1].content

    @pytest.mark.asyncio
    async def test_status_change_on_resolved_ticket_rejected(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.RESOLVED), users.agent)
        before = len(await lifecycle.get_messages(ticket.id))

        with pytest.raises(InvalidStateException):
            await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.IN_PROGRESS), users.agent)

        assert len(await lifecycle.get_messages(ticket.id)) == before


class TestAssignTicket:

    @pytest.mark.asyncio
    async def test_assign_to_agent(self, lifecycle, users, events, clock):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=1)

        assigned = await lifecycle.assign_ticket(ticket.id, users.agent, users.admin)

        assert assigned.assignee_id == users.agent
        assert assigned.sla_target == ticket.sla_target
        assert assigned.first_response_target == ticket.first_response_target

        messages = await lifecycle.get_messages(ticket.id)
        assert messages[-1].content == "System: Ticket assigned to Alice Agent (was Unassigned) by Adam Admin"
        assert events.of_type(TicketAssigned)[0].assignee_id == users.agent

    @pytest.mark.asyncio
    async def test_reassign_names_previous_assignee(self, lifecycle, users, events, clock):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=1)
        await lifecycle.assign_ticket(ticket.id, users.agent, users.admin)
        clock.advance(minutes=1)

        await lifecycle.assign_ticket(ticket.id, users.second_agent, users.admin)

        messages = await lifecycle.get_messages(ticket.id)
        assert messages[-1].content == "System: Ticket assigned to Bob Agent (was Alice Agent) by Adam Admin"
        assert events.of_type(TicketAssigned)[-1].previous_assignee_id == users.agent

    @pytest.mark.asyncio
    async def test_assign_same_agent_is_no_op(self, lifecycle, users, events):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.assign_ticket(ticket.id, users.agent, users.admin)

        await lifecycle.assign_ticket(ticket.id, users.agent, users.admin)

        assert len(events.of_type(TicketAssigned)) == 1

    @pytest.mark.asyncio
    async def test_assign_to_requester_rejected(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)

        with pytest.raises(InvalidAssigneeException) as exc_info:
            await lifecycle.assign_ticket(ticket.id, users.other_requester, users.admin)

        assert exc_info.value.message == "Assignee must be an AGENT or ADMIN"

    @pytest.mark.asyncio
    async def test_assign_unknown_assignee(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)

        with pytest.raises(ResourceNotFoundException) as exc_info:
            await lifecycle.assign_ticket(ticket.id, MISSING_ID, users.admin)

        assert exc_info.value.resource_type == "Assignee"


class TestCancelTicket:

    @pytest.mark.asyncio
    async def test_requester_cancels_own_ticket(self, lifecycle, users, events, clock):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=1)

        cancelled = await lifecycle.cancel_ticket(
            ticket.id, users.requester, UserRole.REQUESTER, reason="Fixed itself"
        )

        assert cancelled.status == TicketStatus.CANCELLED
        messages = await lifecycle.get_messages(ticket.id)
        assert messages[-1].content == "System: Ticket cancelled by Rita Requester: Fixed itself"
        assert events.of_type(TicketCancelled)[0].reason == "Fixed itself"

    @pytest.mark.asyncio
    async def test_requester_cannot_cancel_others_ticket(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)

        with pytest.raises(ForbiddenException):
            await lifecycle.cancel_ticket(ticket.id, users.other_requester, UserRole.REQUESTER)

    @pytest.mark.asyncio
    async def test_agent_can_cancel_any_ticket(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)

        cancelled = await lifecycle.cancel_ticket(ticket.id, users.agent, UserRole.AGENT)

        assert cancelled.status == TicketStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_terminal_ticket_rejected(self, lifecycle, users):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.cancel_ticket(ticket.id, users.agent, UserRole.AGENT)

        with pytest.raises(InvalidStateException):
            await lifecycle.cancel_ticket(ticket.id, users.agent, UserRole.AGENT)

    @pytest.mark.asyncio
    async def test_cancel_from_vendor_wait_charges_pause(self, lifecycle, users, clock):
        ticket = await open_ticket(lifecycle, users)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.WAITING_VENDOR), users.agent)
        clock.advance(minutes=25)

        cancelled = await lifecycle.cancel_ticket(ticket.id, users.agent, UserRole.AGENT)

        assert cancelled.total_paused_minutes == 25
        assert cancelled.last_paused_at is None


class TestReplyToTicket:

    @pytest.mark.asyncio
    async def test_first_staff_reply_starts_work(self, lifecycle, users, events, clock, t0, ticket_repository):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=10)

        await lifecycle.reply_to_ticket(ticket.id, users.agent, "Looking into it")

        updated = await ticket_repository.get_by_id(ticket.id)
        assert updated.first_response_at == t0 + timedelta(minutes=10)
        assert updated.status == TicketStatus.IN_PROGRESS
        assert updated.sla_started_at == t0 + timedelta(minutes=10)
        assert updated.is_first_response_breached is False

        assert len(events.of_type(TicketUpdated)) == 1
        assert events.of_type(TicketReplied)[0].is_staff_reply is True
        assert events.of_type(FirstResponseBreached) == []

    @pytest.mark.asyncio
    async def test_requester_reply_does_not_stamp_response(self, lifecycle, users, events, ticket_repository):
        ticket = await open_ticket(lifecycle, users)

        await lifecycle.reply_to_ticket(ticket.id, users.requester, "Any news?")

        updated = await ticket_repository.get_by_id(ticket.id)
        assert updated.first_response_at is None
        assert updated.status == TicketStatus.TODO
        assert len(events.of_type(TicketReplied)) == 1

    @pytest.mark.asyncio
    async def test_late_first_reply_flags_breach_once(self, lifecycle, users, events, clock, ticket_repository):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=90)

        await lifecycle.reply_to_ticket(ticket.id, users.agent, "Sorry for the wait")
        clock.advance(minutes=5)
        await lifecycle.reply_to_ticket(ticket.id, users.second_agent, "Following up")

        updated = await ticket_repository.get_by_id(ticket.id)
        assert updated.is_first_response_breached is True
        assert len(events.of_type(FirstResponseBreached)) == 1

    @pytest.mark.asyncio
    async def test_reply_during_vendor_wait_uses_adjusted_target(self, lifecycle, users, events, clock, ticket_repository):
        ticket = await open_ticket(lifecycle, users)
        clock.advance(minutes=10)
        await lifecycle.update_ticket(ticket.id, TicketChanges(status=TicketStatus.WAITING_VENDOR), users.admin)
        # Stored target is T0+60, but 90 of the 100 elapsed minutes were paused
        clock.advance(minutes=90)

        await lifecycle.reply_to_ticket(ticket.id, users.agent, "Vendor replied")

        updated = await ticket_repository.get_by_id(ticket.id)
        assert updated.is_first_response_breached is False
        assert updated.status == TicketStatus.WAITING_VENDOR
        assert events.of_type(FirstResponseBreached) == []

    @pytest.mark.asyncio
    async def test_get_messages_unknown_ticket(self, lifecycle, users):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.get_messages(MISSING_ID)
