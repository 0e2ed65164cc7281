"""Tests for ResponseStateMachine: transition table, persistence and events."""

from datetime import timedelta
from itertools import product

import pytest
from sqlalchemy import select, update

from prism.domain.clock import utcnow
from prism.domain.enums import EventType, ResponseState, TaskType
from prism.domain.errors import ConcurrentModificationError, InvalidTransitionError
from prism.domain.models import ActivityLog, ClientOpportunityStatus, FollowUpTask
from prism.services.response_state_machine import (
    TERMINAL_STATES,
    TRANSITION_MAP,
    ResponseStateMachine,
    sweep_no_response,
)

S = ResponseState


@pytest.fixture
def machine(db_session, dispatcher):
    return ResponseStateMachine(db_session, dispatcher)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitionTable:
    def test_every_state_is_mapped(self):
        assert set(TRANSITION_MAP) == set(ResponseState)

    def test_terminal_states(self):
        assert TERMINAL_STATES == {S.ACCEPTED, S.DECLINED, S.NO_RESPONSE}

    def test_allowed_transitions_from_pending(self):
        assert ResponseStateMachine.allowed_transitions(S.PENDING) == [
            S.INTERESTED, S.ACCEPTED, S.DECLINED, S.NO_RESPONSE,
        ]

    def test_allowed_transitions_from_terminal_is_empty(self):
        for state in TERMINAL_STATES:
            assert ResponseStateMachine.allowed_transitions(state) == []

    @pytest.mark.parametrize("current,target", list(product(ResponseState, ResponseState)))
    def test_validate_matches_table(self, current, target):
        if current == target or target in TRANSITION_MAP[current]:
            assert ResponseStateMachine.validate_transition(current, target) is True
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                ResponseStateMachine.validate_transition(current, target)
            assert exc_info.value.current_state == current
            assert exc_info.value.target_state == target

    def test_invalid_transition_detail_names_both_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            ResponseStateMachine.validate_transition(S.ACCEPTED, S.DECLINED)
        detail = exc_info.value.to_detail()
        assert detail["code"] == "invalid_transition"
        assert detail["current_state"] == "accepted"
        assert detail["target_state"] == "declined"


# ---------------------------------------------------------------------------
# apply_transition over every (state, target) pair
# ---------------------------------------------------------------------------


class TestApplyTransitionGrid:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("current,target", list(product(ResponseState, ResponseState)))
    async def test_apply_matches_table(
        self, machine, publisher, make_agency, make_client, make_opportunity, make_status,
        current, target,
    ):
        agency = await make_agency()
        client = await make_client(agency)
        opportunity = await make_opportunity(agency)
        status = await make_status(opportunity, client, state=current)

        if current == target:
            result = await machine.apply_transition(status.id, target)
            assert result.response_state == current.value
            assert result.version == 1
            assert publisher.sent == []
        elif target in TRANSITION_MAP[current]:
            result = await machine.apply_transition(status.id, target)
            assert result.response_state == target.value
            assert result.version == 2
            assert len(publisher.of_type(EventType.STATUS_UPDATED)) == 1
        else:
            with pytest.raises(InvalidTransitionError):
                await machine.apply_transition(status.id, target)
            await machine.db.refresh(status)
            assert status.response_state == current.value
            assert status.version == 1
            assert publisher.sent == []


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------


class TestApplyTransition:
    @pytest.mark.asyncio
    async def test_accepts_string_target(self, machine, assignment):
        status = await machine.apply_transition(assignment.status.id, "interested")
        assert status.response_state == "interested"

    @pytest.mark.asyncio
    async def test_responded_at_set_when_leaving_pending(self, machine, assignment):
        assert assignment.status.responded_at is None
        status = await machine.apply_transition(assignment.status.id, S.INTERESTED)
        first_response = status.responded_at
        assert first_response is not None

        status = await machine.apply_transition(status.id, S.ACCEPTED)
        assert status.responded_at == first_response

    @pytest.mark.asyncio
    async def test_notes_and_decline_reason_persisted(self, machine, assignment):
        status = await machine.apply_transition(
            assignment.status.id, S.DECLINED, "Travelling that week",
            decline_reason="schedule_conflict",
        )
        assert status.notes_for_agency == "Travelling that week"
        assert status.decline_reason == "schedule_conflict"
        assert status.response_source == "client_app"

    @pytest.mark.asyncio
    async def test_event_payload_and_audience(self, machine, publisher, assignment):
        await machine.apply_transition(assignment.status.id, S.ACCEPTED)

        assert len(publisher.sent) == 1
        groups, message = publisher.sent[0]
        assert groups == [f"agency:{assignment.agency.id}", f"client:{assignment.client.id}"]
        assert message["type"] == "status:updated"
        assert message["opportunity_id"] == assignment.opportunity.id
        assert message["client_id"] == assignment.client.id
        assert message["previous_state"] == "pending"
        assert message["new_state"] == "accepted"
        assert "timestamp" in message

    @pytest.mark.asyncio
    async def test_accepted_creates_workflow_tasks(self, machine, db_session, assignment):
        await machine.apply_transition(assignment.status.id, S.ACCEPTED)

        result = await db_session.execute(
            select(FollowUpTask).where(FollowUpTask.client_id == assignment.client.id)
        )
        tasks = result.scalars().all()
        assert {t.task_type for t in tasks} == {
            TaskType.BRIEFING.value, TaskType.ASSET_COLLECTION.value, TaskType.SCHEDULING.value,
        }
        assert all(t.trigger_state == "accepted" for t in tasks)
        assert all(t.created_by_user_id == "system_auto" for t in tasks)

    @pytest.mark.asyncio
    async def test_interested_creates_follow_up_task(self, machine, db_session, assignment):
        await machine.apply_transition(assignment.status.id, S.INTERESTED)

        result = await db_session.execute(select(FollowUpTask))
        tasks = result.scalars().all()
        assert len(tasks) == 1
        assert tasks[0].task_type == TaskType.FOLLOW_UP.value

    @pytest.mark.asyncio
    async def test_declined_creates_no_tasks(self, machine, db_session, assignment):
        await machine.apply_transition(assignment.status.id, S.DECLINED)
        result = await db_session.execute(select(FollowUpTask))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_noop_writes_nothing(self, machine, db_session, publisher, assignment):
        await machine.apply_transition(assignment.status.id, S.PENDING)

        result = await db_session.execute(select(ActivityLog))
        assert result.scalars().all() == []
        assert publisher.sent == []

    @pytest.mark.asyncio
    async def test_activity_logged(self, machine, db_session, assignment):
        await machine.apply_transition(assignment.status.id, S.INTERESTED, actor_user_id="u1")

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == assignment.status.id)
        )
        entry = result.scalar_one()
        assert entry.action == "client_response_updated"
        assert entry.actor_user_id == "u1"
        assert entry.meta["new_state"] == "interested"

    @pytest.mark.asyncio
    async def test_stale_version_raises_concurrent_modification(
        self, machine, db_session, publisher, assignment,
    ):
        status = await machine.get_status(assignment.status.id)
        # Another writer moves the row on without this session noticing.
        await db_session.execute(
            update(ClientOpportunityStatus)
            .where(ClientOpportunityStatus.id == status.id)
            .values(version=5)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()

        with pytest.raises(ConcurrentModificationError):
            await machine.apply_transition(status.id, S.ACCEPTED)
        assert publisher.sent == []

        await db_session.refresh(status)
        assert status.response_state == "pending"
        assert status.version == 5

    @pytest.mark.asyncio
    async def test_client_journey(self, machine, publisher, assignment):
        status_id = assignment.status.id
        await machine.apply_transition(status_id, S.INTERESTED)
        status = await machine.apply_transition(status_id, S.ACCEPTED)
        assert status.version == 3

        with pytest.raises(InvalidTransitionError):
            await machine.apply_transition(status_id, S.DECLINED)

        events = publisher.of_type(EventType.STATUS_UPDATED)
        assert [e["new_state"] for e in events] == ["interested", "accepted"]


# ---------------------------------------------------------------------------
# reset_to_pending
# ---------------------------------------------------------------------------


class TestResetToPending:
    @pytest.mark.asyncio
    async def test_resets_declined(self, machine, publisher, make_agency, make_client,
                                   make_opportunity, make_status):
        agency = await make_agency()
        client = await make_client(agency)
        opportunity = await make_opportunity(agency)
        status = await make_status(opportunity, client, state=S.DECLINED)

        await machine.reset_to_pending(status, actor_user_id="reviewer")
        await machine.db.commit()

        assert status.response_state == "pending"
        assert status.responded_at is None
        assert status.response_source == "restore_request"
        assert status.version == 2
        # The restore workflow publishes, not the reset itself.
        assert publisher.sent == []

    @pytest.mark.asyncio
    async def test_rejects_non_declined(self, machine, assignment):
        with pytest.raises(InvalidTransitionError):
            await machine.reset_to_pending(assignment.status)


# ---------------------------------------------------------------------------
# No-response sweep
# ---------------------------------------------------------------------------


class TestNoResponseSweep:
    @pytest.mark.asyncio
    async def test_closes_open_statuses_past_deadline(
        self, db_session, dispatcher, publisher, make_agency, make_client,
        make_opportunity, make_status,
    ):
        agency = await make_agency()
        expired = await make_opportunity(agency, deadline_at=utcnow() - timedelta(hours=1))
        upcoming = await make_opportunity(agency, deadline_at=utcnow() + timedelta(days=1))

        pending = await make_status(expired, await make_client(agency, "A"))
        interested = await make_status(expired, await make_client(agency, "B"), state=S.INTERESTED)
        accepted = await make_status(expired, await make_client(agency, "C"), state=S.ACCEPTED)
        still_open = await make_status(upcoming, await make_client(agency, "D"))

        closed = await sweep_no_response(db_session, dispatcher)

        assert closed == 2
        for status in (pending, interested, accepted, still_open):
            await db_session.refresh(status)
        assert pending.response_state == "no_response"
        assert pending.response_source == "system"
        assert interested.response_state == "no_response"
        assert accepted.response_state == "accepted"
        assert still_open.response_state == "pending"
        assert len(publisher.of_type(EventType.STATUS_UPDATED)) == 2

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, db_session, dispatcher, assignment):
        assert await sweep_no_response(db_session, dispatcher) == 0
