"""Tests for RestoreRequestWorkflow."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from prism.domain.clock import utcnow
from prism.domain.enums import EventType, ResponseState, RestoreRequestStatus, UserRole
from prism.domain.errors import (
    DeadlinePassedError,
    DuplicateRequestError,
    NotDeclinedError,
    OpportunityNotFoundError,
    RequestAlreadyReviewedError,
    RestoreRequestNotFoundError,
    StatusNotFoundError,
)
from prism.domain.models import (
    ActivityLog,
    Agency,
    Client,
    ClientOpportunityStatus,
    Opportunity,
    RestoreRequest,
    User,
)
from prism.infra.database import Base
from prism.services.response_state_machine import ResponseStateMachine
from prism.services.restore_service import RestoreRequestWorkflow


@pytest.fixture
def workflow(db_session, dispatcher):
    return RestoreRequestWorkflow(db_session, dispatcher)


@pytest.fixture
async def declined(make_agency, make_client, make_user, make_opportunity, make_status):
    """A client who declined an opportunity whose deadline is still ahead."""
    agency = await make_agency()
    client = await make_client(agency)
    client_user = await make_user(agency, role=UserRole.CLIENT_OWNER, client=client)
    staff = await make_user(agency)
    opportunity = await make_opportunity(agency)
    status = await make_status(opportunity, client, state=ResponseState.DECLINED)
    return SimpleNamespace(
        agency=agency, client=client, client_user=client_user, staff=staff,
        opportunity=opportunity, status=status,
    )


class TestCreateRequest:
    @pytest.mark.asyncio
    async def test_creates_pending_request(self, workflow, publisher, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )

        assert request.status == RestoreRequestStatus.PENDING.value
        assert request.agency_id == declined.agency.id
        assert request.client_user_id == declined.client_user.id

        events = publisher.of_type(EventType.RESTORE_REQUEST)
        assert len(events) == 1
        assert events[0]["request_id"] == request.id
        # Only agency staff are told about a new request.
        groups, _ = publisher.sent[0]
        assert groups == [f"agency:{declined.agency.id}"]

    @pytest.mark.asyncio
    async def test_second_request_is_duplicate(self, workflow, db_session, declined):
        first = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        with pytest.raises(DuplicateRequestError) as exc_info:
            await workflow.create_request(
                declined.opportunity.id, declined.client.id, declined.client_user.id,
            )
        assert exc_info.value.existing_request_id == first.id

        result = await db_session.execute(select(RestoreRequest))
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_deadline_passed(self, workflow, declined):
        with pytest.raises(DeadlinePassedError):
            await workflow.create_request(
                declined.opportunity.id, declined.client.id, declined.client_user.id,
                now=declined.opportunity.deadline_at + timedelta(minutes=1),
            )

    @pytest.mark.asyncio
    async def test_no_deadline_never_expires(
        self, workflow, make_opportunity, make_status, declined,
    ):
        opportunity = await make_opportunity(declined.agency)
        opportunity.deadline_at = None
        await workflow.db.commit()
        await make_status(opportunity, declined.client, state=ResponseState.DECLINED)

        request = await workflow.create_request(
            opportunity.id, declined.client.id, declined.client_user.id,
            now=utcnow() + timedelta(days=365),
        )
        assert request.status == "pending"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "state", [ResponseState.PENDING, ResponseState.INTERESTED, ResponseState.ACCEPTED,
                  ResponseState.NO_RESPONSE],
    )
    async def test_not_declined(
        self, workflow, publisher, make_agency, make_client, make_opportunity, make_status, state,
    ):
        agency = await make_agency()
        client = await make_client(agency)
        opportunity = await make_opportunity(agency)
        await make_status(opportunity, client, state=state)

        with pytest.raises(NotDeclinedError) as exc_info:
            await workflow.create_request(opportunity.id, client.id, "client-user")
        assert exc_info.value.current_state == state
        assert publisher.sent == []

    @pytest.mark.asyncio
    async def test_unknown_opportunity(self, workflow, declined):
        with pytest.raises(OpportunityNotFoundError):
            await workflow.create_request("missing", declined.client.id, declined.client_user.id)

    @pytest.mark.asyncio
    async def test_unassigned_client(self, workflow, make_client, declined):
        other = await make_client(declined.agency, name="Unassigned")
        with pytest.raises(StatusNotFoundError):
            await workflow.create_request(declined.opportunity.id, other.id, "someone")

    @pytest.mark.asyncio
    async def test_activity_logged(self, workflow, db_session, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        result = await db_session.execute(
            select(ActivityLog).where(
                ActivityLog.entity_type == "restore_request",
                ActivityLog.entity_id == request.id,
            )
        )
        assert result.scalar_one().action == "created"


class TestReview:
    @pytest.mark.asyncio
    async def test_approve_resets_status_to_pending(self, workflow, db_session, publisher, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        approved = await workflow.approve(request.id, declined.staff.id, "Go for it")

        assert approved.status == "approved"
        assert approved.reviewed_by_user_id == declined.staff.id
        assert approved.review_notes == "Go for it"
        assert approved.reviewed_at is not None

        await db_session.refresh(declined.status)
        assert declined.status.response_state == "pending"
        assert declined.status.version == 2

        events = publisher.of_type(EventType.RESTORE_RESPONSE)
        assert len(events) == 1
        assert events[0]["status"] == "approved"
        assert events[0]["new_state"] == "pending"
        groups, _ = publisher.sent[-1]
        assert groups == [f"agency:{declined.agency.id}", f"client:{declined.client.id}"]

    @pytest.mark.asyncio
    async def test_approve_twice_rejected(self, workflow, db_session, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        await workflow.approve(request.id, declined.staff.id)

        with pytest.raises(RequestAlreadyReviewedError):
            await workflow.approve(request.id, declined.staff.id)
        with pytest.raises(RequestAlreadyReviewedError):
            await workflow.deny(request.id, declined.staff.id)

        await db_session.refresh(declined.status)
        assert declined.status.version == 2

    @pytest.mark.asyncio
    async def test_approved_client_can_respond_again(self, workflow, dispatcher, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        await workflow.approve(request.id, declined.staff.id)

        machine = ResponseStateMachine(workflow.db, dispatcher)
        status = await machine.apply_transition(declined.status.id, ResponseState.ACCEPTED)
        assert status.response_state == "accepted"
        assert status.responded_at is not None

    @pytest.mark.asyncio
    async def test_deny_keeps_declined_and_allows_new_request(
        self, workflow, db_session, publisher, declined,
    ):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        denied = await workflow.deny(request.id, declined.staff.id, "Slot filled")
        assert denied.status == "denied"

        await db_session.refresh(declined.status)
        assert declined.status.response_state == "declined"

        event = publisher.of_type(EventType.RESTORE_RESPONSE)[0]
        assert event["status"] == "denied"
        assert event["new_state"] == "declined"

        again = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        assert again.id != request.id
        assert again.status == "pending"

    @pytest.mark.asyncio
    async def test_review_scoped_to_agency(self, workflow, make_agency, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        other_agency = await make_agency("Other PR")
        with pytest.raises(RestoreRequestNotFoundError):
            await workflow.approve(request.id, "intruder", agency_id=other_agency.id)

    @pytest.mark.asyncio
    async def test_unknown_request(self, workflow):
        with pytest.raises(RestoreRequestNotFoundError):
            await workflow.deny("missing", "staff")


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_pending_enriched(self, workflow, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        rows = await workflow.list_pending(declined.agency.id)

        assert len(rows) == 1
        assert rows[0]["request"].id == request.id
        assert rows[0]["opportunity_title"] == declined.opportunity.title
        assert rows[0]["client_name"] == declined.client.name

    @pytest.mark.asyncio
    async def test_list_pending_excludes_reviewed(self, workflow, declined):
        request = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        await workflow.deny(request.id, declined.staff.id)
        assert await workflow.list_pending(declined.agency.id) == []

    @pytest.mark.asyncio
    async def test_list_for_pair_newest_first(self, workflow, declined):
        first = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
        )
        await workflow.deny(first.id, declined.staff.id)
        second = await workflow.create_request(
            declined.opportunity.id, declined.client.id, declined.client_user.id,
            now=utcnow() + timedelta(seconds=5),
        )

        history = await workflow.list_for_pair(declined.opportunity.id, declined.client.id)
        assert [r.id for r in history] == [second.id, first.id]


# ---------------------------------------------------------------------------
# Two sessions racing on the same pair
# ---------------------------------------------------------------------------

@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file database so sessions use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'restore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _seed_declined_pair(session: AsyncSession) -> SimpleNamespace:
    now = utcnow()
    agency = Agency(id="agency-1", name="Bright PR")
    client = Client(id="client-1", agency_id=agency.id, name="Dr. Rivera", status="active")
    user = User(
        id="user-1", agency_id=agency.id, client_id=client.id, email="owner@client.test",
        password_hash="x", name="Owner", role=UserRole.CLIENT_OWNER.value,
    )
    opportunity = Opportunity(
        id="opp-1", agency_id=agency.id, title="Radio interview",
        deadline_at=now + timedelta(days=3), created_at=now, updated_at=now,
    )
    status = ClientOpportunityStatus(
        id="status-1", agency_id=agency.id, client_id=client.id,
        opportunity_id=opportunity.id, response_state=ResponseState.DECLINED.value,
        responded_at=now, version=1, created_at=now, updated_at=now,
    )
    session.add_all([agency, client, user, opportunity, status])
    await session.commit()
    return SimpleNamespace(opportunity=opportunity, client=client, user=user)


class TestConcurrentCreate:
    @pytest.mark.asyncio
    async def test_unique_index_rejects_request_missed_by_stale_check(
        self, file_session_factory, dispatcher,
    ):
        async with file_session_factory() as seed_session:
            pair = await _seed_declined_pair(seed_session)

        async with file_session_factory() as first_db, file_session_factory() as second_db:
            first = RestoreRequestWorkflow(first_db, dispatcher)
            second = RestoreRequestWorkflow(second_db, dispatcher)

            created = await first.create_request(pair.opportunity.id, pair.client.id, pair.user.id)

            # The second session checked for a pending request before the first committed.
            with patch.object(second, "_find_pending", AsyncMock(return_value=None)):
                with pytest.raises(DuplicateRequestError):
                    await second.create_request(pair.opportunity.id, pair.client.id, pair.user.id)

        async with file_session_factory() as check_session:
            rows = (await check_session.execute(select(RestoreRequest))).scalars().all()
            logged = (
                await check_session.execute(
                    select(ActivityLog).where(ActivityLog.entity_type == "restore_request")
                )
            ).scalars().all()

        assert [r.id for r in rows] == [created.id]
        assert rows[0].status == RestoreRequestStatus.PENDING.value
        assert len(logged) == 1
