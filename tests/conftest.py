"""Shared test infrastructure for the PRISM test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- publisher / dispatcher: NotificationDispatcher backed by a RecordingPublisher
- make_agency, make_client, make_user, make_opportunity, make_status: row factories
- assignment: one agency, client and opportunity with a pending status
"""

import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from prism.infra.database import Base

import prism.domain.models  # noqa: F401

from prism.domain.clock import utcnow
from prism.domain.enums import MediaType, ResponseState, UserRole
from prism.domain.models import (
    Agency,
    Client,
    ClientOpportunityStatus,
    Opportunity,
    User,
)
from prism.services.auth_service import hash_password
from prism.services.notification_dispatcher import NotificationDispatcher, RecordingPublisher

TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def dispatcher(publisher):
    return NotificationDispatcher(publisher, timeout_seconds=1.0)


@pytest.fixture
def user_password():
    """Plain-text password every factory-made user logs in with."""
    return TEST_PASSWORD


# ---------------------------------------------------------------------------
# Row factories (each commits so service rollbacks never erase fixtures)
# ---------------------------------------------------------------------------

@pytest.fixture
def make_agency(db_session):
    async def _factory(name: str = "Bright PR") -> Agency:
        agency = Agency(id=str(uuid.uuid4()), name=name)
        db_session.add(agency)
        await db_session.commit()
        return agency

    return _factory


@pytest.fixture
def make_client(db_session):
    async def _factory(agency: Agency, name: str = "Dr. Jane Rivera") -> Client:
        client = Client(
            id=str(uuid.uuid4()),
            agency_id=agency.id,
            name=name,
            email=f"{uuid.uuid4().hex[:6]}@client.test",
            status="active",
        )
        db_session.add(client)
        await db_session.commit()
        return client

    return _factory


@pytest.fixture
def make_user(db_session):
    """Factory for agency staff or client users.

    Usage:
        staff = await make_user(agency)
        owner = await make_user(agency, role=UserRole.CLIENT_OWNER, client=client)
    """
    async def _factory(
        agency: Agency,
        role: UserRole = UserRole.AGENCY_ADMIN,
        client: Client | None = None,
        email: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            agency_id=agency.id,
            client_id=client.id if client else None,
            email=email or f"{uuid.uuid4().hex[:8]}@prism.test",
            password_hash=hash_password(TEST_PASSWORD),
            name=f"{role.value} user",
            role=role.value,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_opportunity(db_session):
    async def _factory(
        agency: Agency,
        title: str = "Morning show segment on sleep health",
        summary: str | None = "Five minute live segment with the host.",
        media_type: MediaType = MediaType.TV_APPEARANCE,
        outlet_name: str | None = "KTLA 5",
        deadline_at=None,
        status: str = "active",
    ) -> Opportunity:
        now = utcnow()
        opportunity = Opportunity(
            id=str(uuid.uuid4()),
            agency_id=agency.id,
            title=title,
            summary=summary,
            media_type=media_type.value,
            outlet_name=outlet_name,
            deadline_at=deadline_at if deadline_at is not None else now + timedelta(days=7),
            status=status,
            visibility="shared_with_clients",
            created_at=now,
            updated_at=now,
        )
        db_session.add(opportunity)
        await db_session.commit()
        return opportunity

    return _factory


@pytest.fixture
def make_status(db_session):
    async def _factory(
        opportunity: Opportunity,
        client: Client,
        state: ResponseState = ResponseState.PENDING,
        version: int = 1,
    ) -> ClientOpportunityStatus:
        now = utcnow()
        status = ClientOpportunityStatus(
            id=str(uuid.uuid4()),
            agency_id=opportunity.agency_id,
            client_id=client.id,
            opportunity_id=opportunity.id,
            response_state=state.value,
            responded_at=None if state == ResponseState.PENDING else now,
            version=version,
            created_at=now,
            updated_at=now,
        )
        db_session.add(status)
        await db_session.commit()
        return status

    return _factory


@pytest.fixture
async def assignment(make_agency, make_client, make_opportunity, make_status):
    """One agency, one client and one opportunity with a pending status."""
    agency = await make_agency()
    client = await make_client(agency)
    opportunity = await make_opportunity(agency)
    status = await make_status(opportunity, client)
    return SimpleNamespace(agency=agency, client=client, opportunity=opportunity, status=status)
