"""SQLAlchemy ORM models for PRISM.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (naive UTC)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from prism.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenancy / Users
# ---------------------------------------------------------------------------


class Agency(Base):
    """PR agency. Every opportunity, client and user belongs to one agency."""

    __tablename__ = "agencies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=func.now())


class User(Base):
    """Agency staff member or client user.

    Client users carry the client_id they act for; agency staff leave it null.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)  # UserRole
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    last_login_at = Column(DateTime, nullable=True)


class Client(Base):
    """A person or brand the agency represents."""

    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active")  # ClientStatus
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class Opportunity(Base):
    """Agency-authored media opportunity."""

    __tablename__ = "opportunities"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    media_type = Column(String(30), nullable=False, default="other")  # MediaType
    outlet_name = Column(String(255), nullable=True)
    deadline_at = Column(DateTime, nullable=True, index=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # OpportunityStatus
    visibility = Column(String(30), nullable=False, default="internal_only")  # Visibility
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    statuses = relationship("ClientOpportunityStatus", back_populates="opportunity")


class ClientOpportunityStatus(Base):
    """A client's response to one assigned opportunity.

    Mutated only through ResponseStateMachine. ``version`` is bumped on every
    write and used as the optimistic-concurrency guard.
    """

    __tablename__ = "client_opportunity_statuses"
    __table_args__ = (
        UniqueConstraint("client_id", "opportunity_id", name="uq_client_opportunity"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False, index=True)
    response_state = Column(String(20), nullable=False, default="pending")  # ResponseState
    response_source = Column(String(30), nullable=True)  # client_app, agency, system
    responded_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)
    notes_for_agency = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    opportunity = relationship("Opportunity", back_populates="statuses")


class RestoreRequest(Base):
    """Client petition to reopen a declined opportunity."""

    __tablename__ = "restore_requests"
    __table_args__ = (
        # At most one pending request per (opportunity, client).
        Index(
            "uq_restore_requests_pending",
            "opportunity_id",
            "client_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    client_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # RestoreRequestStatus
    requested_at = Column(DateTime, nullable=False)
    reviewed_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Follow-up work
# ---------------------------------------------------------------------------


class FollowUpTask(Base):
    """Agency work item tied to an opportunity + client pair."""

    __tablename__ = "follow_up_tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    assigned_to_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    due_at = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # TaskStatus
    task_type = Column(String(30), nullable=False, default="other")  # TaskType
    priority = Column(String(10), nullable=False, default="normal")  # TaskPriority
    created_by_user_id = Column(String(36), nullable=True)  # "system_auto" for workflow tasks
    trigger_state = Column(String(20), nullable=True)  # ResponseState that spawned it
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Q&A chat
# ---------------------------------------------------------------------------


class ChatThread(Base):
    """Q&A thread between one client and the agency about one opportunity."""

    __tablename__ = "chat_threads"
    __table_args__ = (
        UniqueConstraint("opportunity_id", "client_id", name="uq_chat_thread_pair"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    is_escalated = Column(Boolean, nullable=False, default=False, index=True)
    escalated_at = Column(DateTime, nullable=True)
    last_sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    messages = relationship(
        "ChatMessage",
        back_populates="thread",
        order_by="ChatMessage.sequence",
    )


class ChatMessage(Base):
    """Immutable entry in a chat thread, ordered by ``sequence``."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        UniqueConstraint("thread_id", "sequence", name="uq_chat_message_sequence"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    thread_id = Column(String(36), ForeignKey("chat_threads.id"), nullable=False, index=True)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False)
    opportunity_id = Column(String(36), ForeignKey("opportunities.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    message_type = Column(String(30), nullable=False)  # ChatMessageType
    sender_type = Column(String(20), nullable=False)  # ChatSenderType
    sender_id = Column(String(36), nullable=True)
    body = Column(Text, nullable=False)
    is_escalated = Column(Boolean, nullable=False, default=False)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)

    thread = relationship("ChatThread", back_populates="messages")


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class ActivityLog(Base):
    """Append-only audit trail entry."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_entity", "entity_type", "entity_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    actor_user_id = Column(String(36), nullable=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(36), nullable=False)
    action = Column(String(50), nullable=False)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())
