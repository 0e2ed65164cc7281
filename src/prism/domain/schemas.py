"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from prism.domain.enums import (
    MediaType,
    OpportunityStatus,
    ResponseState,
    TaskPriority,
    TaskStatus,
    TaskType,
    Visibility,
)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserLogin(BaseModel):
    """Schema for user login."""

    email: str
    password: str


class UserResponse(BaseModel):
    """Schema for user API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    agency_id: str
    client_id: str | None = None
    email: str
    name: str
    role: str
    is_active: bool


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class OpportunityCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    summary: str | None = None
    media_type: MediaType = MediaType.OTHER
    outlet_name: str | None = None
    deadline_at: datetime | None = None
    visibility: Visibility = Visibility.INTERNAL_ONLY


class OpportunityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    agency_id: str
    title: str
    summary: str | None = None
    media_type: str
    outlet_name: str | None = None
    deadline_at: datetime | None = None
    status: str
    visibility: str
    created_at: datetime | None = None


class OpportunityStatusUpdate(BaseModel):
    status: OpportunityStatus


class AssignClients(BaseModel):
    client_ids: list[str] = Field(min_length=1)


class ResponseSummary(BaseModel):
    """Counts of client responses per state for one opportunity."""

    opportunity_id: str
    total: int
    pending: int = 0
    interested: int = 0
    accepted: int = 0
    declined: int = 0
    no_response: int = 0


# ---------------------------------------------------------------------------
# Client response statuses
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    agency_id: str
    opportunity_id: str
    client_id: str
    response_state: str
    response_source: str | None = None
    responded_at: datetime | None = None
    decline_reason: str | None = None
    notes_for_agency: str | None = None
    version: int
    updated_at: datetime | None = None


class StatusTransition(BaseModel):
    target_state: ResponseState
    notes: str | None = None
    decline_reason: str | None = None


# ---------------------------------------------------------------------------
# Restore requests
# ---------------------------------------------------------------------------


class RestoreRequestCreate(BaseModel):
    opportunity_id: str
    client_id: str | None = None  # client users default to their own client


class RestoreRequestReview(BaseModel):
    reviewer_notes: str | None = None


class RestoreRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    agency_id: str
    opportunity_id: str
    client_id: str
    client_user_id: str
    status: str
    requested_at: datetime
    reviewed_by_user_id: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None


class RestoreQueueItem(BaseModel):
    request: RestoreRequestResponse
    opportunity_title: str
    client_name: str


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


MAX_CHAT_MESSAGE_LENGTH = 2000


def _clean_chat_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Message cannot be empty")
    if len(value) > MAX_CHAT_MESSAGE_LENGTH:
        raise ValueError(f"Message cannot exceed {MAX_CHAT_MESSAGE_LENGTH} characters")
    return value


ChatText = Annotated[str, AfterValidator(_clean_chat_text)]


class ChatMessageCreate(BaseModel):
    message: ChatText
    client_id: str | None = None  # defaults to the user's own client


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    thread_id: str
    opportunity_id: str
    client_id: str
    sequence: int
    message_type: str
    sender_type: str
    sender_id: str | None = None
    body: str
    is_escalated: bool
    metadata: dict | None = Field(default=None, validation_alias="meta")
    created_at: datetime


class ChatExchangeResponse(BaseModel):
    thread_id: str
    escalated: bool
    question: ChatMessageResponse
    reply: ChatMessageResponse


class ChatEscalate(BaseModel):
    client_id: str | None = None


class AgencyChatReply(BaseModel):
    message: ChatText


class EscalatedThreadItem(BaseModel):
    thread_id: str
    opportunity_id: str
    client_id: str
    opportunity_title: str
    client_name: str
    escalated_at: datetime | None = None
    last_message: ChatMessageResponse


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    opportunity_id: str
    client_id: str
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    task_type: TaskType = TaskType.OTHER
    priority: TaskPriority = TaskPriority.NORMAL
    due_at: datetime | None = None
    assigned_to_user_id: str | None = None


class TaskUpdate(BaseModel):
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    title: str | None = None
    description: str | None = None
    assigned_to_user_id: str | None = None
    due_at: datetime | None = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    agency_id: str
    opportunity_id: str
    client_id: str
    assigned_to_user_id: str | None = None
    title: str
    description: str | None = None
    due_at: datetime | None = None
    status: str
    task_type: str
    priority: str
    created_by_user_id: str | None = None
    trigger_state: str | None = None
    created_at: datetime | None = None
