"""Opportunity Q&A chat API.

Clients ask questions about an opportunity; the automated responder answers
or escalates, and AOPR staff reply to escalated threads.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from prism.app.routes.auth import (
    get_current_user_dep,
    require_agency_staff,
    require_client_user,
    resolve_client_id,
)
from prism.app.routes.deps import get_chat_engine, http_error
from prism.domain.errors import PrismError
from prism.domain.models import User
from prism.domain.schemas import (
    AgencyChatReply,
    ChatEscalate,
    ChatExchangeResponse,
    ChatMessageCreate,
    ChatMessageResponse,
    EscalatedThreadItem,
)
from prism.services.chat_escalation_service import ChatEscalationEngine
from prism.services.opportunity_service import OpportunityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


async def _check_opportunity(engine: ChatEscalationEngine, user: User, opportunity_id: str) -> None:
    try:
        await OpportunityService(engine.db).get_opportunity(user.agency_id, opportunity_id)
    except PrismError as e:
        raise http_error(e)


@router.get("/escalated", response_model=list[EscalatedThreadItem])
async def list_escalated_threads(
    user: User = Depends(require_agency_staff),
    engine: ChatEscalationEngine = Depends(get_chat_engine),
):
    """AOPR escalation queue."""
    rows = await engine.list_escalated(user.agency_id)
    return [
        EscalatedThreadItem(
            thread_id=row["thread"].id,
            opportunity_id=row["thread"].opportunity_id,
            client_id=row["thread"].client_id,
            opportunity_title=row["opportunity_title"],
            client_name=row["client_name"],
            escalated_at=row["thread"].escalated_at,
            last_message=ChatMessageResponse.model_validate(row["last_message"]),
        )
        for row in rows
    ]


@router.post("/threads/{thread_id}/respond", response_model=ChatMessageResponse)
async def respond_to_thread(
    thread_id: str,
    data: AgencyChatReply,
    user: User = Depends(require_agency_staff),
    engine: ChatEscalationEngine = Depends(get_chat_engine),
):
    try:
        message = await engine.submit_agency_response(
            thread_id, user.id, data.message, agency_id=user.agency_id,
        )
    except PrismError as e:
        raise http_error(e)
    return ChatMessageResponse.model_validate(message)


@router.post("/{opportunity_id}/messages", response_model=ChatExchangeResponse)
async def send_message(
    opportunity_id: str,
    data: ChatMessageCreate,
    user: User = Depends(require_client_user),
    engine: ChatEscalationEngine = Depends(get_chat_engine),
):
    client_id = resolve_client_id(user, data.client_id)
    await _check_opportunity(engine, user, opportunity_id)
    try:
        exchange = await engine.submit_client_question(
            opportunity_id, client_id, data.message, client_user_id=user.id,
        )
    except PrismError as e:
        raise http_error(e)
    return ChatExchangeResponse(
        thread_id=exchange.thread.id,
        escalated=exchange.escalated,
        question=ChatMessageResponse.model_validate(exchange.question),
        reply=ChatMessageResponse.model_validate(exchange.reply),
    )


@router.get("/{opportunity_id}/messages", response_model=list[ChatMessageResponse])
async def get_messages(
    opportunity_id: str,
    client_id: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user_dep),
    engine: ChatEscalationEngine = Depends(get_chat_engine),
):
    client_id = resolve_client_id(user, client_id)
    await _check_opportunity(engine, user, opportunity_id)
    messages = await engine.get_messages(opportunity_id, client_id)
    return [ChatMessageResponse.model_validate(m) for m in messages]


@router.post("/{opportunity_id}/escalate", response_model=ChatMessageResponse)
async def escalate(
    opportunity_id: str,
    data: ChatEscalate | None = None,
    user: User = Depends(require_client_user),
    engine: ChatEscalationEngine = Depends(get_chat_engine),
):
    """Client asks to talk to a person."""
    client_id = resolve_client_id(user, data.client_id if data else None)
    await _check_opportunity(engine, user, opportunity_id)
    try:
        message = await engine.escalate_thread(
            opportunity_id, client_id, client_user_id=user.id,
        )
    except PrismError as e:
        raise http_error(e)
    return ChatMessageResponse.model_validate(message)
