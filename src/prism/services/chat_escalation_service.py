"""Chat escalation engine: the per-(opportunity, client) Q&A thread.

Client questions are answered by an automated ``Responder`` when it is
confident and escalated to AOPR staff otherwise. The question is always
committed before the responder runs, so a slow or failing responder can
never lose it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prism.app.config import get_settings
from prism.domain.clock import utcnow
from prism.domain.enums import ChatMessageType, ChatSenderType, EventType
from prism.domain.errors import (
    ConcurrentModificationError,
    EmptyMessageError,
    OpportunityNotFoundError,
    ThreadNotFoundError,
)
from prism.domain.models import ChatMessage, ChatThread, Client, Opportunity
from prism.services.chat_responders import (
    ConfidentAnswer,
    Escalate,
    Responder,
    ResponderContext,
)
from prism.services.notification_dispatcher import Audience, NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_SEQUENCE_RETRIES = 5
HISTORY_LIMIT = 10


def clean_body(text: str) -> str:
    """Strip surrounding whitespace; reject text that is empty afterwards."""
    body = (text or "").strip()
    if not body:
        raise EmptyMessageError()
    return body


def serialize_message(message: ChatMessage) -> dict:
    """Event-payload form of a chat message."""
    return {
        "id": message.id,
        "thread_id": message.thread_id,
        "opportunity_id": message.opportunity_id,
        "client_id": message.client_id,
        "sequence": message.sequence,
        "message_type": message.message_type,
        "sender_type": message.sender_type,
        "sender_id": message.sender_id,
        "body": message.body,
        "is_escalated": message.is_escalated,
        "metadata": message.meta or {},
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


@dataclass
class ChatExchange:
    """Result of one client question: the question and what came back."""

    thread: ChatThread
    question: ChatMessage
    reply: ChatMessage
    escalated: bool


class ChatEscalationEngine:
    """Owns chat threads, message ordering and escalation."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        responder: Responder,
        responder_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.dispatcher = dispatcher
        self.responder = responder
        self.responder_timeout = responder_timeout or settings.ai_timeout_seconds
        self.escalation_message = settings.escalation_message
        self.manual_escalation_message = settings.manual_escalation_message

    # ------------------------------------------------------------------
    # Client side
    # ------------------------------------------------------------------

    async def submit_client_question(
        self,
        opportunity_id: str,
        client_id: str,
        text: str,
        *,
        client_user_id: Optional[str] = None,
    ) -> ChatExchange:
        """Persist a question, then answer it or escalate it.

        Exactly one event is published: ``chat:message`` for a confident
        answer, ``chat:escalated`` otherwise.
        """
        body = clean_body(text)
        opportunity = await self._get_opportunity(opportunity_id)
        thread = await self._get_or_create_thread(opportunity, client_id)

        question = await self._append(
            thread,
            ChatMessageType.CLIENT_QUESTION,
            ChatSenderType.CLIENT,
            body=body,
            sender_id=client_user_id,
        )
        await self.db.commit()

        context = ResponderContext(
            opportunity_id=opportunity.id,
            title=opportunity.title,
            question=question.body,
            summary=opportunity.summary,
            media_type=opportunity.media_type,
            outlet_name=opportunity.outlet_name,
            deadline_at=opportunity.deadline_at,
            history=await self._recent_history(thread.id, before_sequence=question.sequence),
        )
        outcome = await self._ask_responder(context)

        if isinstance(outcome, ConfidentAnswer):
            reply = await self._append(
                thread,
                ChatMessageType.AI_RESPONSE,
                ChatSenderType.AI_BOT,
                body=outcome.text,
                meta={"confidence": outcome.confidence, **outcome.metadata},
            )
            await self.db.commit()
            await self.dispatcher.publish(
                EventType.CHAT_MESSAGE,
                self._payload(thread, [question, reply]),
                Audience.pair(thread.agency_id, thread.client_id),
            )
            return ChatExchange(thread=thread, question=question, reply=reply, escalated=False)

        reply = await self._append(
            thread,
            ChatMessageType.SYSTEM_MESSAGE,
            ChatSenderType.SYSTEM,
            body=self.escalation_message,
            is_escalated=True,
            meta={"escalation_reason": outcome.reason},
        )
        self._mark_escalated(thread)
        await self.db.commit()
        logger.info(
            "Chat thread %s escalated (opportunity=%s, client=%s, reason=%s)",
            thread.id, thread.opportunity_id, thread.client_id, outcome.reason,
        )
        await self.dispatcher.publish(
            EventType.CHAT_ESCALATED,
            self._payload(thread, [question, reply], reason=outcome.reason),
            Audience.pair(thread.agency_id, thread.client_id),
        )
        return ChatExchange(thread=thread, question=question, reply=reply, escalated=True)

    async def escalate_thread(
        self,
        opportunity_id: str,
        client_id: str,
        *,
        client_user_id: Optional[str] = None,
    ) -> ChatMessage:
        """Client asks for a human without waiting for the bot."""
        opportunity = await self._get_opportunity(opportunity_id)
        thread = await self._get_or_create_thread(opportunity, client_id)

        message = await self._append(
            thread,
            ChatMessageType.SYSTEM_MESSAGE,
            ChatSenderType.SYSTEM,
            body=self.manual_escalation_message,
            is_escalated=True,
            meta={"manual_escalation": True, "requested_by": client_user_id},
        )
        self._mark_escalated(thread)
        await self.db.commit()
        logger.info("Chat thread %s manually escalated by %s", thread.id, client_user_id)

        await self.dispatcher.publish(
            EventType.CHAT_ESCALATED,
            self._payload(thread, [message], reason="manual"),
            Audience.pair(thread.agency_id, thread.client_id),
        )
        return message

    # ------------------------------------------------------------------
    # Agency side
    # ------------------------------------------------------------------

    async def submit_agency_response(
        self,
        thread_id: str,
        staff_user_id: str,
        text: str,
        agency_id: Optional[str] = None,
    ) -> ChatMessage:
        """Post an AOPR reply and clear the thread's escalation flag."""
        body = clean_body(text)
        thread = await self.get_thread(thread_id, agency_id)

        message = await self._append(
            thread,
            ChatMessageType.AOPR_RESPONSE,
            ChatSenderType.AOPR_REP,
            body=body,
            sender_id=staff_user_id,
        )
        thread.is_escalated = False
        thread.updated_at = utcnow()
        await self.db.commit()
        logger.info("AOPR %s answered chat thread %s", staff_user_id, thread.id)

        await self.dispatcher.publish(
            EventType.CHAT_MESSAGE,
            self._payload(thread, [message]),
            Audience.pair(thread.agency_id, thread.client_id),
        )
        return message

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_thread(self, thread_id: str, agency_id: Optional[str] = None) -> ChatThread:
        query = select(ChatThread).where(ChatThread.id == thread_id)
        if agency_id is not None:
            query = query.where(ChatThread.agency_id == agency_id)
        result = await self.db.execute(query)
        thread = result.scalar_one_or_none()
        if thread is None:
            raise ThreadNotFoundError(f"Chat thread {thread_id} not found")
        return thread

    async def get_messages(self, opportunity_id: str, client_id: str) -> list[ChatMessage]:
        """All messages for the pair in sequence order; empty if no thread yet."""
        result = await self.db.execute(
            select(ChatMessage)
            .join(ChatThread, ChatThread.id == ChatMessage.thread_id)
            .where(
                ChatThread.opportunity_id == opportunity_id,
                ChatThread.client_id == client_id,
            )
            .order_by(ChatMessage.sequence)
        )
        return list(result.scalars().all())

    async def list_escalated(self, agency_id: str) -> list[dict]:
        """AOPR escalation queue: one row per escalated thread, newest first."""
        latest = (
            select(
                ChatMessage.thread_id.label("thread_id"),
                func.max(ChatMessage.sequence).label("max_sequence"),
            )
            .group_by(ChatMessage.thread_id)
            .subquery()
        )
        result = await self.db.execute(
            select(ChatThread, Opportunity.title, Client.name, ChatMessage)
            .join(Opportunity, Opportunity.id == ChatThread.opportunity_id)
            .join(Client, Client.id == ChatThread.client_id)
            .join(latest, latest.c.thread_id == ChatThread.id)
            .join(
                ChatMessage,
                and_(
                    ChatMessage.thread_id == ChatThread.id,
                    ChatMessage.sequence == latest.c.max_sequence,
                ),
            )
            .where(
                ChatThread.agency_id == agency_id,
                ChatThread.is_escalated.is_(True),
            )
            .order_by(ChatThread.escalated_at.desc())
        )
        return [
            {
                "thread": thread,
                "opportunity_title": title,
                "client_name": name,
                "last_message": message,
            }
            for thread, title, name, message in result.all()
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ask_responder(self, context: ResponderContext):
        try:
            return await asyncio.wait_for(
                self.responder.answer(context), timeout=self.responder_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Responder timed out after %.1fs for opportunity %s",
                self.responder_timeout, context.opportunity_id,
            )
            return Escalate("timeout")
        except Exception as exc:
            logger.error("Responder failed for opportunity %s: %s", context.opportunity_id, exc)
            return Escalate("responder_error")

    async def _get_opportunity(self, opportunity_id: str) -> Opportunity:
        opportunity = await self.db.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found")
        return opportunity

    async def _find_thread(self, opportunity_id: str, client_id: str) -> ChatThread | None:
        result = await self.db.execute(
            select(ChatThread).where(
                ChatThread.opportunity_id == opportunity_id,
                ChatThread.client_id == client_id,
            )
        )
        return result.scalar_one_or_none()

    async def _get_or_create_thread(self, opportunity: Opportunity, client_id: str) -> ChatThread:
        thread = await self._find_thread(opportunity.id, client_id)
        if thread is not None:
            return thread

        now = utcnow()
        thread = ChatThread(
            agency_id=opportunity.agency_id,
            opportunity_id=opportunity.id,
            client_id=client_id,
            is_escalated=False,
            last_sequence=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(thread)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another request created the thread first.
            await self.db.rollback()
            thread = await self._find_thread(opportunity.id, client_id)
            if thread is None:
                raise
        return thread

    async def _next_sequence(self, thread: ChatThread) -> int:
        """Allocate the next per-thread sequence with a conditional update."""
        for _ in range(MAX_SEQUENCE_RETRIES):
            observed = (
                await self.db.execute(
                    select(ChatThread.last_sequence).where(ChatThread.id == thread.id)
                )
            ).scalar_one()
            result = await self.db.execute(
                update(ChatThread)
                .where(
                    ChatThread.id == thread.id,
                    ChatThread.last_sequence == observed,
                )
                .values(last_sequence=observed + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await self.db.refresh(thread, attribute_names=["last_sequence"])
                return observed + 1
        raise ConcurrentModificationError("chat_thread", thread.id, "last_sequence")

    async def _append(
        self,
        thread: ChatThread,
        message_type: ChatMessageType,
        sender_type: ChatSenderType,
        *,
        body: str,
        sender_id: Optional[str] = None,
        is_escalated: bool = False,
        meta: Optional[dict] = None,
    ) -> ChatMessage:
        sequence = await self._next_sequence(thread)
        message = ChatMessage(
            thread_id=thread.id,
            agency_id=thread.agency_id,
            opportunity_id=thread.opportunity_id,
            client_id=thread.client_id,
            sequence=sequence,
            message_type=message_type.value,
            sender_type=sender_type.value,
            sender_id=sender_id,
            body=body,
            is_escalated=is_escalated,
            meta=meta or {},
            created_at=utcnow(),
        )
        self.db.add(message)
        await self.db.flush()
        return message

    async def _recent_history(self, thread_id: str, before_sequence: int) -> list[dict]:
        result = await self.db.execute(
            select(ChatMessage)
            .where(
                ChatMessage.thread_id == thread_id,
                ChatMessage.sequence < before_sequence,
            )
            .order_by(ChatMessage.sequence.desc())
            .limit(HISTORY_LIMIT)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return [{"sender_type": m.sender_type, "body": m.body} for m in rows]

    @staticmethod
    def _mark_escalated(thread: ChatThread) -> None:
        now = utcnow()
        thread.is_escalated = True
        thread.escalated_at = now
        thread.updated_at = now

    @staticmethod
    def _payload(thread: ChatThread, messages: list[ChatMessage], reason: Optional[str] = None) -> dict:
        payload = {
            "thread_id": thread.id,
            "opportunity_id": thread.opportunity_id,
            "client_id": thread.client_id,
            "messages": [serialize_message(m) for m in messages],
        }
        if reason is not None:
            payload["reason"] = reason
        return payload
