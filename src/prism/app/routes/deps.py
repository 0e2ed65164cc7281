"""Shared route dependencies: service wiring and domain-error translation."""

from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.errors import PrismError
from prism.infra.database import get_db
from prism.services.chat_escalation_service import ChatEscalationEngine
from prism.services.chat_responders import Responder, build_responder
from prism.services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from prism.services.response_state_machine import ResponseStateMachine
from prism.services.restore_service import RestoreRequestWorkflow


def http_error(exc: PrismError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@lru_cache
def get_responder() -> Responder:
    return build_responder()


def get_state_machine(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ResponseStateMachine:
    return ResponseStateMachine(db, dispatcher)


def get_restore_workflow(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RestoreRequestWorkflow:
    return RestoreRequestWorkflow(db, dispatcher)


def get_chat_engine(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    responder: Responder = Depends(get_responder),
) -> ChatEscalationEngine:
    return ChatEscalationEngine(db, dispatcher, responder)
