"""Restore request workflow: lets a client ask to reopen a declined opportunity.

A request is a small state machine of its own (pending → approved | denied)
keyed by (opportunity, client). Approval re-enters the response state
machine through ``ResponseStateMachine.reset_to_pending``; this module never
writes ``response_state`` itself.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import to_naive_utc, utcnow
from prism.domain.enums import EventType, ResponseState, RestoreRequestStatus
from prism.domain.errors import (
    ConcurrentModificationError,
    DeadlinePassedError,
    DuplicateRequestError,
    NotDeclinedError,
    OpportunityNotFoundError,
    PrismError,
    RequestAlreadyReviewedError,
    RestoreRequestNotFoundError,
)
from prism.domain.models import Client, Opportunity, RestoreRequest
from prism.services.activity_service import record_activity
from prism.services.notification_dispatcher import Audience, NotificationDispatcher
from prism.services.response_state_machine import ResponseStateMachine, coerce_state

logger = logging.getLogger(__name__)


class RestoreRequestWorkflow:
    """Create, approve and deny restore requests."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        state_machine: Optional[ResponseStateMachine] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.state_machine = state_machine or ResponseStateMachine(db, dispatcher)

    async def create_request(
        self,
        opportunity_id: str,
        client_id: str,
        requesting_user_id: str,
        now: Optional[datetime] = None,
    ) -> RestoreRequest:
        """Open a pending request for a declined (opportunity, client) pair.

        Checks, in order: the opportunity exists, its deadline has not
        passed, the client's status is declined, and no other request is
        pending. All checks run before any write.
        """
        now = to_naive_utc(now) if now is not None else utcnow()

        opportunity = await self.db.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found")

        if opportunity.deadline_at is not None and now > opportunity.deadline_at:
            raise DeadlinePassedError(opportunity.deadline_at)

        status = await self.state_machine.get_status_for_pair(opportunity_id, client_id)
        current = coerce_state(status.response_state)
        if current != ResponseState.DECLINED:
            raise NotDeclinedError(current)

        existing = await self._find_pending(opportunity_id, client_id)
        if existing is not None:
            raise DuplicateRequestError(existing.id)

        request = RestoreRequest(
            id=str(uuid.uuid4()),
            agency_id=status.agency_id,
            opportunity_id=opportunity_id,
            client_id=client_id,
            client_user_id=requesting_user_id,
            status=RestoreRequestStatus.PENDING.value,
            requested_at=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(request)
        try:
            await self.db.flush()
        except IntegrityError:
            # Partial unique index caught a request created concurrently.
            await self.db.rollback()
            raise DuplicateRequestError()

        await record_activity(
            self.db,
            agency_id=status.agency_id,
            actor_user_id=requesting_user_id,
            entity_type="restore_request",
            entity_id=request.id,
            action="created",
            metadata={
                "opportunity_id": opportunity_id,
                "client_id": client_id,
                "client_user_id": requesting_user_id,
            },
        )
        await self.db.commit()
        logger.info(
            "Restore request %s created (opportunity=%s, client=%s)",
            request.id, opportunity_id, client_id,
        )

        await self.dispatcher.publish(
            EventType.RESTORE_REQUEST,
            {
                "request_id": request.id,
                "opportunity_id": opportunity_id,
                "client_id": client_id,
                "status": request.status,
            },
            Audience.staff(status.agency_id),
        )
        return request

    async def approve(
        self,
        request_id: str,
        reviewer_user_id: str,
        reviewer_notes: Optional[str] = None,
        agency_id: Optional[str] = None,
    ) -> RestoreRequest:
        """Approve a pending request and reset the linked status to pending."""
        request = await self._review(
            request_id, RestoreRequestStatus.APPROVED, reviewer_user_id, reviewer_notes, agency_id,
        )
        try:
            status = await self.state_machine.get_status_for_pair(
                request.opportunity_id, request.client_id,
            )
            await self.state_machine.reset_to_pending(status, actor_user_id=reviewer_user_id)
        except PrismError:
            await self.db.rollback()
            raise

        await self._finish_review(request, reviewer_user_id, new_state=ResponseState.PENDING)
        return request

    async def deny(
        self,
        request_id: str,
        reviewer_user_id: str,
        reviewer_notes: Optional[str] = None,
        agency_id: Optional[str] = None,
    ) -> RestoreRequest:
        """Deny a pending request. The linked status stays declined."""
        request = await self._review(
            request_id, RestoreRequestStatus.DENIED, reviewer_user_id, reviewer_notes, agency_id,
        )
        await self._finish_review(request, reviewer_user_id, new_state=ResponseState.DECLINED)
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_request(
        self, request_id: str, agency_id: Optional[str] = None
    ) -> RestoreRequest:
        query = select(RestoreRequest).where(RestoreRequest.id == request_id)
        if agency_id is not None:
            query = query.where(RestoreRequest.agency_id == agency_id)
        result = await self.db.execute(query)
        request = result.scalar_one_or_none()
        if request is None:
            raise RestoreRequestNotFoundError(f"Restore request {request_id} not found")
        return request

    async def list_pending(self, agency_id: str) -> list[dict]:
        """Pending requests for the AOPR queue, newest first."""
        result = await self.db.execute(
            select(RestoreRequest, Opportunity.title, Client.name)
            .join(Opportunity, Opportunity.id == RestoreRequest.opportunity_id)
            .join(Client, Client.id == RestoreRequest.client_id)
            .where(
                RestoreRequest.agency_id == agency_id,
                RestoreRequest.status == RestoreRequestStatus.PENDING.value,
            )
            .order_by(RestoreRequest.requested_at.desc())
        )
        return [
            {"request": request, "opportunity_title": title, "client_name": name}
            for request, title, name in result.all()
        ]

    async def list_for_pair(self, opportunity_id: str, client_id: str) -> list[RestoreRequest]:
        result = await self.db.execute(
            select(RestoreRequest)
            .where(
                RestoreRequest.opportunity_id == opportunity_id,
                RestoreRequest.client_id == client_id,
            )
            .order_by(RestoreRequest.requested_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _find_pending(self, opportunity_id: str, client_id: str) -> RestoreRequest | None:
        result = await self.db.execute(
            select(RestoreRequest).where(
                RestoreRequest.opportunity_id == opportunity_id,
                RestoreRequest.client_id == client_id,
                RestoreRequest.status == RestoreRequestStatus.PENDING.value,
            )
        )
        return result.scalars().first()

    async def _review(
        self,
        request_id: str,
        decision: RestoreRequestStatus,
        reviewer_user_id: str,
        reviewer_notes: Optional[str],
        agency_id: Optional[str],
    ) -> RestoreRequest:
        """Move a pending request to ``decision`` with a CAS on status=pending."""
        request = await self.get_request(request_id, agency_id)
        if request.status != RestoreRequestStatus.PENDING.value:
            raise RequestAlreadyReviewedError(request.id, request.status)

        now = utcnow()
        result = await self.db.execute(
            update(RestoreRequest)
            .where(
                RestoreRequest.id == request.id,
                RestoreRequest.status == RestoreRequestStatus.PENDING.value,
            )
            .values(
                status=decision.value,
                reviewed_by_user_id=reviewer_user_id,
                reviewed_at=now,
                review_notes=reviewer_notes,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "restore_request", request.id, RestoreRequestStatus.PENDING.value,
            )
        await self.db.refresh(request)
        return request

    async def _finish_review(
        self,
        request: RestoreRequest,
        reviewer_user_id: str,
        new_state: ResponseState,
    ) -> None:
        await record_activity(
            self.db,
            agency_id=request.agency_id,
            actor_user_id=reviewer_user_id,
            entity_type="restore_request",
            entity_id=request.id,
            action=request.status,
            metadata={
                "opportunity_id": request.opportunity_id,
                "client_id": request.client_id,
                "review_notes": request.review_notes,
            },
        )
        await self.db.commit()
        logger.info(
            "Restore request %s %s by %s", request.id, request.status, reviewer_user_id,
        )

        await self.dispatcher.publish(
            EventType.RESTORE_RESPONSE,
            {
                "request_id": request.id,
                "opportunity_id": request.opportunity_id,
                "client_id": request.client_id,
                "status": request.status,
                "new_state": new_state.value,
            },
            Audience.pair(request.agency_id, request.client_id),
        )
