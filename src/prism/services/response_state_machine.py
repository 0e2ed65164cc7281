"""Response state machine: validates and applies client response transitions.

This module is the single owner of ``ClientOpportunityStatus.response_state``.
Direct client transitions go through ``apply_transition``; the restore
workflow re-opens a declined status through ``reset_to_pending``. Every write
is a compare-and-swap on (response_state, version) so concurrent requests for
the same (opportunity, client) pair cannot silently overwrite each other.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import to_naive_utc, utcnow
from prism.domain.enums import EventType, ResponseState
from prism.domain.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    StatusNotFoundError,
)
from prism.domain.models import ClientOpportunityStatus, Opportunity
from prism.services.activity_service import record_activity
from prism.services.notification_dispatcher import Audience, NotificationDispatcher
from prism.services.task_service import TaskService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition map: from_state -> allowed target states
# ---------------------------------------------------------------------------

S = ResponseState

TRANSITION_MAP: dict[ResponseState, frozenset[ResponseState]] = {
    S.PENDING: frozenset({S.INTERESTED, S.ACCEPTED, S.DECLINED, S.NO_RESPONSE}),
    S.INTERESTED: frozenset({S.ACCEPTED, S.DECLINED, S.NO_RESPONSE}),
    S.ACCEPTED: frozenset(),
    S.DECLINED: frozenset(),  # re-opened only via an approved restore request
    S.NO_RESPONSE: frozenset(),
}

_unmapped = set(ResponseState) - set(TRANSITION_MAP)
if _unmapped:
    raise RuntimeError(
        f"TRANSITION_MAP is missing states: {sorted(s.value for s in _unmapped)}"
    )

TERMINAL_STATES: frozenset[ResponseState] = frozenset(
    state for state, targets in TRANSITION_MAP.items() if not targets
)

# Target states that spawn follow-up tasks
TASK_TRIGGER_STATES: frozenset[ResponseState] = frozenset({S.INTERESTED, S.ACCEPTED})

# States the no-response sweep may close out
OPEN_STATES: frozenset[ResponseState] = frozenset({S.PENDING, S.INTERESTED})


def coerce_state(value) -> ResponseState:
    """Accept a ResponseState or its string value."""
    if isinstance(value, ResponseState):
        return value
    return ResponseState(value)


class ResponseStateMachine:
    """Validates and applies transitions of a client's response to an opportunity."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        task_service: Optional[TaskService] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.task_service = task_service or TaskService(db)

    # ------------------------------------------------------------------
    # Pure validation
    # ------------------------------------------------------------------

    @staticmethod
    def allowed_transitions(current: ResponseState) -> list[ResponseState]:
        """Return the valid next states from ``current`` in declaration order."""
        targets = TRANSITION_MAP[current]
        return [state for state in ResponseState if state in targets]

    @staticmethod
    def validate_transition(current: ResponseState, target: ResponseState) -> bool:
        """Return True if ``target`` is reachable or equal to ``current``.

        Raise InvalidTransitionError otherwise.
        """
        if current == target:
            return True
        if current in TERMINAL_STATES:
            raise InvalidTransitionError(
                current, target, f"{current.value} is terminal"
            )
        if target not in TRANSITION_MAP[current]:
            raise InvalidTransitionError(current, target)
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_status(self, status_id: str) -> ClientOpportunityStatus:
        status = await self.db.get(ClientOpportunityStatus, status_id)
        if status is None:
            raise StatusNotFoundError(f"Status {status_id} not found")
        return status

    async def get_status_for_pair(
        self, opportunity_id: str, client_id: str
    ) -> ClientOpportunityStatus:
        result = await self.db.execute(
            select(ClientOpportunityStatus).where(
                ClientOpportunityStatus.opportunity_id == opportunity_id,
                ClientOpportunityStatus.client_id == client_id,
            )
        )
        status = result.scalar_one_or_none()
        if status is None:
            raise StatusNotFoundError(
                f"Client {client_id} is not assigned to opportunity {opportunity_id}"
            )
        return status

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def apply_transition(
        self,
        status_id: str,
        target_state: ResponseState | str,
        notes: Optional[str] = None,
        *,
        actor_user_id: Optional[str] = None,
        decline_reason: Optional[str] = None,
        response_source: str = "client_app",
    ) -> ClientOpportunityStatus:
        """Move a status to ``target_state``.

        Re-applying the current state is a no-op success: nothing is written
        and no event is published. Raises InvalidTransitionError before any
        write, and ConcurrentModificationError if the row changed after it
        was read.
        """
        target = coerce_state(target_state)
        status = await self.get_status(status_id)
        current = coerce_state(status.response_state)

        self.validate_transition(current, target)
        if current == target:
            logger.info(
                "Status %s already %s; no-op", status.id, target.value,
            )
            return status

        now = utcnow()
        values: dict = {
            "response_state": target.value,
            "response_source": response_source,
            "version": status.version + 1,
            "updated_at": now,
        }
        if status.responded_at is None and current == S.PENDING:
            values["responded_at"] = now
        if notes is not None:
            values["notes_for_agency"] = notes
        if target == S.DECLINED and decline_reason is not None:
            values["decline_reason"] = decline_reason

        await self._compare_and_swap(status, current, values)

        if target in TASK_TRIGGER_STATES:
            await self.task_service.create_auto_tasks(
                agency_id=status.agency_id,
                opportunity_id=status.opportunity_id,
                client_id=status.client_id,
                response_state=target,
            )

        await record_activity(
            self.db,
            agency_id=status.agency_id,
            actor_user_id=actor_user_id,
            entity_type="client_opportunity_status",
            entity_id=status.id,
            action="client_response_updated",
            metadata={
                "previous_state": current.value,
                "new_state": target.value,
                "opportunity_id": status.opportunity_id,
                "client_id": status.client_id,
            },
        )
        await self.db.commit()

        logger.info(
            "Status %s: %s → %s (opportunity=%s, client=%s, actor=%s)",
            status.id,
            current.value,
            target.value,
            status.opportunity_id,
            status.client_id,
            actor_user_id,
        )

        await self.dispatcher.publish(
            EventType.STATUS_UPDATED,
            {
                "status_id": status.id,
                "opportunity_id": status.opportunity_id,
                "client_id": status.client_id,
                "previous_state": current.value,
                "new_state": target.value,
                "version": status.version,
            },
            Audience.pair(status.agency_id, status.client_id),
        )
        return status

    async def reset_to_pending(
        self,
        status: ClientOpportunityStatus,
        *,
        actor_user_id: Optional[str] = None,
    ) -> ClientOpportunityStatus:
        """Re-open a declined status. Only the restore workflow calls this.

        Flushes but does not commit or publish; the restore workflow owns the
        transaction and the resulting ``restore:response`` event.
        """
        current = coerce_state(status.response_state)
        if current != S.DECLINED:
            raise InvalidTransitionError(
                current, S.PENDING, "only declined statuses can be restored"
            )

        await self._compare_and_swap(
            status,
            current,
            {
                "response_state": S.PENDING.value,
                "response_source": "restore_request",
                "responded_at": None,
                "decline_reason": None,
                "version": status.version + 1,
                "updated_at": utcnow(),
            },
        )
        await record_activity(
            self.db,
            agency_id=status.agency_id,
            actor_user_id=actor_user_id,
            entity_type="client_opportunity_status",
            entity_id=status.id,
            action="client_response_restored",
            metadata={
                "previous_state": current.value,
                "new_state": S.PENDING.value,
                "opportunity_id": status.opportunity_id,
                "client_id": status.client_id,
            },
        )
        logger.info(
            "Status %s restored: declined → pending (opportunity=%s, client=%s)",
            status.id, status.opportunity_id, status.client_id,
        )
        return status

    async def _compare_and_swap(
        self,
        status: ClientOpportunityStatus,
        observed: ResponseState,
        values: dict,
    ) -> None:
        """Write ``values`` only if the row still holds the observed state and version."""
        result = await self.db.execute(
            update(ClientOpportunityStatus)
            .where(
                ClientOpportunityStatus.id == status.id,
                ClientOpportunityStatus.response_state == observed.value,
                ClientOpportunityStatus.version == status.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "CAS failed on status %s (expected %s v%s)",
                status.id, observed.value, status.version,
            )
            raise ConcurrentModificationError(
                "client_opportunity_status",
                status.id,
                f"{observed.value} v{status.version}",
            )
        await self.db.refresh(status)


async def sweep_no_response(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None,
) -> int:
    """Apply ``no_response`` to open statuses whose opportunity deadline has passed.

    When to run this is a policy decision made by the caller (see the
    optional loop in ``app.main``). Rows that change underneath the sweep are
    skipped and picked up on the next run.
    """
    now = to_naive_utc(now) if now is not None else utcnow()
    result = await db.execute(
        select(ClientOpportunityStatus.id)
        .join(Opportunity, Opportunity.id == ClientOpportunityStatus.opportunity_id)
        .where(
            Opportunity.deadline_at.is_not(None),
            Opportunity.deadline_at < now,
            ClientOpportunityStatus.response_state.in_([s.value for s in OPEN_STATES]),
        )
    )
    status_ids = list(result.scalars().all())

    machine = ResponseStateMachine(db, dispatcher)
    applied = 0
    for status_id in status_ids:
        try:
            await machine.apply_transition(
                status_id,
                S.NO_RESPONSE,
                actor_user_id=None,
                response_source="system",
            )
            applied += 1
        except (ConcurrentModificationError, InvalidTransitionError) as exc:
            await db.rollback()
            logger.info("No-response sweep skipped %s: %s", status_id, exc)
    if applied:
        logger.info("No-response sweep closed %d statuses", applied)
    return applied
