"""Opportunity service: authoring, lifecycle status and client assignment.

Assigning an opportunity to a client is what creates the client's
``ClientOpportunityStatus`` row in ``pending``.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import to_naive_utc, utcnow
from prism.domain.enums import MediaType, OpportunityStatus, ResponseState, Visibility
from prism.domain.errors import NotFoundError, OpportunityNotFoundError
from prism.domain.models import Client, ClientOpportunityStatus, Opportunity
from prism.services.activity_service import record_activity

logger = logging.getLogger(__name__)


class OpportunityService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_opportunity(
        self,
        agency_id: str,
        title: str,
        media_type: MediaType = MediaType.OTHER,
        summary: Optional[str] = None,
        outlet_name: Optional[str] = None,
        deadline_at: Optional[datetime] = None,
        visibility: Visibility = Visibility.INTERNAL_ONLY,
        created_by_user_id: Optional[str] = None,
    ) -> Opportunity:
        now = utcnow()
        opportunity = Opportunity(
            id=str(uuid.uuid4()),
            agency_id=agency_id,
            created_by_user_id=created_by_user_id,
            title=title,
            summary=summary,
            media_type=media_type.value,
            outlet_name=outlet_name,
            deadline_at=to_naive_utc(deadline_at),
            status=OpportunityStatus.ACTIVE.value,
            visibility=visibility.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(opportunity)
        await record_activity(
            self.db,
            agency_id=agency_id,
            actor_user_id=created_by_user_id,
            entity_type="opportunity",
            entity_id=opportunity.id,
            action="created",
            metadata={"title": title},
        )
        await self.db.commit()
        logger.info("Opportunity created: %s (%s)", opportunity.id, title)
        return opportunity

    async def get_opportunity(self, agency_id: str, opportunity_id: str) -> Opportunity:
        result = await self.db.execute(
            select(Opportunity).where(
                Opportunity.id == opportunity_id,
                Opportunity.agency_id == agency_id,
            )
        )
        opportunity = result.scalar_one_or_none()
        if opportunity is None:
            raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found")
        return opportunity

    async def set_status(
        self,
        agency_id: str,
        opportunity_id: str,
        status: OpportunityStatus,
        actor_user_id: Optional[str] = None,
    ) -> Opportunity:
        opportunity = await self.get_opportunity(agency_id, opportunity_id)
        previous = opportunity.status
        opportunity.status = status.value
        opportunity.updated_at = utcnow()
        await record_activity(
            self.db,
            agency_id=agency_id,
            actor_user_id=actor_user_id,
            entity_type="opportunity",
            entity_id=opportunity_id,
            action="status_changed",
            metadata={"previous_status": previous, "new_status": status.value},
        )
        await self.db.commit()
        return opportunity

    async def assign_clients(
        self,
        agency_id: str,
        opportunity_id: str,
        client_ids: list[str],
        actor_user_id: Optional[str] = None,
    ) -> list[ClientOpportunityStatus]:
        """Create a pending status for each client not already assigned.

        Returns the status rows for every requested client, new or existing.
        """
        await self.get_opportunity(agency_id, opportunity_id)

        result = await self.db.execute(
            select(Client.id).where(
                Client.agency_id == agency_id,
                Client.id.in_(client_ids),
            )
        )
        known = set(result.scalars().all())
        unknown = [cid for cid in client_ids if cid not in known]
        if unknown:
            raise NotFoundError(f"Unknown clients: {', '.join(sorted(unknown))}")

        result = await self.db.execute(
            select(ClientOpportunityStatus).where(
                ClientOpportunityStatus.opportunity_id == opportunity_id,
                ClientOpportunityStatus.client_id.in_(client_ids),
            )
        )
        existing = {s.client_id: s for s in result.scalars().all()}

        now = utcnow()
        statuses = []
        for client_id in dict.fromkeys(client_ids):
            status = existing.get(client_id)
            if status is None:
                status = ClientOpportunityStatus(
                    id=str(uuid.uuid4()),
                    agency_id=agency_id,
                    client_id=client_id,
                    opportunity_id=opportunity_id,
                    response_state=ResponseState.PENDING.value,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(status)
                await record_activity(
                    self.db,
                    agency_id=agency_id,
                    actor_user_id=actor_user_id,
                    entity_type="client_opportunity_status",
                    entity_id=status.id,
                    action="assigned",
                    metadata={"opportunity_id": opportunity_id, "client_id": client_id},
                )
            statuses.append(status)

        await self.db.commit()
        logger.info(
            "Opportunity %s assigned to %d clients (%d new)",
            opportunity_id, len(statuses), len(statuses) - len(existing),
        )
        return statuses

    async def list_statuses(
        self, agency_id: str, opportunity_id: str
    ) -> list[ClientOpportunityStatus]:
        result = await self.db.execute(
            select(ClientOpportunityStatus)
            .where(
                ClientOpportunityStatus.agency_id == agency_id,
                ClientOpportunityStatus.opportunity_id == opportunity_id,
            )
            .order_by(ClientOpportunityStatus.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_summary(self, agency_id: str, opportunity_id: str) -> dict[str, int]:
        """Count statuses per response state, e.g. {"total": 3, "pending": 2, ...}."""
        result = await self.db.execute(
            select(ClientOpportunityStatus.response_state, func.count())
            .where(
                ClientOpportunityStatus.agency_id == agency_id,
                ClientOpportunityStatus.opportunity_id == opportunity_id,
            )
            .group_by(ClientOpportunityStatus.response_state)
        )
        counts = {state.value: 0 for state in ResponseState}
        for state, count in result.all():
            counts[state] = count
        return {"total": sum(counts.values()), **counts}
