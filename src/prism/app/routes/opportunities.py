"""Opportunity API: create, assign to clients, lifecycle status and response summary."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prism.app.routes.auth import require_agency_staff
from prism.app.routes.deps import http_error
from prism.domain.errors import PrismError
from prism.domain.models import User
from prism.domain.schemas import (
    AssignClients,
    OpportunityCreate,
    OpportunityResponse,
    OpportunityStatusUpdate,
    ResponseSummary,
    StatusResponse,
)
from prism.infra.database import get_db
from prism.services.opportunity_service import OpportunityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/opportunities", tags=["opportunities"])


@router.post("", response_model=OpportunityResponse, status_code=201)
async def create_opportunity(
    data: OpportunityCreate,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    service = OpportunityService(db)
    opportunity = await service.create_opportunity(
        agency_id=user.agency_id,
        title=data.title,
        media_type=data.media_type,
        summary=data.summary,
        outlet_name=data.outlet_name,
        deadline_at=data.deadline_at,
        visibility=data.visibility,
        created_by_user_id=user.id,
    )
    return OpportunityResponse.model_validate(opportunity)


@router.get("/{opportunity_id}", response_model=OpportunityResponse)
async def get_opportunity(
    opportunity_id: str,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        opportunity = await OpportunityService(db).get_opportunity(user.agency_id, opportunity_id)
    except PrismError as e:
        raise http_error(e)
    return OpportunityResponse.model_validate(opportunity)


@router.post("/{opportunity_id}/assign", response_model=list[StatusResponse])
async def assign_clients(
    opportunity_id: str,
    data: AssignClients,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    """Assign clients; each new assignment starts as a pending response."""
    try:
        statuses = await OpportunityService(db).assign_clients(
            user.agency_id, opportunity_id, data.client_ids, actor_user_id=user.id,
        )
    except PrismError as e:
        raise http_error(e)
    return [StatusResponse.model_validate(s) for s in statuses]


@router.patch("/{opportunity_id}/status", response_model=OpportunityResponse)
async def set_opportunity_status(
    opportunity_id: str,
    data: OpportunityStatusUpdate,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        opportunity = await OpportunityService(db).set_status(
            user.agency_id, opportunity_id, data.status, actor_user_id=user.id,
        )
    except PrismError as e:
        raise http_error(e)
    return OpportunityResponse.model_validate(opportunity)


@router.get("/{opportunity_id}/summary", response_model=ResponseSummary)
async def get_response_summary(
    opportunity_id: str,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    service = OpportunityService(db)
    try:
        await service.get_opportunity(user.agency_id, opportunity_id)
    except PrismError as e:
        raise http_error(e)
    counts = await service.get_summary(user.agency_id, opportunity_id)
    return ResponseSummary(opportunity_id=opportunity_id, **counts)
