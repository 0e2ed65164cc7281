"""Client response status API.

Every transition goes through ResponseStateMachine; routes only check who is
allowed to act on which (opportunity, client) pair.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prism.app.routes.auth import (
    ensure_same_agency,
    get_current_user_dep,
    is_agency_staff,
    require_agency_staff,
    resolve_client_id,
)
from prism.app.routes.deps import get_state_machine, http_error
from prism.domain.errors import PrismError
from prism.domain.models import User
from prism.domain.schemas import StatusResponse, StatusTransition
from prism.infra.database import get_db
from prism.services.opportunity_service import OpportunityService
from prism.services.response_state_machine import ResponseStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/statuses", tags=["statuses"])


@router.get("/opportunity/{opportunity_id}", response_model=list[StatusResponse])
async def list_statuses_for_opportunity(
    opportunity_id: str,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    service = OpportunityService(db)
    try:
        await service.get_opportunity(user.agency_id, opportunity_id)
    except PrismError as e:
        raise http_error(e)
    statuses = await service.list_statuses(user.agency_id, opportunity_id)
    return [StatusResponse.model_validate(s) for s in statuses]


@router.get("/{opportunity_id}/{client_id}", response_model=StatusResponse)
async def get_status(
    opportunity_id: str,
    client_id: str,
    user: User = Depends(get_current_user_dep),
    machine: ResponseStateMachine = Depends(get_state_machine),
):
    client_id = resolve_client_id(user, client_id)
    try:
        status = await machine.get_status_for_pair(opportunity_id, client_id)
    except PrismError as e:
        raise http_error(e)
    ensure_same_agency(user, status.agency_id)
    return StatusResponse.model_validate(status)


@router.post("/{opportunity_id}/{client_id}/transition", response_model=StatusResponse)
async def transition_status(
    opportunity_id: str,
    client_id: str,
    data: StatusTransition,
    user: User = Depends(get_current_user_dep),
    machine: ResponseStateMachine = Depends(get_state_machine),
):
    """Record a client's response (interested, accepted, declined ...).

    Re-sending the current state returns the status unchanged.
    """
    client_id = resolve_client_id(user, client_id)
    try:
        status = await machine.get_status_for_pair(opportunity_id, client_id)
        ensure_same_agency(user, status.agency_id)
        status = await machine.apply_transition(
            status.id,
            data.target_state,
            data.notes,
            actor_user_id=user.id,
            decline_reason=data.decline_reason,
            response_source="agency" if is_agency_staff(user) else "client_app",
        )
    except PrismError as e:
        raise http_error(e)
    return StatusResponse.model_validate(status)
