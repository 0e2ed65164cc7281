"""Restore request API: clients ask to reopen a declined opportunity, AOPR reviews."""

import logging

from fastapi import APIRouter, Depends

from prism.app.routes.auth import (
    get_current_user_dep,
    require_agency_staff,
    require_client_user,
    resolve_client_id,
)
from prism.app.routes.deps import get_restore_workflow, http_error
from prism.domain.errors import PrismError
from prism.domain.models import User
from prism.domain.schemas import (
    RestoreQueueItem,
    RestoreRequestCreate,
    RestoreRequestResponse,
    RestoreRequestReview,
)
from prism.services.restore_service import RestoreRequestWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/restore/requests", tags=["restore"])


@router.post("", response_model=RestoreRequestResponse, status_code=201)
async def create_restore_request(
    data: RestoreRequestCreate,
    user: User = Depends(require_client_user),
    workflow: RestoreRequestWorkflow = Depends(get_restore_workflow),
):
    client_id = resolve_client_id(user, data.client_id)
    try:
        request = await workflow.create_request(
            data.opportunity_id, client_id, requesting_user_id=user.id,
        )
    except PrismError as e:
        raise http_error(e)
    return RestoreRequestResponse.model_validate(request)


@router.get("", response_model=list[RestoreQueueItem])
async def list_pending_requests(
    user: User = Depends(require_agency_staff),
    workflow: RestoreRequestWorkflow = Depends(get_restore_workflow),
):
    """AOPR review queue, newest first."""
    rows = await workflow.list_pending(user.agency_id)
    return [
        RestoreQueueItem(
            request=RestoreRequestResponse.model_validate(row["request"]),
            opportunity_title=row["opportunity_title"],
            client_name=row["client_name"],
        )
        for row in rows
    ]


@router.get(
    "/opportunity/{opportunity_id}/client/{client_id}",
    response_model=list[RestoreRequestResponse],
)
async def list_requests_for_pair(
    opportunity_id: str,
    client_id: str,
    user: User = Depends(get_current_user_dep),
    workflow: RestoreRequestWorkflow = Depends(get_restore_workflow),
):
    client_id = resolve_client_id(user, client_id)
    requests = await workflow.list_for_pair(opportunity_id, client_id)
    return [
        RestoreRequestResponse.model_validate(r)
        for r in requests
        if r.agency_id == user.agency_id
    ]


@router.put("/{request_id}/approve", response_model=RestoreRequestResponse)
async def approve_request(
    request_id: str,
    data: RestoreRequestReview | None = None,
    user: User = Depends(require_agency_staff),
    workflow: RestoreRequestWorkflow = Depends(get_restore_workflow),
):
    try:
        request = await workflow.approve(
            request_id,
            reviewer_user_id=user.id,
            reviewer_notes=data.reviewer_notes if data else None,
            agency_id=user.agency_id,
        )
    except PrismError as e:
        raise http_error(e)
    return RestoreRequestResponse.model_validate(request)


@router.put("/{request_id}/deny", response_model=RestoreRequestResponse)
async def deny_request(
    request_id: str,
    data: RestoreRequestReview | None = None,
    user: User = Depends(require_agency_staff),
    workflow: RestoreRequestWorkflow = Depends(get_restore_workflow),
):
    try:
        request = await workflow.deny(
            request_id,
            reviewer_user_id=user.id,
            reviewer_notes=data.reviewer_notes if data else None,
            agency_id=user.agency_id,
        )
    except PrismError as e:
        raise http_error(e)
    return RestoreRequestResponse.model_validate(request)
