"""Follow-up task API for agency staff."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from prism.app.routes.auth import require_agency_staff
from prism.app.routes.deps import http_error
from prism.domain.enums import TaskStatus
from prism.domain.errors import PrismError
from prism.domain.models import User
from prism.domain.schemas import TaskCreate, TaskResponse, TaskUpdate
from prism.infra.database import get_db
from prism.services.opportunity_service import OpportunityService
from prism.services.task_service import TaskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    status: Optional[TaskStatus] = Query(default=None),
    opportunity_id: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    tasks = await TaskService(db).list_tasks(
        user.agency_id,
        status=status,
        opportunity_id=opportunity_id,
        client_id=client_id,
        limit=limit,
        offset=offset,
    )
    return [TaskResponse.model_validate(t) for t in tasks]


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    data: TaskCreate,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        await OpportunityService(db).get_opportunity(user.agency_id, data.opportunity_id)
    except PrismError as e:
        raise http_error(e)
    task = await TaskService(db).create_task(
        agency_id=user.agency_id,
        opportunity_id=data.opportunity_id,
        client_id=data.client_id,
        title=data.title,
        description=data.description,
        task_type=data.task_type,
        priority=data.priority,
        due_at=data.due_at,
        assigned_to_user_id=data.assigned_to_user_id,
        created_by_user_id=user.id,
    )
    await db.commit()
    return TaskResponse.model_validate(task)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: User = Depends(require_agency_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        task = await TaskService(db).update_task(
            user.agency_id,
            task_id,
            status=data.status,
            priority=data.priority,
            title=data.title,
            description=data.description,
            assigned_to_user_id=data.assigned_to_user_id,
            due_at=data.due_at,
        )
    except PrismError as e:
        raise http_error(e)
    await db.commit()
    return TaskResponse.model_validate(task)
