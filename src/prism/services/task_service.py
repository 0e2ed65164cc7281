"""Follow-up task service.

Tasks are created by staff or automatically when a client moves an
opportunity to ``interested`` or ``accepted``. Tasks are never auto-deleted.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import to_naive_utc, utcnow
from prism.domain.enums import ResponseState, TaskPriority, TaskStatus, TaskType
from prism.domain.errors import TaskNotFoundError
from prism.domain.models import FollowUpTask

logger = logging.getLogger(__name__)

SYSTEM_AUTO_USER = "system_auto"


@dataclass(frozen=True)
class TaskTemplate:
    title: str
    description: str
    task_type: TaskType
    priority: TaskPriority
    due_in_days: int


AUTO_TASK_TEMPLATES: dict[ResponseState, tuple[TaskTemplate, ...]] = {
    ResponseState.ACCEPTED: (
        TaskTemplate(
            title="Schedule pre-interview briefing",
            description="Align talking points, confirm availability, and share relevant guidelines.",
            task_type=TaskType.BRIEFING,
            priority=TaskPriority.HIGH,
            due_in_days=5,
        ),
        TaskTemplate(
            title="Collect client assets",
            description="Gather headshots, bio, company materials as needed.",
            task_type=TaskType.ASSET_COLLECTION,
            priority=TaskPriority.NORMAL,
            due_in_days=3,
        ),
        TaskTemplate(
            title="Schedule media appearance",
            description="Coordinate with outlet and confirm all details.",
            task_type=TaskType.SCHEDULING,
            priority=TaskPriority.HIGH,
            due_in_days=7,
        ),
    ),
    ResponseState.INTERESTED: (
        TaskTemplate(
            title="Follow up on interest",
            description="Check in with client about opportunity details and next steps.",
            task_type=TaskType.FOLLOW_UP,
            priority=TaskPriority.NORMAL,
            due_in_days=2,
        ),
    ),
}


class TaskService:
    """Creates, lists and updates follow-up tasks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_task(
        self,
        agency_id: str,
        opportunity_id: str,
        client_id: str,
        title: str,
        description: Optional[str] = None,
        task_type: TaskType = TaskType.OTHER,
        priority: TaskPriority = TaskPriority.NORMAL,
        due_at: Optional[datetime] = None,
        assigned_to_user_id: Optional[str] = None,
        created_by_user_id: Optional[str] = None,
        trigger_state: Optional[ResponseState] = None,
    ) -> FollowUpTask:
        now = utcnow()
        task = FollowUpTask(
            id=str(uuid.uuid4()),
            agency_id=agency_id,
            opportunity_id=opportunity_id,
            client_id=client_id,
            assigned_to_user_id=assigned_to_user_id,
            title=title,
            description=description,
            due_at=to_naive_utc(due_at),
            status=TaskStatus.PENDING.value,
            task_type=task_type.value,
            priority=priority.value,
            created_by_user_id=created_by_user_id or SYSTEM_AUTO_USER,
            trigger_state=trigger_state.value if trigger_state else None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        await self.db.flush()
        logger.info("Task created: %s (%s)", task.id, title)
        return task

    async def create_auto_tasks(
        self,
        agency_id: str,
        opportunity_id: str,
        client_id: str,
        response_state: ResponseState,
    ) -> list[FollowUpTask]:
        """Create the workflow tasks for a response state. Other states yield none."""
        templates = AUTO_TASK_TEMPLATES.get(response_state, ())
        now = utcnow()
        tasks = []
        for template in templates:
            tasks.append(
                await self.create_task(
                    agency_id=agency_id,
                    opportunity_id=opportunity_id,
                    client_id=client_id,
                    title=template.title,
                    description=template.description,
                    task_type=template.task_type,
                    priority=template.priority,
                    due_at=now + timedelta(days=template.due_in_days),
                    created_by_user_id=SYSTEM_AUTO_USER,
                    trigger_state=response_state,
                )
            )
        if tasks:
            logger.info(
                "Auto tasks created: opportunity=%s client=%s state=%s count=%d",
                opportunity_id, client_id, response_state.value, len(tasks),
            )
        return tasks

    async def get_task(self, agency_id: str, task_id: str) -> FollowUpTask:
        result = await self.db.execute(
            select(FollowUpTask).where(
                FollowUpTask.id == task_id,
                FollowUpTask.agency_id == agency_id,
            )
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    async def list_tasks(
        self,
        agency_id: str,
        status: Optional[TaskStatus] = None,
        opportunity_id: Optional[str] = None,
        client_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FollowUpTask]:
        query = select(FollowUpTask).where(FollowUpTask.agency_id == agency_id)
        if status:
            query = query.where(FollowUpTask.status == status.value)
        if opportunity_id:
            query = query.where(FollowUpTask.opportunity_id == opportunity_id)
        if client_id:
            query = query.where(FollowUpTask.client_id == client_id)
        query = query.order_by(FollowUpTask.due_at.asc(), FollowUpTask.created_at.asc())
        result = await self.db.execute(query.offset(offset).limit(limit))
        return list(result.scalars().all())

    async def update_task(
        self,
        agency_id: str,
        task_id: str,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        assigned_to_user_id: Optional[str] = None,
        due_at: Optional[datetime] = None,
    ) -> FollowUpTask:
        task = await self.get_task(agency_id, task_id)
        if status is not None:
            task.status = status.value
        if priority is not None:
            task.priority = priority.value
        if title:
            task.title = title
        if description is not None:
            task.description = description
        if assigned_to_user_id is not None:
            task.assigned_to_user_id = assigned_to_user_id
        if due_at is not None:
            task.due_at = to_naive_utc(due_at)
        task.updated_at = utcnow()
        await self.db.flush()
        logger.info("Task updated: %s", task_id)
        return task
