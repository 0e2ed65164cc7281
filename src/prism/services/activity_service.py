"""Append-only activity log."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import utcnow
from prism.domain.models import ActivityLog

logger = logging.getLogger(__name__)


async def record_activity(
    db: AsyncSession,
    agency_id: str,
    actor_user_id: str | None,
    entity_type: str,
    entity_id: str,
    action: str,
    metadata: dict | None = None,
) -> ActivityLog:
    """Add an activity entry to the session. The caller owns the commit."""
    entry = ActivityLog(
        id=str(uuid.uuid4()),
        agency_id=agency_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        meta=metadata or {},
        created_at=utcnow(),
    )
    db.add(entry)
    logger.debug("Activity %s.%s on %s", entity_type, action, entity_id)
    return entry


async def list_activity(
    db: AsyncSession, entity_type: str, entity_id: str
) -> list[ActivityLog]:
    result = await db.execute(
        select(ActivityLog)
        .where(
            ActivityLog.entity_type == entity_type,
            ActivityLog.entity_id == entity_id,
        )
        .order_by(ActivityLog.created_at.asc())
    )
    return list(result.scalars().all())
