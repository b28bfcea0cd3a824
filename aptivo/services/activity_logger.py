"""
aptivo/services/activity_logger.py
Centralized admin activity logging.

Every route that changes curriculum content or enrolls a student calls
`log_activity()` after the change is flushed. Logs are append-only.
"""
import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.orm.community import ActivityLog

logger = logging.getLogger(__name__)


class ActivityType:
    SUBJECT_CREATED = "subject_created"
    MCQ_UPLOAD = "mcq_upload"
    CONTENT_UPDATED = "content_updated"
    STUDENT_ENROLLED = "student_enrolled"


async def log_activity(
    db: AsyncSession,
    user_id: Optional[int],
    activity_type: str,
    activity_data: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    """
    Record one activity entry in the caller's transaction.

    Args:
        db: Database session (the caller commits)
        user_id: Acting user, None for service-key calls
        activity_type: One of ActivityType
        activity_data: JSON-serializable context such as
            ``{"name": ...}`` or ``{"count": 25, "subject": ...}``

    Example usage:
        await log_activity(db, current_user.id, ActivityType.SUBJECT_CREATED,
                           {"name": subject.name})
    """
    entry = ActivityLog(
        user_id=user_id,
        activity_type=activity_type,
        activity_data=activity_data or {},
    )
    db.add(entry)
    await db.flush()
    logger.info(f"Activity logged: {activity_type} by user {user_id}")
    return entry
