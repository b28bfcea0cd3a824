"""
aptivo/routes/dashboard.py
Dashboard payloads for admins and students.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.user import User, UserRole
from aptivo.security.rbac import require_admin, require_student
from aptivo.services import dashboard_service
from aptivo.services.notification_service import institution_student_ids
from aptivo.services.user_service import resolve_admin_institution_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/admin/stats")
async def admin_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    institution_id = None
    if current_user.role == UserRole.institution_admin:
        institution_id = await resolve_admin_institution_id(db, current_user)
    return {"success": True, **await dashboard_service.get_admin_stats(db, institution_id)}


@router.get("/admin/recent-activity")
async def recent_activity(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Institution admins see activity of their own students and themselves."""
    user_ids = None
    if current_user.role == UserRole.institution_admin:
        institution_id = await resolve_admin_institution_id(db, current_user)
        user_ids = [current_user.id]
        if institution_id is not None:
            user_ids.extend(await institution_student_ids(db, institution_id))
    activities = await dashboard_service.get_recent_activity(db, limit, user_ids)
    return {"success": True, "activities": activities}


@router.get("/student")
async def student_dashboard(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, **await dashboard_service.get_student_dashboard(db, current_user.id)}
