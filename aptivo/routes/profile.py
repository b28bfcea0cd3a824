"""
aptivo/routes/profile.py
The signed-in user's own profile, enrollments, activity and stats.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import ForbiddenError, NotFoundError, ErrorCode
from aptivo.orm.community import ActivityLog
from aptivo.orm.institution import Institution
from aptivo.orm.user import User, UserRole
from aptivo.schemas.community import ProfileUpdate
from aptivo.security.rbac import get_current_user, require_student
from aptivo.services import dashboard_service, practice_service
from aptivo.services.institution_service import UniversityService
from aptivo.services.user_service import resolve_admin_institution_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["Profile"])


@router.get("")
async def get_profile(current_user: User = Depends(get_current_user)):
    return {"success": True, "user": current_user.to_dict()}


@router.patch("")
async def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    if changes.get("full_name"):
        current_user.full_name = changes["full_name"].strip()
    if "avatar_url" in changes:
        current_user.avatar_url = changes["avatar_url"]
    await db.commit()
    return {"success": True, "user": current_user.to_dict()}


@router.get("/enrollments")
async def my_enrollments(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "universities": await UniversityService(db).my_universities(current_user.id)}


@router.get("/institution")
async def my_institution(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if current_user.role != UserRole.institution_admin:
        raise ForbiddenError("Only institution admins have an institution profile", code=ErrorCode.PERMISSION_DENIED)
    institution_id = await resolve_admin_institution_id(db, current_user)
    institution = await db.get(Institution, institution_id) if institution_id is not None else None
    if institution is None:
        raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)
    return {"success": True, "institution": institution.to_dict()}


@router.get("/activity")
async def my_activity(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    logs = (await db.execute(
        select(ActivityLog)
        .where(ActivityLog.user_id == current_user.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
    )).scalars().all()
    return {"success": True, "activities": [dashboard_service.describe_activity(log) for log in logs]}


@router.get("/stats")
async def learning_stats(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    stats = await dashboard_service.get_student_stats(db, current_user.id)
    analytics = await practice_service.get_analytics(db, current_user.id)
    return {"success": True, "stats": stats, "practice": analytics}
