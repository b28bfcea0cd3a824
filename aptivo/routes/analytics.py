"""
aptivo/routes/analytics.py
Platform analytics for super admins and per-institution analytics for
institution admins.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import NotFoundError, ErrorCode
from aptivo.orm.user import User, UserRole
from aptivo.security.rbac import ensure_institution_scope, require_admin, require_super_admin
from aptivo.services import analytics_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("/overview")
async def overview(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "stats": await analytics_service.get_total_stats(db)}


@router.get("/student-growth")
async def student_growth(
    period: str = "month",
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "period": period, "data": await analytics_service.get_student_growth(db, period)}


@router.get("/practice-sessions")
async def practice_sessions(
    period: str = "month",
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    data = await analytics_service.get_practice_session_stats(db, period)
    return {"success": True, "period": period, "data": data}


@router.get("/top-students")
async def top_students(
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Institution admins only see their own students."""
    institution_id = current_user.institution_id if current_user.role == UserRole.institution_admin else None
    students = await analytics_service.get_top_performing_students(db, limit, institution_id)
    return {"success": True, "students": students}


@router.get("/weakest-topics")
async def weakest_topics(
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "topics": await analytics_service.get_weakest_topics(db, limit)}


@router.get("/subject-distribution")
async def subject_distribution(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await analytics_service.get_subject_distribution(db)}


@router.get("/university-enrollments")
async def university_enrollments(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await analytics_service.get_university_enrollment_stats(db)}


@router.get("/institutions/{institution_id}")
async def institution_stats(
    institution_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ensure_institution_scope(current_user, institution_id)
    stats = await analytics_service.get_institution_stats(db, institution_id)
    if not stats:
        raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)
    return {"success": True, "stats": stats}
