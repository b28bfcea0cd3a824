"""
aptivo/routes/practice.py
Practice sessions, progress analytics and per-university practice rules.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import NotFoundError
from aptivo.orm.university import University
from aptivo.orm.user import User
from aptivo.schemas.practice import PracticeAnswer, PracticeComplete, PracticeRulesUpdate, PracticeStart
from aptivo.security.rbac import require_admin, require_student, require_super_admin
from aptivo.services import practice_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/practice", tags=["Practice"])


@router.post("/sessions")
async def start_session(
    body: PracticeStart,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Questions come back without their answers."""
    result = await practice_service.start_session(db, current_user, body.subtopic_id, body.university_id)
    return {"success": True, **result}


@router.post("/sessions/{session_id}/answer")
async def submit_answer(
    session_id: int,
    body: PracticeAnswer,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    result = await practice_service.submit_answer(
        db, current_user, session_id, body.mcq_id, body.selected_option, body.time_spent_seconds
    )
    return {"success": True, **result}


@router.post("/sessions/{session_id}/complete")
async def complete_session(
    session_id: int,
    body: Optional[PracticeComplete] = None,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    time_spent = body.time_spent_seconds if body else None
    result = await practice_service.complete_session(db, current_user, session_id, time_spent)
    return {"success": True, **result}


@router.get("/history")
async def history(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "sessions": await practice_service.get_history(db, current_user.id, limit)}


@router.get("/analytics")
async def analytics(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, **await practice_service.get_analytics(db, current_user.id)}


@router.get("/streak")
async def streak(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "streak": await practice_service.get_streak(db, current_user.id)}


@router.get("/weaknesses")
async def weaknesses(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "weaknesses": await practice_service.detect_weaknesses(db, current_user.id)}


# ================= RULES =================

@router.get("/rules/{university_id}")
async def get_rules(
    university_id: int,
    subject_id: Optional[int] = None,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rules = await practice_service.get_practice_rules(db, university_id, subject_id)
    return {"success": True, "rules": rules}


@router.put("/rules/{university_id}")
async def save_rules(
    university_id: int,
    body: PracticeRulesUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    if await db.get(University, university_id) is None:
        raise NotFoundError("University", university_id)
    values = body.model_dump(exclude={"subject_id"})
    rule = await practice_service.save_practice_rules(db, university_id, body.subject_id, values)
    logger.info(f"Practice rules saved for university {university_id} by user {current_user.id}")
    return {"success": True, "rules": rule.to_dict()}
