"""
aptivo/routes/exam_attempts.py
Timed exam-taking for students.

Timers are not ticked by the server: every call below first reconciles the
attempt against the clock (section expiry, auto-submit, late flag), so the
client can poll GET /exam-attempts/{id} to refresh its countdown.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.user import User
from aptivo.schemas.exam import AnswerSave, IntegrityEvent, SectionSelect
from aptivo.security.rbac import require_student
from aptivo.services import exam_attempt_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exam-attempts", tags=["Exam Attempts"])


@router.post("/start/{exam_id}")
async def start_attempt(
    exam_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.start_attempt(db, current_user, exam_id)


@router.get("/my")
async def my_attempts(
    exam_id: Optional[int] = None,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "attempts": await exam_attempt_service.list_my_attempts(db, current_user, exam_id)}


@router.get("/{attempt_id}")
async def attempt_state(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.get_attempt_state(db, current_user, attempt_id)


@router.post("/{attempt_id}/answers")
async def save_answer(
    attempt_id: int,
    body: AnswerSave,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.save_answer(db, current_user, attempt_id, body.question_id, body.answer)


@router.post("/{attempt_id}/section")
async def select_section(
    attempt_id: int,
    body: SectionSelect,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.select_section(db, current_user, attempt_id, body.section_id)


@router.post("/{attempt_id}/finish-section")
async def finish_section(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.finish_section(db, current_user, attempt_id)


@router.post("/{attempt_id}/submit")
async def submit_attempt(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.submit_attempt(db, current_user, attempt_id)


@router.get("/{attempt_id}/review")
async def review(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.get_review(db, current_user, attempt_id)


@router.post("/{attempt_id}/events")
async def report_event(
    attempt_id: int,
    body: IntegrityEvent,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return await exam_attempt_service.record_event(db, current_user, attempt_id, body.event)
