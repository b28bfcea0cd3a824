"""
aptivo/services/exam_attempt_service.py
Timed exam-taking flow.

KEY FEATURES:
- Start or resume an attempt (one open attempt per student and exam)
- Per-section timers and a global timer, reconciled on every access
- Auto-submit on expiry, or late continuation when the exam allows it
- Answers saved one question at a time; locked sections are read-only
- Review after submission, with answers revealed per the release setting

Every public function takes an optional ``now`` so the clock can be pinned.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.config import feature_flags
from aptivo.errors import (
    BadRequestError, ForbiddenError, InvalidStateError, NotFoundError, ErrorCode
)
from aptivo.orm.base import utcnow
from aptivo.orm.exam import (
    AttemptStatus, ExamAnswer, ExamAttempt, ExamQuestion, ExamSection, Passage,
    ResultRelease, UniversityExam
)
from aptivo.orm.user import User
from aptivo.state_machines.exam_attempt import ExamAttemptMachine, is_correct, score_attempt

logger = logging.getLogger(__name__)

INTEGRITY_EVENTS = ("fullscreen_exit",)


@dataclass
class ExamBundle:
    exam: UniversityExam
    sections: List[ExamSection]
    questions: List[ExamQuestion]
    passages: List[Passage]

    def machine(self, attempt: ExamAttempt) -> ExamAttemptMachine:
        return ExamAttemptMachine(self.exam, self.sections, attempt)

    def question(self, question_id: int) -> Optional[ExamQuestion]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


async def load_exam_bundle(db: AsyncSession, exam_id: int) -> ExamBundle:
    exam = await db.get(UniversityExam, exam_id)
    if exam is None:
        raise NotFoundError("Exam", exam_id, code=ErrorCode.EXAM_NOT_FOUND)

    sections = (await db.execute(
        select(ExamSection)
        .where(ExamSection.exam_id == exam_id)
        .order_by(ExamSection.order_index, ExamSection.id)
    )).scalars().all()

    section_ids = [s.id for s in sections]
    questions = []
    if section_ids:
        questions = (await db.execute(
            select(ExamQuestion)
            .where(ExamQuestion.section_id.in_(section_ids))
            .order_by(ExamQuestion.order_index, ExamQuestion.id)
        )).scalars().all()

    passages = (await db.execute(
        select(Passage).where(Passage.exam_id == exam_id).order_by(Passage.id)
    )).scalars().all()

    return ExamBundle(exam=exam, sections=list(sections), questions=list(questions), passages=list(passages))


async def _load_answers(db: AsyncSession, attempt_id: int) -> Dict[int, Any]:
    rows = (await db.execute(
        select(ExamAnswer).where(ExamAnswer.attempt_id == attempt_id)
    )).scalars().all()
    return {row.question_id: row.answer for row in rows}


async def _get_owned_attempt(db: AsyncSession, attempt_id: int, student: User) -> ExamAttempt:
    attempt = await db.get(ExamAttempt, attempt_id)
    if attempt is None:
        raise NotFoundError("Attempt", attempt_id, code=ErrorCode.ATTEMPT_NOT_FOUND)
    if attempt.student_id != student.id:
        raise ForbiddenError("This attempt does not belong to you", code=ErrorCode.PERMISSION_DENIED)
    return attempt


async def _apply_score(db: AsyncSession, bundle: ExamBundle, attempt: ExamAttempt) -> None:
    answers = await _load_answers(db, attempt.id)
    score, total = score_attempt(bundle.exam, bundle.sections, bundle.questions, answers)
    attempt.score = score
    attempt.total_marks = total


async def _reconcile(db: AsyncSession, bundle: ExamBundle, attempt: ExamAttempt, now: datetime) -> List[str]:
    """Run timer expiries and score the attempt if they finished it."""
    events = bundle.machine(attempt).reconcile(now)
    if attempt.is_finished and attempt.score is None:
        await _apply_score(db, bundle, attempt)
    if events:
        await db.flush()
    return events


def _ensure_exam_open(exam: UniversityExam, student: User, now: datetime) -> None:
    if not exam.is_active:
        raise InvalidStateError("This exam is not active", code=ErrorCode.EXAM_NOT_OPEN)
    if exam.institution_id is not None and student.institution_id != exam.institution_id:
        raise ForbiddenError("This exam is not available to your institution", code=ErrorCode.SCOPE_VIOLATION)
    if feature_flags.FEATURE_EXAM_WINDOW_ENFORCEMENT:
        if exam.start_time and now < exam.start_time:
            raise InvalidStateError("This exam has not started yet", code=ErrorCode.EXAM_NOT_OPEN)
        if exam.end_time and now > exam.end_time:
            raise InvalidStateError("This exam has ended", code=ErrorCode.EXAM_NOT_OPEN)


async def start_attempt(
    db: AsyncSession,
    student: User,
    exam_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Start a new attempt or resume the open one.

    Lifecycle:
    1. An in-progress attempt is reconciled; if it is still open it is resumed
    2. A finished attempt blocks a new one unless the exam allows reattempts
    3. A new attempt starts in the first section with both timers running
    """
    now = now or utcnow()
    bundle = await load_exam_bundle(db, exam_id)

    open_attempt = (await db.execute(
        select(ExamAttempt)
        .where(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.student_id == student.id,
            ExamAttempt.status == AttemptStatus.in_progress,
        )
        .order_by(ExamAttempt.id.desc())
        .limit(1)
    )).scalar_one_or_none()

    if open_attempt is not None:
        await _reconcile(db, bundle, open_attempt, now)
        await db.commit()
        if not open_attempt.is_finished:
            logger.info(f"Resuming attempt {open_attempt.id} for student {student.id}")
            return await _state_payload(db, bundle, open_attempt, now, resumed=True)

    _ensure_exam_open(bundle.exam, student, now)

    if not bundle.exam.allow_reattempt:
        finished = (await db.execute(
            select(ExamAttempt.id).where(
                ExamAttempt.exam_id == exam_id,
                ExamAttempt.student_id == student.id,
                ExamAttempt.status != AttemptStatus.in_progress,
            ).limit(1)
        )).scalar_one_or_none()
        if finished is not None:
            raise InvalidStateError(
                "You have already attempted this exam",
                code=ErrorCode.REATTEMPT_NOT_ALLOWED,
            )

    if not bundle.questions:
        raise BadRequestError("This exam has no questions yet")

    attempt = ExamAttempt(
        student_id=student.id,
        exam_id=exam_id,
        university_id=bundle.exam.university_id,
        status=AttemptStatus.in_progress,
    )
    bundle.machine(attempt).start(now)
    db.add(attempt)
    await db.commit()
    logger.info(f"Student {student.id} started attempt {attempt.id} on exam {exam_id}")

    return await _state_payload(db, bundle, attempt, now, resumed=False)


async def _state_payload(
    db: AsyncSession,
    bundle: ExamBundle,
    attempt: ExamAttempt,
    now: datetime,
    resumed: bool = False,
) -> Dict[str, Any]:
    machine = bundle.machine(attempt)
    locked = set(machine.locked_ids)
    return {
        "attempt": attempt.to_dict(),
        "resumed": resumed,
        "exam": bundle.exam.to_dict(),
        "sections": [
            {**s.to_dict(), "locked": s.id in locked, "active": s.id == attempt.active_section_id}
            for s in bundle.sections
        ],
        "questions": [q.to_dict(include_answer=False) for q in bundle.questions],
        "passages": [p.to_dict() for p in bundle.passages],
        "answers": {str(k): v for k, v in (await _load_answers(db, attempt.id)).items()},
        "timer": machine.snapshot(now).to_dict(),
    }


async def get_attempt_state(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)
    await db.commit()
    return await _state_payload(db, bundle, attempt, now)


async def save_answer(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    question_id: int,
    answer: Any,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Upsert one answer. Rejected once the attempt or the question's section is closed."""
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)
    machine = bundle.machine(attempt)

    if attempt.is_finished:
        await db.commit()
        raise InvalidStateError("This attempt has already been submitted", code=ErrorCode.ALREADY_COMPLETED)
    if machine.answers_frozen(now):
        await db.commit()
        raise InvalidStateError("Time is up for this exam", code=ErrorCode.INVALID_STATE)

    question = bundle.question(question_id)
    if question is None:
        raise BadRequestError("Question does not belong to this exam")
    if machine.is_locked(question.section_id):
        await db.commit()
        raise InvalidStateError("This section is locked", code=ErrorCode.SECTION_LOCKED)

    existing = (await db.execute(
        select(ExamAnswer).where(
            ExamAnswer.attempt_id == attempt.id,
            ExamAnswer.question_id == question_id,
        )
    )).scalar_one_or_none()

    if existing is None:
        db.add(ExamAnswer(attempt_id=attempt.id, question_id=question_id, answer=answer))
    else:
        existing.answer = answer

    await db.commit()
    return {
        "success": True,
        "question_id": question_id,
        "timer": machine.snapshot(now).to_dict(),
        "is_late": attempt.is_late,
    }


async def select_section(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    section_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)
    if attempt.is_finished:
        await db.commit()
    bundle.machine(attempt).select_section(section_id, now)
    await db.commit()
    return await _state_payload(db, bundle, attempt, now)


async def finish_section(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Lock the active section; finishing the last open section submits the attempt."""
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)
    if attempt.is_finished:
        await db.commit()

    machine = bundle.machine(attempt)
    if machine.finish_section(now) is None:
        machine.finalize(AttemptStatus.completed, now)
        await _apply_score(db, bundle, attempt)
    await db.commit()
    return await _state_payload(db, bundle, attempt, now)


async def submit_attempt(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)

    if not attempt.is_finished:
        bundle.machine(attempt).finalize(AttemptStatus.completed, now)
        await _apply_score(db, bundle, attempt)
    await db.commit()

    logger.info(f"Attempt {attempt.id} submitted with score {attempt.score}/{attempt.total_marks}")
    return {
        "success": True,
        "attempt": attempt.to_dict(),
        "score": attempt.score,
        "total_marks": attempt.total_marks,
    }


async def get_review(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Score and per-question correctness; the correct answers and explanations
    are only included when the exam releases results instantly.
    """
    now = now or utcnow()
    attempt = await _get_owned_attempt(db, attempt_id, student)
    bundle = await load_exam_bundle(db, attempt.exam_id)
    await _reconcile(db, bundle, attempt, now)
    await db.commit()

    if not attempt.is_finished:
        raise InvalidStateError("Submit the exam before viewing the review")

    reveal = bundle.exam.result_release_setting == ResultRelease.instant
    answers = await _load_answers(db, attempt.id)

    items = []
    for q in bundle.questions:
        item = q.to_dict(include_answer=reveal)
        item["student_answer"] = answers.get(q.id)
        item["is_correct"] = is_correct(q, answers.get(q.id))
        items.append(item)

    total = attempt.total_marks or 0
    return {
        "attempt": attempt.to_dict(),
        "exam": bundle.exam.to_dict(),
        "results_released": reveal,
        "score": attempt.score,
        "total_marks": total,
        "percentage": round((attempt.score or 0) / total * 100, 2) if total else 0,
        "questions": items,
    }


async def record_event(
    db: AsyncSession,
    student: User,
    attempt_id: int,
    event_type: str,
) -> Dict[str, Any]:
    """Integrity events reported by the exam client (leaving fullscreen)."""
    if event_type not in INTEGRITY_EVENTS:
        raise BadRequestError(f"Unknown event type: {event_type}")
    attempt = await _get_owned_attempt(db, attempt_id, student)
    if attempt.is_finished:
        raise InvalidStateError("This attempt has already been submitted", code=ErrorCode.ALREADY_COMPLETED)

    attempt.fullscreen_exits = (attempt.fullscreen_exits or 0) + 1
    await db.commit()
    logger.warning(f"Attempt {attempt.id}: fullscreen exit #{attempt.fullscreen_exits}")
    return {"success": True, "fullscreen_exits": attempt.fullscreen_exits}


async def list_my_attempts(db: AsyncSession, student: User, exam_id: Optional[int] = None) -> List[Dict[str, Any]]:
    query = select(ExamAttempt).where(ExamAttempt.student_id == student.id)
    if exam_id is not None:
        query = query.where(ExamAttempt.exam_id == exam_id)
    rows = (await db.execute(query.order_by(ExamAttempt.start_time.desc()))).scalars().all()
    return [a.to_dict() for a in rows]
