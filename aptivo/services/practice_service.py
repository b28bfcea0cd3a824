"""
aptivo/services/practice_service.py
Self-paced MCQ practice.

Session generation:
1. Question count comes from the content mapping for the subtopic
   (institution mapping first, then the university-wide one), else the
   university's practice rule, else 10
2. The count is split easy/medium/hard by the rule percentages
3. Each bucket draws random active MCQs the student has not already
   answered correctly; short buckets are topped up from the other allowed
   difficulties
"""
import logging
import math
import random
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.config import feature_flags
from aptivo.errors import BadRequestError, ForbiddenError, InvalidStateError, NotFoundError, ErrorCode
from aptivo.orm.base import utcnow
from aptivo.orm.curriculum import Subtopic, Topic
from aptivo.orm.mcq import MCQ, OPTION_LETTERS
from aptivo.orm.practice import LearningStreak, MCQAttempt, PracticeSession, UniversityPracticeRule
from aptivo.orm.university import ALL_DIFFICULTIES, UniversityContentAccess
from aptivo.orm.user import User

logger = logging.getLogger(__name__)

DEFAULT_RULES = {
    "mcq_count_per_session": 10,
    "easy_percentage": 40,
    "medium_percentage": 40,
    "hard_percentage": 20,
    "time_limit_minutes": None,
}

SKIPPED = "SKIPPED"
WEAKNESS_ACCURACY = 50
WEAKNESS_MIN_ATTEMPTS = 5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def difficulty_counts(total: int, easy_percentage: int, medium_percentage: int) -> Dict[str, int]:
    """
    >>> difficulty_counts(10, 40, 40)
    {'easy': 4, 'medium': 4, 'hard': 2}
    """
    easy = round_half_up(total * easy_percentage / 100)
    medium = round_half_up(total * medium_percentage / 100)
    hard = max(0, total - easy - medium)
    return {"easy": easy, "medium": medium, "hard": hard}


def compute_streak(dates: Iterable[date], today: date) -> int:
    """
    Consecutive study days ending today or yesterday; 0 once a full day is missed.
    """
    days = sorted(set(dates), reverse=True)
    if not days:
        return 0
    if days[0] < today - timedelta(days=1):
        return 0

    streak = 1
    for previous, current in zip(days, days[1:]):
        if previous - current == timedelta(days=1):
            streak += 1
        else:
            break
    return streak


# ================= RULES =================


async def get_practice_rules(
    db: AsyncSession,
    university_id: Optional[int],
    subject_id: Optional[int] = None,
) -> Dict[str, Any]:
    if university_id is None:
        return dict(DEFAULT_RULES)

    query = select(UniversityPracticeRule).where(UniversityPracticeRule.university_id == university_id)
    rules = (await db.execute(query)).scalars().all()
    match = next((r for r in rules if r.subject_id == subject_id), None) \
        or next((r for r in rules if r.subject_id is None), None)
    if match is None:
        return dict(DEFAULT_RULES)
    data = match.to_dict()
    return {key: data[key] for key in DEFAULT_RULES}


async def save_practice_rules(
    db: AsyncSession,
    university_id: int,
    subject_id: Optional[int],
    values: Dict[str, Any],
) -> UniversityPracticeRule:
    total_pct = values["easy_percentage"] + values["medium_percentage"] + values["hard_percentage"]
    if total_pct != 100:
        raise BadRequestError("Difficulty percentages must add up to 100")

    query = select(UniversityPracticeRule).where(
        UniversityPracticeRule.university_id == university_id,
        UniversityPracticeRule.subject_id.is_(None) if subject_id is None
        else UniversityPracticeRule.subject_id == subject_id,
    )
    rule = (await db.execute(query)).scalar_one_or_none()
    if rule is None:
        rule = UniversityPracticeRule(university_id=university_id, subject_id=subject_id)
        db.add(rule)
    for key, value in values.items():
        setattr(rule, key, value)
    await db.commit()
    return rule


async def _mapping_row(
    db: AsyncSession,
    university_id: Optional[int],
    institution_id: Optional[int],
    subtopic_id: int,
) -> Optional[UniversityContentAccess]:
    if university_id is None:
        return None
    base = select(UniversityContentAccess).where(
        UniversityContentAccess.university_id == university_id,
        UniversityContentAccess.subtopic_id == subtopic_id,
        UniversityContentAccess.is_active.is_(True),
    )
    if institution_id is not None:
        row = (await db.execute(
            base.where(UniversityContentAccess.institution_id == institution_id).limit(1)
        )).scalar_one_or_none()
        if row is not None:
            return row
    return (await db.execute(
        base.where(UniversityContentAccess.institution_id.is_(None)).limit(1)
    )).scalar_one_or_none()


# ================= SESSIONS =================


async def _mastered_mcq_ids(db: AsyncSession, student_id: int) -> List[int]:
    result = await db.execute(
        select(MCQAttempt.mcq_id)
        .where(MCQAttempt.student_id == student_id, MCQAttempt.is_correct.is_(True))
        .distinct()
    )
    return list(result.scalars().all())


async def pick_questions(
    db: AsyncSession,
    student_id: int,
    subtopic_id: int,
    total: int,
    rules: Dict[str, Any],
    allowed: Optional[List[str]] = None,
) -> List[MCQ]:
    allowed = [d for d in (allowed or ALL_DIFFICULTIES) if d in ALL_DIFFICULTIES] or list(ALL_DIFFICULTIES)
    counts = difficulty_counts(total, rules["easy_percentage"], rules["medium_percentage"])

    query = select(MCQ).where(
        MCQ.subtopic_id == subtopic_id,
        MCQ.is_active.is_(True),
        MCQ.difficulty.in_(allowed),
    )
    if feature_flags.FEATURE_PRACTICE_EXCLUDE_MASTERED:
        mastered = await _mastered_mcq_ids(db, student_id)
        if mastered:
            query = query.where(MCQ.id.notin_(mastered))
    pool = list((await db.execute(query)).scalars().all())

    by_difficulty: Dict[str, List[MCQ]] = {d: [] for d in ALL_DIFFICULTIES}
    for mcq in pool:
        by_difficulty.setdefault(mcq.difficulty, []).append(mcq)
    for bucket in by_difficulty.values():
        random.shuffle(bucket)

    chosen: List[MCQ] = []
    for difficulty in allowed:
        chosen.extend(by_difficulty[difficulty][:counts[difficulty]])

    if len(chosen) < total:
        chosen_ids = {m.id for m in chosen}
        leftovers = [m for m in pool if m.id not in chosen_ids]
        random.shuffle(leftovers)
        chosen.extend(leftovers[:total - len(chosen)])

    random.shuffle(chosen)
    return chosen[:total]


def _question_payload(mcq: MCQ) -> Dict[str, Any]:
    return mcq.to_dict(include_answer=False)


async def start_session(
    db: AsyncSession,
    student: User,
    subtopic_id: int,
    university_id: Optional[int] = None,
    session_type: str = "practice",
) -> Dict[str, Any]:
    subtopic = await db.get(Subtopic, subtopic_id)
    if subtopic is None or not subtopic.is_active:
        raise NotFoundError("Subtopic", subtopic_id)
    topic = await db.get(Topic, subtopic.topic_id)

    rules = await get_practice_rules(db, university_id, topic.subject_id if topic else None)
    mapping = await _mapping_row(db, university_id, student.institution_id, subtopic_id)

    total = rules["mcq_count_per_session"]
    allowed = None
    if mapping is not None:
        total = mapping.session_limit or total
        allowed = list(mapping.allowed_difficulties or [])

    questions = await pick_questions(db, student.id, subtopic_id, total, rules, allowed)
    if not questions:
        raise BadRequestError("No practice questions are available for this subtopic")

    session = PracticeSession(
        student_id=student.id,
        subtopic_id=subtopic_id,
        university_id=university_id,
        session_type=session_type,
        started_at=utcnow(),
        total_questions=len(questions),
        question_ids=",".join(str(q.id) for q in questions),
    )
    db.add(session)
    await db.commit()
    logger.info(f"Practice session {session.id} started for student {student.id}: {len(questions)} questions")

    return {
        "session": session.to_dict(),
        "questions": [_question_payload(q) for q in questions],
        "time_limit_minutes": rules["time_limit_minutes"],
    }


async def _get_owned_session(db: AsyncSession, session_id: int, student: User) -> PracticeSession:
    session = await db.get(PracticeSession, session_id)
    if session is None:
        raise NotFoundError("Practice session", session_id, code=ErrorCode.SESSION_NOT_FOUND)
    if session.student_id != student.id:
        raise ForbiddenError("This session does not belong to you", code=ErrorCode.PERMISSION_DENIED)
    return session


async def submit_answer(
    db: AsyncSession,
    student: User,
    session_id: int,
    mcq_id: int,
    selected_option: str,
    time_spent_seconds: int = 0,
) -> Dict[str, Any]:
    session = await _get_owned_session(db, session_id, student)
    if session.is_completed:
        raise InvalidStateError("This practice session is already completed", code=ErrorCode.ALREADY_COMPLETED)
    if mcq_id not in session.mcq_ids:
        raise BadRequestError("Question is not part of this session")

    selected = (selected_option or "").strip().upper()
    if selected != SKIPPED and selected not in OPTION_LETTERS:
        raise BadRequestError("selected_option must be A, B, C, D or SKIPPED")

    existing = (await db.execute(
        select(MCQAttempt).where(
            MCQAttempt.practice_session_id == session_id,
            MCQAttempt.mcq_id == mcq_id,
        )
    )).scalar_one_or_none()
    if existing is not None:
        raise InvalidStateError("This question was already answered")

    mcq = await db.get(MCQ, mcq_id)
    correct = selected != SKIPPED and selected == mcq.correct_option

    db.add(MCQAttempt(
        practice_session_id=session_id,
        mcq_id=mcq_id,
        student_id=student.id,
        selected_option=selected,
        is_correct=correct,
        time_spent_seconds=max(0, time_spent_seconds),
    ))
    if selected != SKIPPED:
        mcq.times_attempted = (mcq.times_attempted or 0) + 1
        if correct:
            mcq.times_correct = (mcq.times_correct or 0) + 1
    await db.commit()

    return {
        "is_correct": correct,
        "correct_option": mcq.correct_option,
        "explanation": mcq.explanation,
        "explanation_url": mcq.explanation_url,
    }


async def record_study_day(db: AsyncSession, student_id: int, day: Optional[date] = None) -> None:
    """Idempotently mark ``day`` (default today) as a study day."""
    day = day or utcnow().date()
    exists = (await db.execute(
        select(LearningStreak.id).where(
            LearningStreak.student_id == student_id,
            LearningStreak.streak_date == day,
        )
    )).scalar_one_or_none()
    if exists is None:
        db.add(LearningStreak(student_id=student_id, streak_date=day))
        await db.flush()


async def complete_session(
    db: AsyncSession,
    student: User,
    session_id: int,
    time_spent_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    """Tally recorded answers; questions never answered count as skipped."""
    session = await _get_owned_session(db, session_id, student)
    if session.is_completed:
        raise InvalidStateError("This practice session is already completed", code=ErrorCode.ALREADY_COMPLETED)

    attempts = (await db.execute(
        select(MCQAttempt).where(MCQAttempt.practice_session_id == session_id)
    )).scalars().all()

    correct = sum(1 for a in attempts if a.is_correct)
    skipped_recorded = sum(1 for a in attempts if a.selected_option == SKIPPED)
    wrong = len(attempts) - correct - skipped_recorded
    total = session.total_questions
    skipped = max(0, total - correct - wrong)

    now = utcnow()
    session.correct_answers = correct
    session.wrong_answers = wrong
    session.skipped_questions = skipped
    session.score_percentage = round(correct / total * 100, 2) if total else 0
    if time_spent_seconds is None:
        time_spent_seconds = sum(a.time_spent_seconds or 0 for a in attempts) \
            or int((now - session.started_at).total_seconds())
    session.time_spent_seconds = max(0, time_spent_seconds)
    session.completed_at = now
    session.is_completed = True

    await record_study_day(db, student.id, now.date())
    await db.commit()
    logger.info(f"Practice session {session.id} completed: {correct}/{total}")

    return {"session": session.to_dict()}


# ================= HISTORY & ANALYTICS =================


async def get_history(db: AsyncSession, student_id: int, limit: int = 20) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(PracticeSession, Subtopic.name)
        .join(Subtopic, Subtopic.id == PracticeSession.subtopic_id)
        .where(PracticeSession.student_id == student_id, PracticeSession.is_completed.is_(True))
        .order_by(PracticeSession.completed_at.desc())
        .limit(limit)
    )).all()
    return [{**session.to_dict(), "subtopic_name": name} for session, name in rows]


async def get_analytics(db: AsyncSession, student_id: int) -> Dict[str, Any]:
    sessions = (await db.execute(
        select(PracticeSession)
        .where(PracticeSession.student_id == student_id, PracticeSession.is_completed.is_(True))
        .order_by(PracticeSession.completed_at.desc())
    )).scalars().all()

    if not sessions:
        return {
            "totalSessions": 0,
            "averageScore": 0,
            "totalTimeSpent": 0,
            "totalQuestionsAttempted": 0,
            "accuracyTrend": [],
        }

    scores = [s.score_percentage or 0 for s in sessions]
    trend = [
        {"date": s.completed_at.date().isoformat(), "score": s.score_percentage or 0}
        for s in sessions[:7]
    ]
    trend.reverse()
    return {
        "totalSessions": len(sessions),
        "averageScore": round(sum(scores) / len(scores)),
        "totalTimeSpent": sum(s.time_spent_seconds or 0 for s in sessions),
        "totalQuestionsAttempted": sum(s.total_questions or 0 for s in sessions),
        "accuracyTrend": trend,
    }


async def get_streak(db: AsyncSession, student_id: int, today: Optional[date] = None) -> int:
    today = today or utcnow().date()
    dates = (await db.execute(
        select(LearningStreak.streak_date)
        .where(LearningStreak.student_id == student_id)
        .order_by(LearningStreak.streak_date.desc())
        .limit(30)
    )).scalars().all()
    return compute_streak(dates, today)


async def detect_weaknesses(db: AsyncSession, student_id: int) -> List[Dict[str, Any]]:
    """Subtopics answered at least 5 times with under 50% accuracy, weakest first."""
    correct_count = func.sum(case((MCQAttempt.is_correct.is_(True), 1), else_=0))
    rows = (await db.execute(
        select(
            Subtopic.id,
            Subtopic.name,
            func.count(MCQAttempt.id),
            correct_count,
        )
        .join(MCQ, MCQ.id == MCQAttempt.mcq_id)
        .join(Subtopic, Subtopic.id == MCQ.subtopic_id)
        .where(MCQAttempt.student_id == student_id, MCQAttempt.selected_option != SKIPPED)
        .group_by(Subtopic.id, Subtopic.name)
    )).all()

    weaknesses = []
    for subtopic_id, name, attempts, correct in rows:
        if attempts < WEAKNESS_MIN_ATTEMPTS:
            continue
        accuracy = round((correct or 0) / attempts * 100)
        if accuracy < WEAKNESS_ACCURACY:
            weaknesses.append({
                "subtopic_id": subtopic_id,
                "subtopic_name": name,
                "attempts": attempts,
                "accuracy": accuracy,
            })
    weaknesses.sort(key=lambda w: w["accuracy"])
    return weaknesses
