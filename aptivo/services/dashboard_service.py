"""
aptivo/services/dashboard_service.py
Admin and student dashboard payloads.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.orm.base import utcnow
from aptivo.orm.community import ActivityLog
from aptivo.orm.curriculum import Subject, Subtopic, SubtopicProgress, Topic
from aptivo.orm.mcq import MCQ
from aptivo.orm.practice import MCQAttempt, PracticeSession
from aptivo.orm.university import StudentUniversityEnrollment
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.services.activity_logger import ActivityType
from aptivo.services.practice_service import get_streak, round_half_up

logger = logging.getLogger(__name__)

# activity_type -> (action, activity_data key, fallback subject, icon, color)
ACTIVITY_DISPLAY = {
    ActivityType.SUBJECT_CREATED: ("New Subject Added", "name", "Unknown Subject", "layers", "text-purple-600 bg-purple-50"),
    ActivityType.MCQ_UPLOAD: ("MCQs Uploaded", "subject", "Unknown Subject", "upload", "text-emerald-600 bg-emerald-50"),
    ActivityType.CONTENT_UPDATED: ("Content Updated", "topic", "Unknown Topic", "edit", "text-emerald-600 bg-green-50"),
    ActivityType.STUDENT_ENROLLED: ("Student Enrolled", "topic", "Unknown Topic", "user-plus", "text-teal-600 bg-teal-50"),
}


def calculate_percentage_change(old_value: int, new_value: int) -> str:
    """
    >>> calculate_percentage_change(0, 5)
    '+100%'
    >>> calculate_percentage_change(10, 5)
    '-50%'
    """
    if old_value == 0:
        return "+100%" if new_value > 0 else "0%"
    change = (new_value - old_value) / old_value * 100
    rounded = round_half_up(change)
    return f"+{rounded}%" if change > 0 else f"{rounded}%"


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    seconds = max(0, int((now - moment).total_seconds()))
    minutes = seconds // 60
    hours = seconds // 3600
    days = seconds // 86400
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{days} day{'s' if days != 1 else ''} ago"


def describe_activity(log: ActivityLog, now: Optional[datetime] = None) -> Dict[str, str]:
    action, key, fallback, icon, color = ACTIVITY_DISPLAY.get(
        log.activity_type, ("Activity", None, "Unknown", "activity", "text-gray-600 bg-gray-50")
    )
    data = log.activity_data or {}
    return {
        "action": action,
        "subject": (data.get(key) if key else None) or fallback,
        "time": time_ago(log.created_at, now),
        "icon": icon,
        "color": color,
    }


async def _count(db: AsyncSession, query) -> int:
    return (await db.execute(query)).scalar() or 0


async def get_admin_stats(
    db: AsyncSession,
    institution_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Question bank and student counts with the change against one month ago.
    Institution admins only count students enrolled through their institution.
    """
    now = now or utcnow()
    month_ago = now - timedelta(days=30)

    mcq_query = select(func.count(MCQ.id)).where(MCQ.is_active.is_(True))
    mcq_count = await _count(db, mcq_query)
    old_mcq_count = await _count(db, mcq_query.where(MCQ.created_at < month_ago))

    student_query = select(func.count(User.id)).where(
        User.role == UserRole.student, User.status == UserStatus.active
    )
    if institution_id is not None:
        enrolled = select(StudentUniversityEnrollment.student_id).where(
            StudentUniversityEnrollment.institution_id == institution_id
        )
        student_query = student_query.where(
            (User.institution_id == institution_id) | User.id.in_(enrolled)
        )
    student_count = await _count(db, student_query)
    old_student_count = await _count(db, student_query.where(User.created_at < month_ago))

    return {
        "totalQuestions": mcq_count,
        "activeStudents": student_count,
        "subjects": await _count(db, select(func.count(Subject.id)).where(Subject.is_active.is_(True))),
        "topics": await _count(db, select(func.count(Topic.id)).where(Topic.is_active.is_(True))),
        "changePercentages": {
            "questions": calculate_percentage_change(old_mcq_count, mcq_count),
            "students": calculate_percentage_change(old_student_count, student_count),
        },
    }


async def get_recent_activity(
    db: AsyncSession,
    limit: int = 10,
    user_ids: Optional[List[int]] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, str]]:
    query = select(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
    if user_ids is not None:
        query = query.where(ActivityLog.user_id.in_(user_ids))
    logs = (await db.execute(query)).scalars().all()
    return [describe_activity(log, now) for log in logs]


# ================= STUDENT =================


async def get_student_stats(db: AsyncSession, student_id: int) -> Dict[str, int]:
    attempts_total = await _count(db, select(func.count(MCQAttempt.id)).where(MCQAttempt.student_id == student_id))
    attempts_correct = await _count(db, select(func.count(MCQAttempt.id)).where(
        MCQAttempt.student_id == student_id, MCQAttempt.is_correct.is_(True)
    ))
    study_time = (await db.execute(
        select(func.sum(PracticeSession.time_spent_seconds)).where(PracticeSession.student_id == student_id)
    )).scalar() or 0

    return {
        "enrolledUniversities": await _count(db, select(func.count(StudentUniversityEnrollment.id)).where(
            StudentUniversityEnrollment.student_id == student_id,
            StudentUniversityEnrollment.is_active.is_(True),
        )),
        "questionsSolved": attempts_total,
        "currentStreak": await get_streak(db, student_id),
        "overallAccuracy": round_half_up(attempts_correct / attempts_total * 100) if attempts_total else 0,
        "totalStudyTime": int(study_time),
    }


async def get_performance_by_subject(db: AsyncSession, student_id: int) -> List[Dict[str, Any]]:
    avg_score = func.avg(PracticeSession.score_percentage)
    rows = (await db.execute(
        select(Subject.name, avg_score)
        .join(Topic, Topic.subject_id == Subject.id)
        .join(Subtopic, Subtopic.topic_id == Topic.id)
        .join(PracticeSession, PracticeSession.subtopic_id == Subtopic.id)
        .where(
            PracticeSession.student_id == student_id,
            PracticeSession.is_completed.is_(True),
            PracticeSession.score_percentage.isnot(None),
        )
        .group_by(Subject.name)
    )).all()
    return [{"subject": name, "score": round_half_up(avg or 0), "fullMark": 100} for name, avg in rows]


async def get_progress_by_subtopic(db: AsyncSession, student_id: int, limit: int = 5) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(SubtopicProgress, Subtopic.name)
        .join(Subtopic, Subtopic.id == SubtopicProgress.subtopic_id)
        .where(SubtopicProgress.student_id == student_id)
        .order_by(SubtopicProgress.last_accessed_at.desc())
        .limit(limit)
    )).all()
    return [
        {"name": name, "score": round_half_up(progress.reading_percentage or 0), "subtopicId": progress.subtopic_id}
        for progress, name in rows
    ]


async def get_continue_learning(db: AsyncSession, student_id: int, limit: int = 3) -> List[Dict[str, Any]]:
    """Recently opened lessons the student has not finished."""
    rows = (await db.execute(
        select(SubtopicProgress, Subtopic.name, Subject.color)
        .join(Subtopic, Subtopic.id == SubtopicProgress.subtopic_id)
        .join(Topic, Topic.id == Subtopic.topic_id)
        .join(Subject, Subject.id == Topic.subject_id)
        .where(SubtopicProgress.student_id == student_id, SubtopicProgress.is_completed.is_(False))
        .order_by(SubtopicProgress.last_accessed_at.desc())
        .limit(limit)
    )).all()
    return [
        {
            "subtopicId": progress.subtopic_id,
            "title": name,
            "progress": progress.reading_percentage or 0,
            "color": color,
        }
        for progress, name, color in rows
    ]


async def get_student_dashboard(db: AsyncSession, student_id: int) -> Dict[str, Any]:
    return {
        "stats": await get_student_stats(db, student_id),
        "performance": await get_performance_by_subject(db, student_id),
        "progress": await get_progress_by_subtopic(db, student_id),
        "continueLearning": await get_continue_learning(db, student_id),
    }
