"""
aptivo/services/analytics_service.py
Platform and institution analytics for the admin dashboards.

All aggregation is plain SQL (COUNT / AVG / GROUP BY); daily series are
zero-filled in Python so charts always get one point per day.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError
from aptivo.orm.base import utcnow
from aptivo.orm.curriculum import Subject, Subtopic, Topic
from aptivo.orm.institution import Institution
from aptivo.orm.mcq import MCQ
from aptivo.orm.practice import PracticeSession
from aptivo.orm.university import InstitutionUniversityAccess, StudentUniversityEnrollment, University
from aptivo.orm.user import User, UserRole
from aptivo.services.practice_service import round_half_up

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}

SUBJECT_COLORS = ["#6366f1", "#10b981", "#f59e0b", "#ec4899", "#8b5cf6", "#f43f5e", "#06b6d4"]


def period_days(period: str) -> int:
    if period not in PERIOD_DAYS:
        raise BadRequestError(f"Invalid period. Must be one of: {', '.join(PERIOD_DAYS)}")
    return PERIOD_DAYS[period]


def zero_filled_series(timestamps: Iterable[datetime], days: int, today: date) -> List[Dict[str, Any]]:
    """
    One ``{"date", "count"}`` point per day for the last ``days`` days,
    oldest first, ending today.
    """
    start = today - timedelta(days=days - 1)
    counts = {start + timedelta(days=i): 0 for i in range(days)}
    for ts in timestamps:
        if ts is None:
            continue
        day = ts.date()
        if day in counts:
            counts[day] += 1
    return [{"date": d.isoformat(), "count": c} for d, c in counts.items()]


async def _count(db: AsyncSession, query) -> int:
    return (await db.execute(query)).scalar() or 0


async def get_total_stats(db: AsyncSession) -> Dict[str, int]:
    return {
        "totalUsers": await _count(db, select(func.count(User.id))),
        "totalStudents": await _count(db, select(func.count(User.id)).where(User.role == UserRole.student)),
        "totalAdmins": await _count(db, select(func.count(User.id)).where(
            User.role.in_([UserRole.super_admin, UserRole.institution_admin])
        )),
        "totalSubjects": await _count(db, select(func.count(Subject.id)).where(Subject.is_active.is_(True))),
        "totalTopics": await _count(db, select(func.count(Topic.id)).where(Topic.is_active.is_(True))),
        "totalSubtopics": await _count(db, select(func.count(Subtopic.id)).where(Subtopic.is_active.is_(True))),
        "totalMCQs": await _count(db, select(func.count(MCQ.id)).where(MCQ.is_active.is_(True))),
        "totalPracticeSessions": await _count(db, select(func.count(PracticeSession.id)).where(
            PracticeSession.is_completed.is_(True)
        )),
    }


async def get_student_growth(db: AsyncSession, period: str = "month", today: Optional[date] = None) -> List[Dict]:
    days = period_days(period)
    today = today or utcnow().date()
    since = datetime.combine(today - timedelta(days=days - 1), datetime.min.time())
    stamps = (await db.execute(
        select(User.created_at).where(User.role == UserRole.student, User.created_at >= since)
    )).scalars().all()
    return zero_filled_series(stamps, days, today)


async def get_practice_session_stats(db: AsyncSession, period: str = "month", today: Optional[date] = None) -> List[Dict]:
    days = period_days(period)
    today = today or utcnow().date()
    since = datetime.combine(today - timedelta(days=days - 1), datetime.min.time())
    stamps = (await db.execute(
        select(PracticeSession.completed_at).where(
            PracticeSession.is_completed.is_(True),
            PracticeSession.completed_at >= since,
        )
    )).scalars().all()
    return zero_filled_series(stamps, days, today)


async def get_top_performing_students(
    db: AsyncSession,
    limit: int = 10,
    institution_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    avg_score = func.avg(PracticeSession.score_percentage)
    query = (
        select(User.id, User.full_name, User.email, avg_score, func.count(PracticeSession.id))
        .join(PracticeSession, PracticeSession.student_id == User.id)
        .where(PracticeSession.is_completed.is_(True))
        .group_by(User.id, User.full_name, User.email)
        .order_by(avg_score.desc())
        .limit(limit)
    )
    if institution_id is not None:
        query = query.where(User.institution_id == institution_id)

    rows = (await db.execute(query)).all()
    return [
        {
            "student_id": sid,
            "name": name,
            "email": email,
            "averageScore": round_half_up(avg or 0),
            "sessions": sessions,
        }
        for sid, name, email, avg, sessions in rows
    ]


async def get_weakest_topics(db: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
    avg_score = func.avg(PracticeSession.score_percentage)
    rows = (await db.execute(
        select(Topic.name, avg_score, func.count(PracticeSession.id))
        .join(Subtopic, Subtopic.topic_id == Topic.id)
        .join(PracticeSession, PracticeSession.subtopic_id == Subtopic.id)
        .where(PracticeSession.is_completed.is_(True))
        .group_by(Topic.name)
        .order_by(avg_score.asc())
        .limit(limit)
    )).all()
    return [
        {"topic": name, "averageScore": round_half_up(avg or 0), "sessions": sessions}
        for name, avg, sessions in rows
    ]


async def get_subject_distribution(db: AsyncSession) -> List[Dict[str, Any]]:
    """Topic count per active subject; subjects without topics are left out."""
    rows = (await db.execute(
        select(Subject.name, Subject.color, func.count(Topic.id))
        .outerjoin(Topic, Topic.subject_id == Subject.id)
        .where(Subject.is_active.is_(True))
        .group_by(Subject.id, Subject.name, Subject.color)
        .order_by(Subject.display_order, Subject.id)
    )).all()

    distribution = []
    for index, (name, color, count) in enumerate(rows):
        distribution.append({
            "name": name,
            "value": count,
            "color": color or SUBJECT_COLORS[index % len(SUBJECT_COLORS)],
        })
    return [d for d in distribution if d["value"] > 0]


async def get_university_enrollment_stats(db: AsyncSession) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(University.id, University.name, func.count(StudentUniversityEnrollment.id))
        .outerjoin(
            StudentUniversityEnrollment,
            (StudentUniversityEnrollment.university_id == University.id)
            & StudentUniversityEnrollment.is_active.is_(True),
        )
        .group_by(University.id, University.name)
        .order_by(func.count(StudentUniversityEnrollment.id).desc())
    )).all()
    return [{"university_id": uid, "name": name, "students": count} for uid, name, count in rows]


async def get_institution_stats(
    db: AsyncSession,
    institution_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Enrolled students, students active in the last 24h, accessible universities, average score."""
    now = now or utcnow()
    institution = await db.get(Institution, institution_id)
    if institution is None:
        return {}

    student_ids = select(User.id).where(
        User.institution_id == institution_id, User.role == UserRole.student
    )

    total_students = await _count(db, select(func.count()).select_from(student_ids.subquery()))
    active_students = await _count(db, select(func.count(distinct(PracticeSession.student_id))).where(
        PracticeSession.student_id.in_(student_ids),
        PracticeSession.started_at >= now - timedelta(hours=24),
    ))
    universities = await _count(db, select(func.count(InstitutionUniversityAccess.id)).where(
        InstitutionUniversityAccess.institution_id == institution_id
    ))
    avg_score = (await db.execute(
        select(func.avg(PracticeSession.score_percentage)).where(
            PracticeSession.student_id.in_(student_ids),
            PracticeSession.is_completed.is_(True),
        )
    )).scalar()

    return {
        "institution": institution.to_dict(),
        "totalStudents": total_students,
        "activeStudents": active_students,
        "accessibleUniversities": universities,
        "averageScore": round_half_up(avg_score or 0),
    }
