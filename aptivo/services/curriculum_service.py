"""
aptivo/services/curriculum_service.py
Subject -> Topic -> Subtopic hierarchy, lessons and the question bank.

Super admins maintain the hierarchy; students read lessons, mark them as
read and browse the content mapped to the universities they enrolled in.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, NotFoundError
from aptivo.orm.base import utcnow
from aptivo.orm.curriculum import Subject, Subtopic, SubtopicProgress, Topic
from aptivo.orm.mcq import MCQ, OPTION_LETTERS
from aptivo.orm.university import ALL_DIFFICULTIES, University
from aptivo.orm.user import User
from aptivo.services.activity_logger import log_activity, ActivityType
from aptivo.services.content_mapper_service import get_effective_mapping
from aptivo.services.practice_service import record_study_day

logger = logging.getLogger(__name__)

SUBJECT_FIELDS = ("name", "description", "icon", "color", "display_order", "is_active")
TOPIC_FIELDS = ("name", "description", "sequence_order", "estimated_hours", "difficulty_level", "is_active")
SUBTOPIC_FIELDS = ("name", "content_markdown", "video_url", "estimated_minutes", "sequence_order", "is_active")
MCQ_FIELDS = (
    "question", "question_image_url", "option_a", "option_b", "option_c", "option_d",
    "correct_option", "explanation", "explanation_url", "difficulty", "is_active",
)


def _apply(instance, data: Dict[str, Any], fields) -> None:
    for key in fields:
        if key in data and data[key] is not None:
            setattr(instance, key, data[key])


async def _get_or_404(db: AsyncSession, model, object_id: int, resource: str):
    instance = await db.get(model, object_id)
    if instance is None:
        raise NotFoundError(resource, object_id)
    return instance


# ================= SUBJECTS =================


async def list_subjects(db: AsyncSession, include_inactive: bool = False) -> List[Subject]:
    query = select(Subject).order_by(Subject.display_order, Subject.id)
    if not include_inactive:
        query = query.where(Subject.is_active.is_(True))
    return list((await db.execute(query)).scalars().all())


async def create_subject(db: AsyncSession, user: User, data: Dict[str, Any]) -> Subject:
    subject = Subject()
    _apply(subject, data, SUBJECT_FIELDS)
    db.add(subject)
    await db.flush()
    await log_activity(db, user.id, ActivityType.SUBJECT_CREATED, {"name": subject.name})
    await db.commit()
    logger.info(f"Subject {subject.id} created by user {user.id}")
    return subject


async def update_subject(db: AsyncSession, subject_id: int, data: Dict[str, Any]) -> Subject:
    subject = await _get_or_404(db, Subject, subject_id, "Subject")
    _apply(subject, data, SUBJECT_FIELDS)
    await db.commit()
    return subject


async def delete_subject(db: AsyncSession, subject_id: int) -> None:
    subject = await _get_or_404(db, Subject, subject_id, "Subject")
    await db.delete(subject)
    await db.commit()


# ================= TOPICS =================


async def list_topics(db: AsyncSession, subject_id: int) -> List[Topic]:
    await _get_or_404(db, Subject, subject_id, "Subject")
    return list((await db.execute(
        select(Topic)
        .where(Topic.subject_id == subject_id)
        .order_by(Topic.sequence_order, Topic.id)
    )).scalars().all())


async def create_topic(db: AsyncSession, user: User, subject_id: int, data: Dict[str, Any]) -> Topic:
    await _get_or_404(db, Subject, subject_id, "Subject")
    topic = Topic(subject_id=subject_id)
    _apply(topic, data, TOPIC_FIELDS)
    db.add(topic)
    await db.flush()
    await log_activity(db, user.id, ActivityType.CONTENT_UPDATED, {"topic": topic.name})
    await db.commit()
    return topic


async def update_topic(db: AsyncSession, user: User, topic_id: int, data: Dict[str, Any]) -> Topic:
    topic = await _get_or_404(db, Topic, topic_id, "Topic")
    _apply(topic, data, TOPIC_FIELDS)
    await log_activity(db, user.id, ActivityType.CONTENT_UPDATED, {"topic": topic.name})
    await db.commit()
    return topic


async def delete_topic(db: AsyncSession, topic_id: int) -> None:
    topic = await _get_or_404(db, Topic, topic_id, "Topic")
    await db.delete(topic)
    await db.commit()


# ================= SUBTOPICS =================


async def list_subtopics(db: AsyncSession, topic_id: int) -> List[Dict[str, Any]]:
    await _get_or_404(db, Topic, topic_id, "Topic")
    mcq_count = (
        select(func.count(MCQ.id))
        .where(MCQ.subtopic_id == Subtopic.id, MCQ.is_active.is_(True))
        .correlate(Subtopic)
        .scalar_subquery()
    )
    rows = (await db.execute(
        select(Subtopic, mcq_count)
        .where(Subtopic.topic_id == topic_id)
        .order_by(Subtopic.sequence_order, Subtopic.id)
    )).all()
    return [{**s.to_dict(), "mcq_count": count} for s, count in rows]


async def create_subtopic(db: AsyncSession, user: User, topic_id: int, data: Dict[str, Any]) -> Subtopic:
    topic = await _get_or_404(db, Topic, topic_id, "Topic")
    subtopic = Subtopic(topic_id=topic_id)
    _apply(subtopic, data, SUBTOPIC_FIELDS)
    db.add(subtopic)
    await db.flush()
    await log_activity(db, user.id, ActivityType.CONTENT_UPDATED, {"topic": topic.name})
    await db.commit()
    return subtopic


async def update_subtopic(db: AsyncSession, user: User, subtopic_id: int, data: Dict[str, Any]) -> Subtopic:
    subtopic = await _get_or_404(db, Subtopic, subtopic_id, "Subtopic")
    _apply(subtopic, data, SUBTOPIC_FIELDS)
    await log_activity(db, user.id, ActivityType.CONTENT_UPDATED, {"topic": subtopic.name})
    await db.commit()
    return subtopic


async def delete_subtopic(db: AsyncSession, subtopic_id: int) -> None:
    subtopic = await _get_or_404(db, Subtopic, subtopic_id, "Subtopic")
    await db.delete(subtopic)
    await db.commit()


# ================= LESSONS =================


async def get_lesson(db: AsyncSession, subtopic_id: int, student: Optional[User] = None) -> Dict[str, Any]:
    """Lesson content with its place in the hierarchy; opening it touches progress."""
    row = (await db.execute(
        select(Subtopic, Topic.name, Subject.id, Subject.name)
        .join(Topic, Topic.id == Subtopic.topic_id)
        .join(Subject, Subject.id == Topic.subject_id)
        .where(Subtopic.id == subtopic_id)
    )).first()
    if row is None:
        raise NotFoundError("Subtopic", subtopic_id)
    subtopic, topic_name, subject_id, subject_name = row

    mcq_count = (await db.execute(
        select(func.count(MCQ.id)).where(MCQ.subtopic_id == subtopic_id, MCQ.is_active.is_(True))
    )).scalar() or 0

    progress = None
    if student is not None:
        progress = await _get_progress(db, student.id, subtopic_id)
        if progress is None:
            progress = SubtopicProgress(student_id=student.id, subtopic_id=subtopic_id, reading_percentage=0)
            db.add(progress)
        progress.last_accessed_at = utcnow()
        await db.commit()

    return {
        **subtopic.to_dict(include_content=True),
        "topic_name": topic_name,
        "subject_id": subject_id,
        "subject_name": subject_name,
        "mcq_count": mcq_count,
        "is_completed": bool(progress and progress.is_completed),
    }


async def _get_progress(db: AsyncSession, student_id: int, subtopic_id: int) -> Optional[SubtopicProgress]:
    return (await db.execute(
        select(SubtopicProgress).where(
            SubtopicProgress.student_id == student_id,
            SubtopicProgress.subtopic_id == subtopic_id,
        )
    )).scalar_one_or_none()


async def mark_read(db: AsyncSession, student: User, subtopic_id: int) -> SubtopicProgress:
    await _get_or_404(db, Subtopic, subtopic_id, "Subtopic")
    now = utcnow()
    progress = await _get_progress(db, student.id, subtopic_id)
    if progress is None:
        progress = SubtopicProgress(student_id=student.id, subtopic_id=subtopic_id)
        db.add(progress)
    progress.is_completed = True
    progress.reading_percentage = 100
    progress.last_accessed_at = now
    if progress.completed_at is None:
        progress.completed_at = now

    await record_study_day(db, student.id, now.date())
    await db.commit()
    return progress


async def get_university_content(db: AsyncSession, student: User, university_id: int) -> Dict[str, Any]:
    """
    Subjects -> topics -> subtopics mapped to a university for the student's
    institution (or the global mapping when the institution has none).
    """
    university = await _get_or_404(db, University, university_id, "University")
    mapping = await get_effective_mapping(db, university_id, student.institution_id)
    subtopic_ids = {m.subtopic_id for m in mapping if m.subtopic_id is not None}
    if not subtopic_ids:
        return {"university": university.to_dict(), "subjects": []}

    limits = {m.subtopic_id: m for m in mapping if m.subtopic_id is not None}
    rows = (await db.execute(
        select(Subject, Topic, Subtopic)
        .join(Topic, Topic.subject_id == Subject.id)
        .join(Subtopic, Subtopic.topic_id == Topic.id)
        .where(Subtopic.id.in_(subtopic_ids), Subtopic.is_active.is_(True))
        .order_by(Subject.display_order, Topic.sequence_order, Subtopic.sequence_order, Subtopic.id)
    )).all()

    completed = set((await db.execute(
        select(SubtopicProgress.subtopic_id).where(
            SubtopicProgress.student_id == student.id,
            SubtopicProgress.is_completed.is_(True),
        )
    )).scalars().all())

    subjects: Dict[int, Dict[str, Any]] = {}
    topics: Dict[int, Dict[str, Any]] = {}
    for subject, topic, subtopic in rows:
        if subject.id not in subjects:
            subjects[subject.id] = {**subject.to_dict(), "topics": []}
        if topic.id not in topics:
            topics[topic.id] = {**topic.to_dict(), "subtopics": []}
            subjects[subject.id]["topics"].append(topics[topic.id])
        rule = limits[subtopic.id]
        topics[topic.id]["subtopics"].append({
            **subtopic.to_dict(),
            "session_limit": rule.session_limit,
            "allowed_difficulties": list(rule.allowed_difficulties or ALL_DIFFICULTIES),
            "is_completed": subtopic.id in completed,
        })

    return {"university": university.to_dict(), "subjects": list(subjects.values())}


async def search(db: AsyncSession, query: str, limit: int = 10) -> Dict[str, List[Dict[str, Any]]]:
    text = (query or "").strip()
    if len(text) < 2:
        raise BadRequestError("Search query must be at least 2 characters")
    pattern = f"%{text}%"

    universities = (await db.execute(
        select(University).where(University.name.ilike(pattern), University.status == "active").limit(limit)
    )).scalars().all()
    subjects = (await db.execute(
        select(Subject).where(Subject.name.ilike(pattern), Subject.is_active.is_(True)).limit(limit)
    )).scalars().all()
    topics = (await db.execute(
        select(Topic).where(Topic.name.ilike(pattern), Topic.is_active.is_(True)).limit(limit)
    )).scalars().all()
    subtopics = (await db.execute(
        select(Subtopic).where(Subtopic.name.ilike(pattern), Subtopic.is_active.is_(True)).limit(limit)
    )).scalars().all()

    return {
        "universities": [u.to_dict() for u in universities],
        "subjects": [s.to_dict() for s in subjects],
        "topics": [t.to_dict() for t in topics],
        "subtopics": [s.to_dict() for s in subtopics],
    }


# ================= QUESTION BANK =================


def _check_mcq(data: Dict[str, Any]) -> None:
    if data.get("correct_option") is not None:
        option = str(data["correct_option"]).strip().upper()
        if option not in OPTION_LETTERS:
            raise BadRequestError("correct_option must be A, B, C, or D")
        data["correct_option"] = option
    if data.get("difficulty") is not None and data["difficulty"] not in ALL_DIFFICULTIES:
        raise BadRequestError(f"difficulty must be one of: {', '.join(ALL_DIFFICULTIES)}")


async def list_mcqs(db: AsyncSession, subtopic_id: int, difficulty: Optional[str] = None) -> List[MCQ]:
    await _get_or_404(db, Subtopic, subtopic_id, "Subtopic")
    query = select(MCQ).where(MCQ.subtopic_id == subtopic_id).order_by(MCQ.id)
    if difficulty:
        query = query.where(MCQ.difficulty == difficulty)
    return list((await db.execute(query)).scalars().all())


async def create_mcq(db: AsyncSession, user: User, subtopic_id: int, data: Dict[str, Any]) -> MCQ:
    await _get_or_404(db, Subtopic, subtopic_id, "Subtopic")
    _check_mcq(data)
    mcq = MCQ(subtopic_id=subtopic_id, created_by=user.id)
    _apply(mcq, data, MCQ_FIELDS)
    db.add(mcq)
    await db.commit()
    return mcq


async def update_mcq(db: AsyncSession, mcq_id: int, data: Dict[str, Any]) -> MCQ:
    mcq = await _get_or_404(db, MCQ, mcq_id, "MCQ")
    _check_mcq(data)
    _apply(mcq, data, MCQ_FIELDS)
    await db.commit()
    return mcq


async def delete_mcq(db: AsyncSession, mcq_id: int) -> None:
    mcq = await _get_or_404(db, MCQ, mcq_id, "MCQ")
    await db.delete(mcq)
    await db.commit()
