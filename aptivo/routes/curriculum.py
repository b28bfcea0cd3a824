"""
aptivo/routes/curriculum.py
Hierarchy manager (super admin), lessons and search.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.user import User, UserRole
from aptivo.schemas.curriculum import (
    SubjectCreate, SubjectUpdate, SubtopicCreate, SubtopicUpdate, TopicCreate, TopicUpdate
)
from aptivo.security.rbac import get_current_user, require_student, require_super_admin
from aptivo.services import curriculum_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/curriculum", tags=["Curriculum"])


# ================= SUBJECTS =================

@router.get("/subjects")
async def list_subjects(
    include_inactive: bool = False,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    show_all = include_inactive and current_user.role == UserRole.super_admin
    subjects = await curriculum_service.list_subjects(db, include_inactive=show_all)
    return {"success": True, "subjects": [s.to_dict() for s in subjects]}


@router.post("/subjects", status_code=201)
async def create_subject(
    body: SubjectCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    subject = await curriculum_service.create_subject(db, current_user, body.model_dump())
    return {"success": True, "subject": subject.to_dict()}


@router.patch("/subjects/{subject_id}")
async def update_subject(
    subject_id: int,
    body: SubjectUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    subject = await curriculum_service.update_subject(db, subject_id, body.model_dump(exclude_unset=True))
    return {"success": True, "subject": subject.to_dict()}


@router.delete("/subjects/{subject_id}")
async def delete_subject(
    subject_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await curriculum_service.delete_subject(db, subject_id)
    return {"success": True}


# ================= TOPICS =================

@router.get("/subjects/{subject_id}/topics")
async def list_topics(
    subject_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    topics = await curriculum_service.list_topics(db, subject_id)
    return {"success": True, "topics": [t.to_dict() for t in topics]}


@router.post("/subjects/{subject_id}/topics", status_code=201)
async def create_topic(
    subject_id: int,
    body: TopicCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    topic = await curriculum_service.create_topic(db, current_user, subject_id, body.model_dump())
    return {"success": True, "topic": topic.to_dict()}


@router.patch("/topics/{topic_id}")
async def update_topic(
    topic_id: int,
    body: TopicUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    topic = await curriculum_service.update_topic(db, current_user, topic_id, body.model_dump(exclude_unset=True))
    return {"success": True, "topic": topic.to_dict()}


@router.delete("/topics/{topic_id}")
async def delete_topic(
    topic_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await curriculum_service.delete_topic(db, topic_id)
    return {"success": True}


# ================= SUBTOPICS =================

@router.get("/topics/{topic_id}/subtopics")
async def list_subtopics(
    topic_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "subtopics": await curriculum_service.list_subtopics(db, topic_id)}


@router.post("/topics/{topic_id}/subtopics", status_code=201)
async def create_subtopic(
    topic_id: int,
    body: SubtopicCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    subtopic = await curriculum_service.create_subtopic(db, current_user, topic_id, body.model_dump())
    return {"success": True, "subtopic": subtopic.to_dict(include_content=True)}


@router.patch("/subtopics/{subtopic_id}")
async def update_subtopic(
    subtopic_id: int,
    body: SubtopicUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    subtopic = await curriculum_service.update_subtopic(
        db, current_user, subtopic_id, body.model_dump(exclude_unset=True)
    )
    return {"success": True, "subtopic": subtopic.to_dict(include_content=True)}


@router.delete("/subtopics/{subtopic_id}")
async def delete_subtopic(
    subtopic_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await curriculum_service.delete_subtopic(db, subtopic_id)
    return {"success": True}


# ================= LESSONS =================

@router.get("/subtopics/{subtopic_id}/lesson")
async def read_lesson(
    subtopic_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    student = current_user if current_user.role == UserRole.student else None
    return {"success": True, "lesson": await curriculum_service.get_lesson(db, subtopic_id, student)}


@router.post("/subtopics/{subtopic_id}/mark-read")
async def mark_read(
    subtopic_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    progress = await curriculum_service.mark_read(db, current_user, subtopic_id)
    return {
        "success": True,
        "subtopic_id": subtopic_id,
        "is_completed": progress.is_completed,
        "reading_percentage": progress.reading_percentage,
    }


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "query": q, "results": await curriculum_service.search(db, q, limit)}
