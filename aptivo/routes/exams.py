"""
aptivo/routes/exams.py
Exam authoring for admins and the exam list students start from.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.exam import UniversityExam
from aptivo.orm.university import StudentUniversityEnrollment
from aptivo.orm.user import User
from aptivo.schemas.exam import (
    ExamCreate, ExamUpdate, PassageCreate, PassageUpdate, QuestionCreate, QuestionUpdate,
    SectionCreate, SectionUpdate
)
from aptivo.security.rbac import require_admin, require_student
from aptivo.services.exam_service import ExamService
from aptivo.services.spreadsheet_service import MCQUploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exams", tags=["Exams"])


# ================= STUDENT =================

@router.get("/available")
async def available_exams(
    university_id: Optional[int] = None,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Active exams of the universities the student is enrolled in."""
    enrolled = select(StudentUniversityEnrollment.university_id).where(
        StudentUniversityEnrollment.student_id == current_user.id,
        StudentUniversityEnrollment.is_active.is_(True),
    )
    query = select(UniversityExam).where(
        UniversityExam.is_active.is_(True),
        UniversityExam.university_id.in_(enrolled),
        or_(
            UniversityExam.institution_id.is_(None),
            UniversityExam.institution_id == current_user.institution_id,
        ),
    )
    if university_id is not None:
        query = query.where(UniversityExam.university_id == university_id)
    exams = (await db.execute(query.order_by(UniversityExam.created_at.desc()))).scalars().all()
    return {"success": True, "exams": [e.to_dict() for e in exams]}


# ================= EXAMS =================

@router.get("")
async def list_exams(
    university_id: Optional[int] = None,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    exams = await ExamService(db, current_user).list_exams(university_id)
    return {"success": True, "exams": [e.to_dict() for e in exams]}


@router.post("/university/{university_id}", status_code=201)
async def create_exam(
    university_id: int,
    body: ExamCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    exam = await ExamService(db, current_user).create_exam(university_id, body.model_dump())
    return {"success": True, "exam": exam.to_dict()}


@router.get("/{exam_id}")
async def get_exam(
    exam_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "exam": await ExamService(db, current_user).get_exam_detail(exam_id)}


@router.patch("/{exam_id}")
async def update_exam(
    exam_id: int,
    body: ExamUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    exam = await ExamService(db, current_user).update_exam(exam_id, body.model_dump(exclude_unset=True))
    return {"success": True, "exam": exam.to_dict()}


@router.delete("/{exam_id}")
async def delete_exam(
    exam_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ExamService(db, current_user).delete_exam(exam_id)
    return {"success": True}


@router.get("/{exam_id}/results")
async def exam_results(
    exam_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    results = await ExamService(db, current_user).get_results(exam_id)
    return {"success": True, "results": results, "total": len(results)}


# ================= SECTIONS =================

@router.post("/{exam_id}/sections", status_code=201)
async def create_section(
    exam_id: int,
    body: SectionCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    section = await ExamService(db, current_user).create_section(exam_id, body.model_dump())
    return {"success": True, "section": section.to_dict()}


@router.patch("/sections/{section_id}")
async def update_section(
    section_id: int,
    body: SectionUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    section = await ExamService(db, current_user).update_section(section_id, body.model_dump(exclude_unset=True))
    return {"success": True, "section": section.to_dict()}


@router.delete("/sections/{section_id}")
async def delete_section(
    section_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ExamService(db, current_user).delete_section(section_id)
    return {"success": True}


@router.post("/sections/{section_id}/questions/upload")
async def upload_section_questions(
    section_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Columns: question, option1..option4, correct_option (1-4 or A-D), optional marks, explanation."""
    section = await ExamService(db, current_user).get_section(section_id)
    content = await file.read()
    return await MCQUploadService.upload_exam_questions(db, section, file.filename or "", content)


# ================= PASSAGES =================

@router.post("/{exam_id}/passages", status_code=201)
async def create_passage(
    exam_id: int,
    body: PassageCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    passage = await ExamService(db, current_user).create_passage(exam_id, body.title, body.content)
    return {"success": True, "passage": passage.to_dict()}


@router.patch("/passages/{passage_id}")
async def update_passage(
    passage_id: int,
    body: PassageUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    passage = await ExamService(db, current_user).update_passage(passage_id, body.model_dump(exclude_unset=True))
    return {"success": True, "passage": passage.to_dict()}


@router.delete("/passages/{passage_id}")
async def delete_passage(
    passage_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ExamService(db, current_user).delete_passage(passage_id)
    return {"success": True}


# ================= QUESTIONS =================

@router.post("/sections/{section_id}/questions", status_code=201)
async def create_question(
    section_id: int,
    body: QuestionCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    question = await ExamService(db, current_user).create_question(section_id, body.model_dump())
    return {"success": True, "question": question.to_dict()}


@router.patch("/questions/{question_id}")
async def update_question(
    question_id: int,
    body: QuestionUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    question = await ExamService(db, current_user).update_question(
        question_id, body.model_dump(exclude_unset=True)
    )
    return {"success": True, "question": question.to_dict()}


@router.delete("/questions/{question_id}")
async def delete_question(
    question_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ExamService(db, current_user).delete_question(question_id)
    return {"success": True}
