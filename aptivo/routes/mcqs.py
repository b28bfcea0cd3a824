"""
aptivo/routes/mcqs.py
Question bank per subtopic and spreadsheet import.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.user import User
from aptivo.schemas.curriculum import MCQCreate, MCQUpdate
from aptivo.security.rbac import require_super_admin
from aptivo.services import curriculum_service
from aptivo.services.spreadsheet_service import MCQUploadService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Bank"])


@router.get("/subtopics/{subtopic_id}/mcqs")
async def list_mcqs(
    subtopic_id: int,
    difficulty: Optional[str] = None,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    mcqs = await curriculum_service.list_mcqs(db, subtopic_id, difficulty)
    return {"success": True, "mcqs": [m.to_dict() for m in mcqs], "total": len(mcqs)}


@router.post("/subtopics/{subtopic_id}/mcqs", status_code=201)
async def create_mcq(
    subtopic_id: int,
    body: MCQCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    mcq = await curriculum_service.create_mcq(db, current_user, subtopic_id, body.model_dump())
    return {"success": True, "mcq": mcq.to_dict()}


@router.post("/subtopics/{subtopic_id}/mcqs/upload")
async def upload_mcqs(
    subtopic_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Import MCQs from .xlsx or .csv.
    Columns: question, option_a..option_d, correct_option, and optionally
    explanation, difficulty, question_image_url, explanation_url.
    """
    content = await file.read()
    logger.info(f"MCQ upload {file.filename} ({len(content)} bytes) for subtopic {subtopic_id}")
    return await MCQUploadService.upload_mcqs(
        db, subtopic_id, file.filename or "", content, current_user.id
    )


@router.patch("/mcqs/{mcq_id}")
async def update_mcq(
    mcq_id: int,
    body: MCQUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    mcq = await curriculum_service.update_mcq(db, mcq_id, body.model_dump(exclude_unset=True))
    return {"success": True, "mcq": mcq.to_dict()}


@router.delete("/mcqs/{mcq_id}")
async def delete_mcq(
    mcq_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await curriculum_service.delete_mcq(db, mcq_id)
    return {"success": True}
