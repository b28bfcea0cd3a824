"""
aptivo/routes/universities.py
University catalogue, student enrollment and the mapped content view.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.user import User, UserRole
from aptivo.schemas.admin import UniversityCreate, UniversityUpdate
from aptivo.security.rbac import get_current_user, require_student, require_super_admin
from aptivo.services import curriculum_service
from aptivo.services.institution_service import UniversityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/universities", tags=["Universities"])


@router.get("")
async def list_universities(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Students see what they can enroll in; admins see the whole catalogue."""
    service = UniversityService(db)
    if current_user.role == UserRole.student:
        universities = await service.list_available(current_user)
    else:
        universities = await service.list_all()
    return {"success": True, "universities": [u.to_dict() for u in universities]}


@router.get("/my")
async def my_universities(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "universities": await UniversityService(db).my_universities(current_user.id)}


@router.post("", status_code=201)
async def create_university(
    body: UniversityCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    university = await UniversityService(db).create(body.model_dump())
    logger.info(f"University {university.id} created by user {current_user.id}")
    return {"success": True, "university": university.to_dict()}


@router.patch("/{university_id}")
async def update_university(
    university_id: int,
    body: UniversityUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    university = await UniversityService(db).update(university_id, body.model_dump(exclude_unset=True))
    return {"success": True, "university": university.to_dict()}


@router.delete("/{university_id}")
async def delete_university(
    university_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await UniversityService(db).delete(university_id)
    return {"success": True}


@router.post("/{university_id}/enroll", status_code=201)
async def enroll(
    university_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    enrollment = await UniversityService(db).enroll(current_user, university_id)
    return {"success": True, "enrollment_id": enrollment.id, "university_id": university_id}


@router.delete("/{university_id}/enroll")
async def unenroll(
    university_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    await UniversityService(db).unenroll(current_user, university_id)
    return {"success": True}


@router.get("/{university_id}/content")
async def university_content(
    university_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Mapped curriculum for the student's institution (global mapping as fallback)."""
    return {"success": True, **await curriculum_service.get_university_content(db, current_user, university_id)}
