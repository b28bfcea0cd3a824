"""
aptivo/routes/institutions.py
Institution governance (super admin) and an institution's own views
(its students, its universities).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.orm.university import StudentUniversityEnrollment, University
from aptivo.orm.user import User, UserRole
from aptivo.schemas.admin import (
    InstitutionCreate, InstitutionStatusUpdate, InstitutionUpdate, UniversityAccessUpdate
)
from aptivo.security.rbac import ensure_institution_scope, require_admin, require_super_admin
from aptivo.services.institution_service import InstitutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/institutions", tags=["Institutions"])


@router.get("")
async def list_institutions(
    status: Optional[str] = None,
    search: Optional[str] = None,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    institutions = await InstitutionService(db).list(status=status, search=search)
    return {"success": True, "institutions": [i.to_dict() for i in institutions]}


@router.get("/pending-count")
async def pending_count(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "count": await InstitutionService(db).pending_count()}


@router.post("", status_code=201)
async def create_institution(
    body: InstitutionCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    institution = await InstitutionService(db).create(body.model_dump())
    return {"success": True, "institution": institution.to_dict()}


@router.get("/{institution_id}")
async def get_institution(
    institution_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ensure_institution_scope(current_user, institution_id)
    service = InstitutionService(db)
    institution = await service.get(institution_id)
    return {
        "success": True,
        "institution": institution.to_dict(),
        "university_ids": await service.university_ids(institution_id),
    }


@router.patch("/{institution_id}")
async def update_institution(
    institution_id: int,
    body: InstitutionUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    institution = await InstitutionService(db).update(institution_id, body.model_dump(exclude_unset=True))
    return {"success": True, "institution": institution.to_dict()}


@router.patch("/{institution_id}/status")
async def update_institution_status(
    institution_id: int,
    body: InstitutionStatusUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve, reject or block. Only approved institutions are active."""
    institution = await InstitutionService(db).set_status(institution_id, body.status)
    return {"success": True, "institution": institution.to_dict()}


@router.delete("/{institution_id}")
async def delete_institution(
    institution_id: int,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await InstitutionService(db).delete(institution_id)
    return {"success": True}


@router.get("/{institution_id}/universities")
async def list_institution_universities(
    institution_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ensure_institution_scope(current_user, institution_id)
    ids = await InstitutionService(db).university_ids(institution_id)
    universities = []
    if ids:
        universities = (await db.execute(
            select(University).where(University.id.in_(ids)).order_by(University.name)
        )).scalars().all()
    return {"success": True, "universities": [u.to_dict() for u in universities]}


@router.put("/{institution_id}/universities")
async def set_institution_universities(
    institution_id: int,
    body: UniversityAccessUpdate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    ids = await InstitutionService(db).set_university_access(institution_id, body.university_ids)
    return {"success": True, "university_ids": ids}


@router.get("/{institution_id}/students")
async def list_institution_students(
    institution_id: int,
    search: Optional[str] = None,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Members of the institution plus students enrolled through it."""
    ensure_institution_scope(current_user, institution_id)
    await InstitutionService(db).get(institution_id)

    enrolled = select(StudentUniversityEnrollment.student_id).where(
        StudentUniversityEnrollment.institution_id == institution_id
    )
    query = select(User).where(
        User.role == UserRole.student,
        or_(User.institution_id == institution_id, User.id.in_(enrolled)),
    )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            User.full_name.ilike(pattern),
            User.email.ilike(pattern),
            User.student_id_code.ilike(pattern),
        ))
    students = (await db.execute(query.order_by(User.full_name))).scalars().all()
    return {"success": True, "students": [s.to_dict() for s in students], "total": len(students)}
