"""
aptivo/services/institution_service.py
Institution lifecycle, university catalogue and student enrollment.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ErrorCode
from aptivo.orm.institution import Institution, InstitutionStatus
from aptivo.orm.university import InstitutionUniversityAccess, StudentUniversityEnrollment, University
from aptivo.orm.user import User, UserRole
from aptivo.services.activity_logger import log_activity, ActivityType

logger = logging.getLogger(__name__)

INSTITUTION_FIELDS = ("name", "institution_type", "domain", "contact_email", "phone", "address")
UNIVERSITY_FIELDS = ("name", "domain", "city", "country", "logo_url", "status")


class InstitutionService:
    """
    Institution governance for super admins.

    Status drives activation: approved institutions are active, every other
    status deactivates them (and blocks their admins at sign-in).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, institution_id: int) -> Institution:
        institution = await self.db.get(Institution, institution_id)
        if institution is None:
            raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)
        return institution

    async def list(self, status: Optional[str] = None, search: Optional[str] = None) -> List[Institution]:
        query = select(Institution).order_by(Institution.created_at.desc(), Institution.id.desc())
        if status:
            query = query.where(Institution.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(Institution.name.ilike(pattern), Institution.domain.ilike(pattern)))
        return list((await self.db.execute(query)).scalars().all())

    async def pending_count(self) -> int:
        return (await self.db.execute(
            select(func.count(Institution.id)).where(Institution.status == InstitutionStatus.pending.value)
        )).scalar() or 0

    async def create(self, data: Dict[str, Any]) -> Institution:
        """Institutions created by a super admin are approved immediately."""
        institution = Institution(
            **{k: data.get(k) for k in INSTITUTION_FIELDS},
            status=InstitutionStatus.approved.value,
            is_active=True,
        )
        self.db.add(institution)
        await self.db.commit()
        logger.info(f"Created institution {institution.id} ({institution.name})")
        return institution

    async def update(self, institution_id: int, data: Dict[str, Any]) -> Institution:
        institution = await self.get(institution_id)
        for key in INSTITUTION_FIELDS:
            if key in data:
                setattr(institution, key, data[key])
        if "status" in data and data["status"] is not None:
            self._apply_status(institution, data["status"])
        await self.db.commit()
        return institution

    def _apply_status(self, institution: Institution, status: str) -> None:
        if status not in [s.value for s in InstitutionStatus]:
            raise BadRequestError(f"Invalid status: {status}")
        institution.status = status
        institution.is_active = status == InstitutionStatus.approved.value

    async def set_status(self, institution_id: int, status: str) -> Institution:
        institution = await self.get(institution_id)
        self._apply_status(institution, status)
        await self.db.commit()
        logger.info(f"Institution {institution_id} status -> {status}")
        return institution

    async def delete(self, institution_id: int) -> None:
        institution = await self.get(institution_id)
        await self.db.delete(institution)
        await self.db.commit()
        logger.info(f"Deleted institution {institution_id}")

    async def university_ids(self, institution_id: int) -> List[int]:
        return list((await self.db.execute(
            select(InstitutionUniversityAccess.university_id)
            .where(InstitutionUniversityAccess.institution_id == institution_id)
        )).scalars().all())

    async def set_university_access(self, institution_id: int, university_ids: List[int]) -> List[int]:
        await self.get(institution_id)
        wanted = sorted(set(university_ids))
        if wanted:
            found = (await self.db.execute(
                select(University.id).where(University.id.in_(wanted))
            )).scalars().all()
            missing = set(wanted) - set(found)
            if missing:
                raise NotFoundError("University", sorted(missing)[0])

        await self.db.execute(
            delete(InstitutionUniversityAccess).where(InstitutionUniversityAccess.institution_id == institution_id)
        )
        self.db.add_all([
            InstitutionUniversityAccess(institution_id=institution_id, university_id=uid) for uid in wanted
        ])
        await self.db.commit()
        return wanted


class UniversityService:
    """University catalogue and the enrollments students make into it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, university_id: int) -> University:
        university = await self.db.get(University, university_id)
        if university is None:
            raise NotFoundError("University", university_id)
        return university

    async def list_all(self) -> List[University]:
        return list((await self.db.execute(select(University).order_by(University.name))).scalars().all())

    async def list_available(self, user: User) -> List[University]:
        """
        Active universities a user may enroll in: everything for solo students
        and admins, otherwise only those granted to the student's institution.
        """
        query = select(University).where(University.status == "active").order_by(University.name)
        if user.role == UserRole.student and user.institution_id is not None and not user.is_solo:
            granted = select(InstitutionUniversityAccess.university_id).where(
                InstitutionUniversityAccess.institution_id == user.institution_id
            )
            query = query.where(University.id.in_(granted))
        return list((await self.db.execute(query)).scalars().all())

    async def create(self, data: Dict[str, Any]) -> University:
        university = University(**{k: v for k, v in data.items() if k in UNIVERSITY_FIELDS and v is not None})
        self.db.add(university)
        await self.db.commit()
        return university

    async def update(self, university_id: int, data: Dict[str, Any]) -> University:
        university = await self.get(university_id)
        for key in UNIVERSITY_FIELDS:
            if key in data and data[key] is not None:
                setattr(university, key, data[key])
        await self.db.commit()
        return university

    async def delete(self, university_id: int) -> None:
        university = await self.get(university_id)
        await self.db.delete(university)
        await self.db.commit()

    async def enroll(self, student: User, university_id: int) -> StudentUniversityEnrollment:
        university = await self.get(university_id)
        if university.status != "active":
            raise BadRequestError("This university is not accepting enrollments")

        available = {u.id for u in await self.list_available(student)}
        if university_id not in available:
            raise ForbiddenError("Your institution does not have access to this university", code=ErrorCode.SCOPE_VIOLATION)

        existing = (await self.db.execute(
            select(StudentUniversityEnrollment).where(
                StudentUniversityEnrollment.student_id == student.id,
                StudentUniversityEnrollment.university_id == university_id,
            )
        )).scalar_one_or_none()
        if existing is not None:
            if existing.is_active:
                raise ConflictError("You are already enrolled in this university")
            existing.is_active = True
            enrollment = existing
        else:
            enrollment = StudentUniversityEnrollment(
                student_id=student.id,
                university_id=university_id,
                institution_id=student.institution_id,
            )
            self.db.add(enrollment)

        await log_activity(self.db, student.id, ActivityType.STUDENT_ENROLLED, {"topic": university.name})
        await self.db.commit()
        logger.info(f"Student {student.id} enrolled in university {university_id}")
        return enrollment

    async def unenroll(self, student: User, university_id: int) -> None:
        enrollment = (await self.db.execute(
            select(StudentUniversityEnrollment).where(
                StudentUniversityEnrollment.student_id == student.id,
                StudentUniversityEnrollment.university_id == university_id,
                StudentUniversityEnrollment.is_active.is_(True),
            )
        )).scalar_one_or_none()
        if enrollment is None:
            raise NotFoundError("Enrollment")
        enrollment.is_active = False
        await self.db.commit()

    async def my_universities(self, student_id: int) -> List[Dict[str, Any]]:
        rows = (await self.db.execute(
            select(University, StudentUniversityEnrollment.created_at)
            .join(StudentUniversityEnrollment, StudentUniversityEnrollment.university_id == University.id)
            .where(
                StudentUniversityEnrollment.student_id == student_id,
                StudentUniversityEnrollment.is_active.is_(True),
            )
            .order_by(University.name)
        )).all()
        return [{**u.to_dict(), "enrolled_at": at.isoformat() if at else None} for u, at in rows]

    async def is_enrolled(self, student_id: int, university_id: int) -> bool:
        return (await self.db.execute(
            select(StudentUniversityEnrollment.id).where(
                StudentUniversityEnrollment.student_id == student_id,
                StudentUniversityEnrollment.university_id == university_id,
                StudentUniversityEnrollment.is_active.is_(True),
            )
        )).scalar_one_or_none() is not None
