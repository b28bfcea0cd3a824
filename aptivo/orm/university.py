"""
aptivo/orm/university.py
Universities (syllabus owners), institution access, enrollments and
the content mapping that scopes what a university exposes.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint, Index

from aptivo.core.db_types import JSONList
from aptivo.orm.base import BaseModel

ALL_DIFFICULTIES = ["easy", "medium", "hard"]


class University(BaseModel):
    __tablename__ = "universities"

    name = Column(String(255), nullable=False, index=True)
    domain = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    logo_url = Column(String(500), nullable=True)
    status = Column(String(20), default="active", nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "city": self.city,
            "country": self.country,
            "logo_url": self.logo_url,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InstitutionUniversityAccess(BaseModel):
    """Universities an institution's students may enroll in"""
    __tablename__ = "institution_university_access"
    __table_args__ = (
        UniqueConstraint("institution_id", "university_id", name="uq_institution_university"),
    )

    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False, index=True)
    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False, index=True)


class StudentUniversityEnrollment(BaseModel):
    __tablename__ = "student_university_enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "university_id", name="uq_student_university"),
    )

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False, index=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)


class UniversityContentAccess(BaseModel):
    """
    One row of the content mapper.

    A row with ``institution_id`` NULL is the university's global mapping;
    a row with an institution id overrides it for that institution.
    ``difficulty_level`` is ``"all"`` or a comma list, ``allowed_difficulties``
    holds the same set as a list.
    """
    __tablename__ = "university_content_access"
    __table_args__ = (
        Index("ix_content_access_scope", "university_id", "institution_id"),
    )

    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=True)
    topic_id = Column(Integer, ForeignKey("topics.id", ondelete="CASCADE"), nullable=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=True, index=True)

    session_limit = Column(Integer, nullable=True)
    difficulty_level = Column(String(50), default="all", nullable=False)
    allowed_difficulties = Column(JSONList, default=lambda: list(ALL_DIFFICULTIES), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "subject_id": self.subject_id,
            "topic_id": self.topic_id,
            "subtopic_id": self.subtopic_id,
            "session_limit": self.session_limit,
            "difficulty_level": self.difficulty_level,
        }
