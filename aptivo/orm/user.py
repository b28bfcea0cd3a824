"""
aptivo/orm/user.py
Portal accounts: students, institution admins and super admins.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum as SQLEnum

from aptivo.orm.base import BaseModel


class UserRole(str, Enum):
    """Portal roles"""
    student = "student"
    institution_admin = "institution_admin"
    super_admin = "super_admin"


class UserStatus(str, Enum):
    """Account status; suspended and blocked users cannot sign in"""
    active = "active"
    pending = "pending"
    suspended = "suspended"
    blocked = "blocked"


class User(BaseModel):
    """
    A portal account.

    Students belong to at most one institution (``institution_id``) and may
    additionally be identified by the roll number their institution issued
    (``student_id_code``). Institution admins are linked to the institution
    they manage through InstitutionAdmin; ``institution_id`` mirrors that link.
    Solo students have no institution and see every active university.
    """
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.student, index=True)
    status = Column(SQLEnum(UserStatus), nullable=False, default=UserStatus.active, index=True)

    email_verified = Column(Boolean, default=True, nullable=False)
    is_solo = Column(Boolean, default=False, nullable=False)

    institution_id = Column(
        Integer,
        ForeignKey("institutions.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    student_id_code = Column(String(100), nullable=True, index=True)
    avatar_url = Column(String(500), nullable=True)

    refresh_token = Column(String(512), nullable=True)
    refresh_token_expires = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    @property
    def can_sign_in(self) -> bool:
        if self.role == UserRole.super_admin:
            return True
        return self.status not in (UserStatus.suspended, UserStatus.blocked)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "status": self.status.value if self.status else None,
            "institution_id": self.institution_id,
            "student_id_code": self.student_id_code,
            "avatar_url": self.avatar_url,
            "is_solo": self.is_solo,
            "email_verified": self.email_verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
