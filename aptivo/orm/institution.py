"""
aptivo/orm/institution.py
Institutions (tenant organisations) and their admin links.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, UniqueConstraint

from aptivo.orm.base import BaseModel


class InstitutionStatus(str, Enum):
    """Registration lifecycle of an institution"""
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    blocked = "blocked"


# Sign-in message shown to an institution admin whose institution is not approved
INSTITUTION_STATUS_MESSAGES = {
    InstitutionStatus.pending.value: "Your institution registration is pending approval. This usually takes up to 7 days.",
    InstitutionStatus.rejected.value: "Your institution registration request was rejected. Please contact support.",
    InstitutionStatus.blocked.value: "This institution account has been blocked. Access is denied.",
}


class Institution(BaseModel):
    """
    A school, college or coaching centre.

    ``domain`` is used to synthesise student emails (``roll@domain``).
    ``is_active`` is derived from status: only approved institutions are active.
    """
    __tablename__ = "institutions"

    name = Column(String(255), nullable=False, index=True)
    institution_type = Column(String(100), nullable=True)
    domain = Column(String(255), nullable=True, index=True)
    contact_email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    # String column so unknown legacy values survive a read
    status = Column(String(20), default=InstitutionStatus.pending.value, nullable=False, index=True)
    is_active = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Institution(id={self.id}, name={self.name}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "institution_type": self.institution_type,
            "domain": self.domain,
            "contact_email": self.contact_email,
            "phone": self.phone,
            "address": self.address,
            "status": self.status,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InstitutionAdmin(BaseModel):
    """Which users administer which institution"""
    __tablename__ = "institution_admins"
    __table_args__ = (
        UniqueConstraint("user_id", "institution_id", name="uq_institution_admin"),
    )

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False, index=True)
