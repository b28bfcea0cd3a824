"""
aptivo/schemas/admin.py
Schemas for the privileged handlers and institution governance.

The create-user / create-student / delete-user bodies keep the camelCase
keys the admin console sends; every field is optional so a missing one is
answered with "Missing required fields" rather than a validation error.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from aptivo.orm.user import UserStatus


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")
    role: Optional[str] = None
    institution_id: Optional[Any] = Field(None, alias="institutionId")
    student_id: Optional[str] = Field(None, alias="studentId")


class CreateStudentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: Optional[str] = Field(None, alias="studentId")
    name: Optional[str] = None
    password: Optional[str] = None
    institution_id: Optional[Any] = Field(None, alias="institutionId")


class DeleteUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[int] = Field(None, alias="userId")


class ContentMappingRow(BaseModel):
    subject_id: Optional[int] = None
    topic_id: Optional[int] = None
    subtopic_id: Optional[int] = None
    session_limit: Optional[int] = Field(None, ge=1)
    difficulty_level: Optional[str] = None
    allowed_difficulties: Optional[List[str]] = None
    is_active: bool = True


class ContentMapperRequest(BaseModel):
    university_id: Optional[int] = None
    institution_id: Optional[int] = None
    rows: List[ContentMappingRow] = Field(default_factory=list)


class UserStatusUpdate(BaseModel):
    status: UserStatus


class InstitutionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    institution_type: Optional[str] = None
    domain: Optional[str] = None
    contact_email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class InstitutionUpdate(BaseModel):
    name: Optional[str] = None
    institution_type: Optional[str] = None
    domain: Optional[str] = None
    contact_email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None


class InstitutionStatusUpdate(BaseModel):
    status: str = Field(..., description="pending | approved | rejected | blocked")


class UniversityAccessUpdate(BaseModel):
    university_ids: List[int] = Field(default_factory=list)


class UniversityCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    domain: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    logo_url: Optional[str] = None
    status: str = "active"


class UniversityUpdate(BaseModel):
    name: Optional[str] = None
    domain: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    logo_url: Optional[str] = None
    status: Optional[str] = None
