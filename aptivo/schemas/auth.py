"""
aptivo/schemas/auth.py
Request and response schemas for sign-up, sign-in and token refresh.
"""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from aptivo.orm.user import UserRole


class UserRegister(BaseModel):
    """
    Public registration.
    Institution admins name a new institution (created pending) or join an
    existing one by id.
    """
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1, max_length=200)
    role: UserRole = UserRole.student
    institution_id: Optional[int] = None
    institution_name: Optional[str] = None
    institution_type: Optional[str] = None
    is_solo: bool = False

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("full_name cannot be blank")
        return value


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: str
    user_id: int
    institution_id: Optional[int] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class VerifyEmailRequest(BaseModel):
    token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
