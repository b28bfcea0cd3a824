"""
aptivo/schemas/community.py
Notifications, feedback and profile payloads.
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    category: Optional[str] = None
    image_url: Optional[str] = None


class InstitutionNotificationCreate(NotificationCreate):
    institution_id: Optional[int] = None


class DirectNotificationCreate(NotificationCreate):
    user_ids: List[int] = Field(..., min_length=1)


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    message: str = Field(..., min_length=1, max_length=5000)


class FeedbackPublish(BaseModel):
    is_published: bool


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    avatar_url: Optional[str] = None
