"""
aptivo/schemas/curriculum.py
Curriculum hierarchy and question bank payloads.
"""
from typing import Optional

from pydantic import BaseModel, Field


class SubjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    display_order: int = 0


class SubjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class TopicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    sequence_order: int = 0
    estimated_hours: Optional[float] = None
    difficulty_level: Optional[str] = None


class TopicUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sequence_order: Optional[int] = None
    estimated_hours: Optional[float] = None
    difficulty_level: Optional[str] = None
    is_active: Optional[bool] = None


class SubtopicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content_markdown: Optional[str] = None
    video_url: Optional[str] = None
    estimated_minutes: Optional[int] = None
    sequence_order: int = 0


class SubtopicUpdate(BaseModel):
    name: Optional[str] = None
    content_markdown: Optional[str] = None
    video_url: Optional[str] = None
    estimated_minutes: Optional[int] = None
    sequence_order: Optional[int] = None
    is_active: Optional[bool] = None


class MCQCreate(BaseModel):
    question: str = Field(..., min_length=1)
    question_image_url: Optional[str] = None
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: str = Field(..., description="A | B | C | D")
    explanation: Optional[str] = None
    explanation_url: Optional[str] = None
    difficulty: str = "medium"


class MCQUpdate(BaseModel):
    question: Optional[str] = None
    question_image_url: Optional[str] = None
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    correct_option: Optional[str] = None
    explanation: Optional[str] = None
    explanation_url: Optional[str] = None
    difficulty: Optional[str] = None
    is_active: Optional[bool] = None
