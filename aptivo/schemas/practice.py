"""
aptivo/schemas/practice.py
Practice sessions and practice rules.
"""
from typing import Optional

from pydantic import BaseModel, Field


class PracticeStart(BaseModel):
    subtopic_id: int
    university_id: Optional[int] = None


class PracticeAnswer(BaseModel):
    mcq_id: int
    selected_option: str = Field(..., description="A | B | C | D | SKIPPED")
    time_spent_seconds: int = Field(0, ge=0)


class PracticeComplete(BaseModel):
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class PracticeRulesUpdate(BaseModel):
    subject_id: Optional[int] = None
    mcq_count_per_session: int = Field(10, ge=1, le=200)
    easy_percentage: int = Field(40, ge=0, le=100)
    medium_percentage: int = Field(40, ge=0, le=100)
    hard_percentage: int = Field(20, ge=0, le=100)
    time_limit_minutes: Optional[int] = Field(None, ge=1)
