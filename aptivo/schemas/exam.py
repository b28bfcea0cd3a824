"""
aptivo/schemas/exam.py
Exam authoring and exam-taking payloads.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from aptivo.orm.exam import ExamType, QuestionType, ResultRelease


class ExamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    exam_type: ExamType = ExamType.mock
    total_duration: int = Field(120, ge=1, description="Minutes")
    allow_continue_after_time_up: bool = False
    allow_reattempt: bool = True
    auto_submit: bool = True
    result_release_setting: ResultRelease = ResultRelease.instant
    negative_marking: float = Field(0, ge=0)
    is_active: bool = True
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class ExamUpdate(BaseModel):
    name: Optional[str] = None
    exam_type: Optional[ExamType] = None
    total_duration: Optional[int] = Field(None, ge=1)
    allow_continue_after_time_up: Optional[bool] = None
    allow_reattempt: Optional[bool] = None
    auto_submit: Optional[bool] = None
    result_release_setting: Optional[ResultRelease] = None
    negative_marking: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class SectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    weightage: float = 0
    order_index: Optional[int] = None
    section_duration: Optional[int] = Field(None, ge=1, description="Minutes; None means no section timer")
    negative_marking: Optional[float] = Field(None, ge=0, description="None inherits the exam setting")
    default_marks_per_question: float = Field(1, gt=0)


class SectionUpdate(BaseModel):
    name: Optional[str] = None
    weightage: Optional[float] = None
    order_index: Optional[int] = None
    section_duration: Optional[int] = Field(None, ge=1)
    negative_marking: Optional[float] = Field(None, ge=0)
    default_marks_per_question: Optional[float] = Field(None, gt=0)


class PassageCreate(BaseModel):
    title: Optional[str] = None
    content: str = Field(..., min_length=1)


class PassageUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class QuestionCreate(BaseModel):
    question_text: str = Field(..., min_length=1)
    question_type: QuestionType = QuestionType.mcq_single
    passage_id: Optional[int] = None
    image_url: Optional[str] = None
    options: List[Dict[str, Any]] = Field(default_factory=list)
    correct_answer: Optional[Any] = None
    marks: Optional[float] = Field(None, gt=0)
    explanation: Optional[str] = None
    order_index: Optional[int] = None


class QuestionUpdate(BaseModel):
    question_text: Optional[str] = None
    question_type: Optional[QuestionType] = None
    passage_id: Optional[int] = None
    image_url: Optional[str] = None
    options: Optional[List[Dict[str, Any]]] = None
    correct_answer: Optional[Any] = None
    marks: Optional[float] = Field(None, gt=0)
    explanation: Optional[str] = None
    order_index: Optional[int] = None


class AnswerSave(BaseModel):
    question_id: int
    answer: Optional[Any] = None


class SectionSelect(BaseModel):
    section_id: int


class IntegrityEvent(BaseModel):
    event: str = Field(..., description="fullscreen_exit")
