"""
aptivo/orm/exam.py
University exams: exam -> sections -> questions (+ reading passages),
and student attempts with their saved answers.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, DateTime, ForeignKey,
    UniqueConstraint, Enum as SQLEnum
)

from aptivo.core.db_types import UniversalJSON, JSONDict, JSONList
from aptivo.orm.base import BaseModel, utcnow


class ExamType(str, Enum):
    mock = "mock"
    module = "module"
    final = "final"


class ResultRelease(str, Enum):
    """When students see correct answers in the review"""
    instant = "instant"
    manual = "manual"


class QuestionType(str, Enum):
    mcq_single = "mcq_single"
    mcq_multiple = "mcq_multiple"
    true_false = "true_false"
    short_answer = "short_answer"


class AttemptStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"
    auto_submitted = "auto_submitted"


class UniversityExam(BaseModel):
    """
    A timed exam owned by a university.

    Timing flags:
    - total_duration: minutes for the whole attempt
    - auto_submit: finalise the attempt when total time runs out
    - allow_continue_after_time_up: keep the attempt open past time, flagged late
    - allow_reattempt: a finished attempt does not block a new one
    """
    __tablename__ = "university_exams"

    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False, index=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    exam_type = Column(SQLEnum(ExamType), default=ExamType.mock, nullable=False)
    total_duration = Column(Integer, default=120, nullable=False)
    allow_continue_after_time_up = Column(Boolean, default=False, nullable=False)
    allow_reattempt = Column(Boolean, default=True, nullable=False)
    auto_submit = Column(Boolean, default=True, nullable=False)
    result_release_setting = Column(SQLEnum(ResultRelease), default=ResultRelease.instant, nullable=False)
    negative_marking = Column(Float, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "university_id": self.university_id,
            "institution_id": self.institution_id,
            "name": self.name,
            "exam_type": self.exam_type.value if self.exam_type else None,
            "total_duration": self.total_duration,
            "allow_continue_after_time_up": self.allow_continue_after_time_up,
            "allow_reattempt": self.allow_reattempt,
            "auto_submit": self.auto_submit,
            "result_release_setting": self.result_release_setting.value if self.result_release_setting else None,
            "negative_marking": self.negative_marking,
            "is_active": self.is_active,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ExamSection(BaseModel):
    """A section with an optional own timer (``section_duration`` minutes)"""
    __tablename__ = "exam_sections"

    exam_id = Column(Integer, ForeignKey("university_exams.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    num_questions = Column(Integer, default=0, nullable=False)
    weightage = Column(Float, default=0, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)
    section_duration = Column(Integer, nullable=True)
    negative_marking = Column(Float, nullable=True)
    default_marks_per_question = Column(Float, default=1, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "exam_id": self.exam_id,
            "name": self.name,
            "num_questions": self.num_questions,
            "weightage": self.weightage,
            "order_index": self.order_index,
            "section_duration": self.section_duration,
            "negative_marking": self.negative_marking,
            "default_marks_per_question": self.default_marks_per_question,
        }


class Passage(BaseModel):
    """Reading comprehension text shared by several questions"""
    __tablename__ = "exam_passages"

    exam_id = Column(Integer, ForeignKey("university_exams.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)

    def to_dict(self):
        return {"id": self.id, "exam_id": self.exam_id, "title": self.title, "content": self.content}


class ExamQuestion(BaseModel):
    """
    ``options`` is a list of ``{"id": "a", "text": ...}`` objects. ``correct_answer``
    is an option id (or free text for short answers) and a list of ids for
    mcq_multiple.
    """
    __tablename__ = "exam_questions"

    section_id = Column(Integer, ForeignKey("exam_sections.id", ondelete="CASCADE"), nullable=False, index=True)
    passage_id = Column(Integer, ForeignKey("exam_passages.id", ondelete="SET NULL"), nullable=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(SQLEnum(QuestionType), default=QuestionType.mcq_single, nullable=False)
    image_url = Column(String(500), nullable=True)
    options = Column(UniversalJSON, nullable=True)
    correct_answer = Column(UniversalJSON, nullable=True)
    marks = Column(Float, nullable=True)
    explanation = Column(Text, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)

    def to_dict(self, include_answer: bool = True):
        data = {
            "id": self.id,
            "section_id": self.section_id,
            "passage_id": self.passage_id,
            "question_text": self.question_text,
            "question_type": self.question_type.value if self.question_type else None,
            "image_url": self.image_url,
            "options": self.options or [],
            "marks": self.marks,
            "order_index": self.order_index,
        }
        if include_answer:
            data["correct_answer"] = self.correct_answer
            data["explanation"] = self.explanation
        return data


class ExamAttempt(BaseModel):
    """
    A student's attempt at an exam.

    Section timing is stored, not ticked: ``section_elapsed`` banks seconds
    already spent per section id (string keys), and ``section_started_at``
    marks when the active section was last entered. Finished sections are
    listed in ``completed_section_ids`` and can no longer be answered.
    """
    __tablename__ = "exam_attempts"

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    exam_id = Column(Integer, ForeignKey("university_exams.id", ondelete="CASCADE"), nullable=False, index=True)
    university_id = Column(Integer, ForeignKey("universities.id", ondelete="SET NULL"), nullable=True)
    status = Column(SQLEnum(AttemptStatus), default=AttemptStatus.in_progress, nullable=False, index=True)
    start_time = Column(DateTime, default=utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    score = Column(Float, nullable=True)
    total_marks = Column(Float, nullable=True)
    is_late = Column(Boolean, default=False, nullable=False)

    active_section_id = Column(Integer, nullable=True)
    section_started_at = Column(DateTime, nullable=True)
    section_elapsed = Column(JSONDict, default=dict, nullable=False)
    completed_section_ids = Column(JSONList, default=list, nullable=False)
    fullscreen_exits = Column(Integer, default=0, nullable=False)

    @property
    def is_finished(self) -> bool:
        return self.status != AttemptStatus.in_progress

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "exam_id": self.exam_id,
            "university_id": self.university_id,
            "status": self.status.value if self.status else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "score": self.score,
            "total_marks": self.total_marks,
            "is_late": self.is_late,
            "active_section_id": self.active_section_id,
            "completed_section_ids": list(self.completed_section_ids or []),
            "fullscreen_exits": self.fullscreen_exits,
        }


class ExamAnswer(BaseModel):
    __tablename__ = "exam_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),
    )

    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("exam_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    answer = Column(UniversalJSON, nullable=True)
