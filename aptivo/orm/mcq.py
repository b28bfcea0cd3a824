"""
aptivo/orm/mcq.py
Practice question bank and spreadsheet upload bookkeeping.
"""
from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey

from aptivo.core.db_types import JSONList
from aptivo.orm.base import BaseModel

OPTION_LETTERS = ("A", "B", "C", "D")


class MCQ(BaseModel):
    """Four-option multiple choice question attached to a subtopic"""
    __tablename__ = "mcqs"

    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    question_image_url = Column(String(500), nullable=True)
    option_a = Column(Text, nullable=False)
    option_b = Column(Text, nullable=False)
    option_c = Column(Text, nullable=False)
    option_d = Column(Text, nullable=False)
    correct_option = Column(String(1), nullable=False)
    explanation = Column(Text, nullable=True)
    explanation_url = Column(String(500), nullable=True)
    difficulty = Column(String(10), default="medium", nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    times_attempted = Column(Integer, default=0, nullable=False)
    times_correct = Column(Integer, default=0, nullable=False)

    upload_id = Column(Integer, ForeignKey("uploads.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self, include_answer: bool = True):
        data = {
            "id": self.id,
            "subtopic_id": self.subtopic_id,
            "question": self.question,
            "question_image_url": self.question_image_url,
            "option_a": self.option_a,
            "option_b": self.option_b,
            "option_c": self.option_c,
            "option_d": self.option_d,
            "difficulty": self.difficulty,
            "is_active": self.is_active,
        }
        if include_answer:
            data.update({
                "correct_option": self.correct_option,
                "explanation": self.explanation,
                "explanation_url": self.explanation_url,
                "times_attempted": self.times_attempted,
                "times_correct": self.times_correct,
            })
        return data


class Upload(BaseModel):
    """One spreadsheet import; status goes processing -> completed | partial | failed"""
    __tablename__ = "uploads"

    upload_type = Column(String(50), nullable=False)
    file_name = Column(String(255), nullable=False)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), default="processing", nullable=False)
    total_rows = Column(Integer, default=0, nullable=False)
    processed_rows = Column(Integer, default=0, nullable=False)
    failed_rows = Column(Integer, default=0, nullable=False)
    errors = Column(JSONList, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "upload_type": self.upload_type,
            "file_name": self.file_name,
            "subtopic_id": self.subtopic_id,
            "status": self.status,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "failed_rows": self.failed_rows,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
