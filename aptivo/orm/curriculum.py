"""
aptivo/orm/curriculum.py
Subject -> Topic -> Subtopic hierarchy and per-student reading progress.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Float, DateTime, ForeignKey, UniqueConstraint
)

from aptivo.orm.base import BaseModel


class Subject(BaseModel):
    __tablename__ = "subjects"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    color = Column(String(20), nullable=True)
    display_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class Topic(BaseModel):
    __tablename__ = "topics"

    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    sequence_order = Column(Integer, default=0, nullable=False)
    estimated_hours = Column(Float, nullable=True)
    difficulty_level = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "name": self.name,
            "description": self.description,
            "sequence_order": self.sequence_order,
            "estimated_hours": self.estimated_hours,
            "difficulty_level": self.difficulty_level,
            "is_active": self.is_active,
        }


class Subtopic(BaseModel):
    __tablename__ = "subtopics"

    topic_id = Column(Integer, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    content_markdown = Column(Text, nullable=True)
    video_url = Column(String(500), nullable=True)
    estimated_minutes = Column(Integer, nullable=True)
    sequence_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self, include_content: bool = False):
        data = {
            "id": self.id,
            "topic_id": self.topic_id,
            "name": self.name,
            "video_url": self.video_url,
            "estimated_minutes": self.estimated_minutes,
            "sequence_order": self.sequence_order,
            "is_active": self.is_active,
        }
        if include_content:
            data["content_markdown"] = self.content_markdown
        return data


class SubtopicProgress(BaseModel):
    """Reading progress of a student on one subtopic lesson"""
    __tablename__ = "subtopic_progress"
    __table_args__ = (
        UniqueConstraint("student_id", "subtopic_id", name="uq_subtopic_progress"),
    )

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    reading_percentage = Column(Integer, default=0, nullable=False)
    last_accessed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
