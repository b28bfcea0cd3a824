"""
aptivo/orm/practice.py
Practice sessions, per-question attempts, practice rules and the daily
learning streak.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Date, DateTime, ForeignKey, UniqueConstraint
)

from aptivo.orm.base import BaseModel, utcnow


class UniversityPracticeRule(BaseModel):
    """Question count and difficulty mix for a (university, subject) pair"""
    __tablename__ = "university_practice_rules"
    __table_args__ = (
        UniqueConstraint("university_id", "subject_id", name="uq_practice_rule"),
    )

    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=True, index=True)
    mcq_count_per_session = Column(Integer, default=10, nullable=False)
    easy_percentage = Column(Integer, default=40, nullable=False)
    medium_percentage = Column(Integer, default=40, nullable=False)
    hard_percentage = Column(Integer, default=20, nullable=False)
    time_limit_minutes = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "university_id": self.university_id,
            "subject_id": self.subject_id,
            "mcq_count_per_session": self.mcq_count_per_session,
            "easy_percentage": self.easy_percentage,
            "medium_percentage": self.medium_percentage,
            "hard_percentage": self.hard_percentage,
            "time_limit_minutes": self.time_limit_minutes,
        }


class PracticeSession(BaseModel):
    __tablename__ = "practice_sessions"

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    university_id = Column(Integer, ForeignKey("universities.id", ondelete="SET NULL"), nullable=True, index=True)
    session_type = Column(String(20), default="practice", nullable=False)

    # MCQ ids served to the student, in display order
    question_ids = Column(String(2000), nullable=True)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True, index=True)
    total_questions = Column(Integer, default=0, nullable=False)
    correct_answers = Column(Integer, default=0, nullable=False)
    wrong_answers = Column(Integer, default=0, nullable=False)
    skipped_questions = Column(Integer, default=0, nullable=False)
    score_percentage = Column(Float, nullable=True)
    time_spent_seconds = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False, index=True)

    @property
    def mcq_ids(self):
        if not self.question_ids:
            return []
        return [int(x) for x in self.question_ids.split(",") if x]

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subtopic_id": self.subtopic_id,
            "university_id": self.university_id,
            "session_type": self.session_type,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "wrong_answers": self.wrong_answers,
            "skipped_questions": self.skipped_questions,
            "score_percentage": self.score_percentage,
            "time_spent_seconds": self.time_spent_seconds,
            "is_completed": self.is_completed,
        }


class MCQAttempt(BaseModel):
    """A student's answer to one MCQ within a practice session"""
    __tablename__ = "mcq_attempts"
    __table_args__ = (
        UniqueConstraint("practice_session_id", "mcq_id", name="uq_session_mcq"),
    )

    practice_session_id = Column(
        Integer, ForeignKey("practice_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mcq_id = Column(Integer, ForeignKey("mcqs.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    selected_option = Column(String(10), nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)


class LearningStreak(BaseModel):
    """One row per day a student studied"""
    __tablename__ = "learning_streaks"
    __table_args__ = (
        UniqueConstraint("student_id", "streak_date", name="uq_student_streak_date"),
    )

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    streak_date = Column(Date, nullable=False, index=True)
