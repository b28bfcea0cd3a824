"""
aptivo/orm
Importing this package registers every table on Base.metadata.
"""
from aptivo.orm.base import Base, BaseModel
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.orm.institution import (
    Institution, InstitutionAdmin, InstitutionStatus, INSTITUTION_STATUS_MESSAGES
)
from aptivo.orm.university import (
    University, InstitutionUniversityAccess, StudentUniversityEnrollment,
    UniversityContentAccess, ALL_DIFFICULTIES
)
from aptivo.orm.curriculum import Subject, Topic, Subtopic, SubtopicProgress
from aptivo.orm.mcq import MCQ, Upload, OPTION_LETTERS
from aptivo.orm.practice import UniversityPracticeRule, PracticeSession, MCQAttempt, LearningStreak
from aptivo.orm.exam import (
    UniversityExam, ExamSection, Passage, ExamQuestion, ExamAttempt, ExamAnswer,
    ExamType, ResultRelease, QuestionType, AttemptStatus
)
from aptivo.orm.community import (
    Feedback, Notification, NotificationRecipient, NotificationCategory, ActivityLog
)
