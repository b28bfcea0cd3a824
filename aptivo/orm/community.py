"""
aptivo/orm/community.py
Feedback, notifications and the admin activity log.
"""
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, ForeignKey, UniqueConstraint

from aptivo.core.db_types import JSONDict
from aptivo.orm.base import BaseModel


class Feedback(BaseModel):
    __tablename__ = "feedbacks"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False, index=True)


class NotificationCategory:
    NORMAL = "normal"
    IMPORTANT = "important"
    ALERT = "alert"

    ALL = (NORMAL, IMPORTANT, ALERT)


class Notification(BaseModel):
    __tablename__ = "notifications"

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(20), default=NotificationCategory.NORMAL, nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    sender_role = Column(String(30), nullable=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=True)
    image_url = Column(String(500), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "sender_role": self.sender_role,
            "institution_id": self.institution_id,
            "image_url": self.image_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationRecipient(BaseModel):
    __tablename__ = "notification_recipients"
    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_user"),
    )

    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)


class ActivityLog(BaseModel):
    """Admin-facing feed of content changes and enrollments"""
    __tablename__ = "activity_logs"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    activity_type = Column(String(50), nullable=False, index=True)
    activity_data = Column(JSONDict, default=dict, nullable=False)
