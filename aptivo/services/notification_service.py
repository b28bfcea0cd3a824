"""
aptivo/services/notification_service.py
Broadcast notifications and per-user inboxes.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, NotFoundError
from aptivo.orm.base import utcnow
from aptivo.orm.community import Notification, NotificationCategory, NotificationRecipient
from aptivo.orm.university import StudentUniversityEnrollment
from aptivo.orm.user import User, UserRole, UserStatus

logger = logging.getLogger(__name__)


def normalize_category(category: Optional[str]) -> str:
    """important and alert are kept; info, success and anything unknown become normal."""
    value = (category or "").strip().lower()
    if value in NotificationCategory.ALL:
        return value
    return NotificationCategory.NORMAL


async def _create(
    db: AsyncSession,
    sender: Optional[User],
    recipient_ids: Iterable[int],
    title: str,
    message: str,
    category: Optional[str],
    institution_id: Optional[int] = None,
    image_url: Optional[str] = None,
) -> Dict[str, Any]:
    unique_ids = sorted(set(recipient_ids))
    if not unique_ids:
        raise BadRequestError("No recipients found for this notification")

    notification = Notification(
        title=title,
        message=message,
        category=normalize_category(category),
        sender_id=sender.id if sender else None,
        sender_role=sender.role.value if sender else None,
        institution_id=institution_id,
        image_url=image_url,
    )
    db.add(notification)
    await db.flush()

    db.add_all([
        NotificationRecipient(notification_id=notification.id, user_id=uid)
        for uid in unique_ids
    ])
    await db.commit()
    logger.info(f"Notification {notification.id} sent to {len(unique_ids)} users")
    return {"success": True, "notification": notification.to_dict(), "recipients": len(unique_ids)}


async def send_to_all_users(db: AsyncSession, sender: User, title: str, message: str,
                            category: Optional[str] = None, image_url: Optional[str] = None) -> Dict[str, Any]:
    ids = (await db.execute(
        select(User.id).where(User.status.in_([UserStatus.active, UserStatus.pending]))
    )).scalars().all()
    return await _create(db, sender, ids, title, message, category, image_url=image_url)


async def institution_student_ids(db: AsyncSession, institution_id: int) -> List[int]:
    """Students of an institution: direct members plus anyone enrolled through it."""
    enrolled = (await db.execute(
        select(StudentUniversityEnrollment.student_id).where(
            StudentUniversityEnrollment.institution_id == institution_id
        )
    )).scalars().all()
    members = (await db.execute(
        select(User.id).where(User.institution_id == institution_id, User.role == UserRole.student)
    )).scalars().all()
    return sorted(set(enrolled) | set(members))


async def send_to_institution_students(db: AsyncSession, sender: User, institution_id: int, title: str,
                                       message: str, category: Optional[str] = None,
                                       image_url: Optional[str] = None) -> Dict[str, Any]:
    ids = await institution_student_ids(db, institution_id)
    if not ids:
        raise BadRequestError("No students found for this institution")
    return await _create(db, sender, ids, title, message, category,
                         institution_id=institution_id, image_url=image_url)


async def send_to_specific_users(db: AsyncSession, sender: User, user_ids: List[int], title: str,
                                 message: str, category: Optional[str] = None,
                                 image_url: Optional[str] = None) -> Dict[str, Any]:
    existing = (await db.execute(select(User.id).where(User.id.in_(user_ids)))).scalars().all()
    return await _create(db, sender, existing, title, message, category, image_url=image_url)


async def get_user_notifications(db: AsyncSession, user_id: int, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
    offset = (max(page, 1) - 1) * page_size
    total = (await db.execute(
        select(func.count(NotificationRecipient.id)).where(NotificationRecipient.user_id == user_id)
    )).scalar() or 0
    rows = (await db.execute(
        select(Notification, NotificationRecipient)
        .join(NotificationRecipient, NotificationRecipient.notification_id == Notification.id)
        .where(NotificationRecipient.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(page_size)
    )).all()
    return {
        "notifications": [
            {
                **n.to_dict(),
                "is_read": r.is_read,
                "read_at": r.read_at.isoformat() if r.read_at else None,
            }
            for n, r in rows
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    return (await db.execute(
        select(func.count(NotificationRecipient.id)).where(
            NotificationRecipient.user_id == user_id,
            NotificationRecipient.is_read.is_(False),
        )
    )).scalar() or 0


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> None:
    recipient = (await db.execute(
        select(NotificationRecipient).where(
            NotificationRecipient.user_id == user_id,
            NotificationRecipient.notification_id == notification_id,
        )
    )).scalar_one_or_none()
    if recipient is None:
        raise NotFoundError("Notification", notification_id)
    if not recipient.is_read:
        recipient.is_read = True
        recipient.read_at = utcnow()
    await db.commit()


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(NotificationRecipient)
        .where(NotificationRecipient.user_id == user_id, NotificationRecipient.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()
    return result.rowcount or 0


async def get_sent_notifications(db: AsyncSession, sender_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    recipients = func.count(NotificationRecipient.id)
    rows = (await db.execute(
        select(Notification, recipients)
        .outerjoin(NotificationRecipient, NotificationRecipient.notification_id == Notification.id)
        .where(Notification.sender_id == sender_id)
        .group_by(Notification.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )).all()
    return [{**n.to_dict(), "recipients": count} for n, count in rows]
