"""
aptivo/routes/feedback.py
User feedback and its moderation; published entries feed the public
testimonials section.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import NotFoundError
from aptivo.orm.community import Feedback
from aptivo.orm.user import User
from aptivo.schemas.community import FeedbackCreate, FeedbackPublish
from aptivo.security.rbac import get_current_user, require_super_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["Feedback"])


def _feedback_dict(feedback: Feedback, user: Optional[User] = None) -> dict:
    data = {
        "id": feedback.id,
        "rating": feedback.rating,
        "message": feedback.message,
        "is_published": feedback.is_published,
        "created_at": feedback.created_at.isoformat() if feedback.created_at else None,
    }
    if user is not None:
        data["author"] = {"id": user.id, "full_name": user.full_name, "role": user.role.value}
    return data


@router.post("", status_code=201)
async def submit_feedback(
    body: FeedbackCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    feedback = Feedback(user_id=current_user.id, rating=body.rating, message=body.message.strip())
    db.add(feedback)
    await db.commit()
    logger.info(f"Feedback {feedback.id} submitted by user {current_user.id}")
    return {"success": True, "feedback": _feedback_dict(feedback)}


@router.get("")
async def list_feedback(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = (await db.execute(
        select(Feedback, User)
        .join(User, User.id == Feedback.user_id)
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
    )).all()
    return {"success": True, "feedback": [_feedback_dict(f, u) for f, u in rows]}


@router.get("/published")
async def published_feedback(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    rows = (await db.execute(
        select(Feedback, User)
        .join(User, User.id == Feedback.user_id)
        .where(Feedback.is_published.is_(True))
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .limit(limit)
    )).all()
    return {"success": True, "feedback": [_feedback_dict(f, u) for f, u in rows]}


@router.patch("/{feedback_id}/publish")
async def set_published(
    feedback_id: int,
    body: FeedbackPublish,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    feedback = await db.get(Feedback, feedback_id)
    if feedback is None:
        raise NotFoundError("Feedback", feedback_id)
    feedback.is_published = body.is_published
    await db.commit()
    return {"success": True, "feedback": _feedback_dict(feedback)}
