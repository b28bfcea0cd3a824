"""
aptivo/routes/notifications.py
Sending notifications (admins) and the per-user inbox.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import BadRequestError, ForbiddenError, ErrorCode
from aptivo.orm.user import User, UserRole
from aptivo.schemas.community import (
    DirectNotificationCreate, InstitutionNotificationCreate, NotificationCreate
)
from aptivo.security.rbac import ensure_institution_scope, get_current_user, require_admin, require_super_admin
from aptivo.services import notification_service
from aptivo.services.user_service import resolve_admin_institution_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/broadcast", status_code=201)
async def broadcast(
    body: NotificationCreate,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.send_to_all_users(
        db, current_user, body.title, body.message, body.category, body.image_url
    )


@router.post("/institution", status_code=201)
async def notify_institution(
    body: InstitutionNotificationCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Institution admins always target their own institution."""
    institution_id = body.institution_id
    if current_user.role == UserRole.institution_admin:
        institution_id = institution_id or await resolve_admin_institution_id(db, current_user)
    if institution_id is None:
        raise BadRequestError("institution_id is required", code=ErrorCode.MISSING_FIELD)
    ensure_institution_scope(current_user, institution_id)

    return await notification_service.send_to_institution_students(
        db, current_user, institution_id, body.title, body.message, body.category, body.image_url
    )


@router.post("/users", status_code=201)
async def notify_users(
    body: DirectNotificationCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if current_user.role == UserRole.institution_admin:
        institution_id = await resolve_admin_institution_id(db, current_user)
        allowed = set(await notification_service.institution_student_ids(db, institution_id)) \
            if institution_id is not None else set()
        if not set(body.user_ids) <= allowed:
            raise ForbiddenError("You can only notify students of your institution", code=ErrorCode.SCOPE_VIOLATION)

    return await notification_service.send_to_specific_users(
        db, current_user, body.user_ids, body.title, body.message, body.category, body.image_url
    )


@router.get("/sent")
async def sent(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "notifications": await notification_service.get_sent_notifications(db, current_user.id)}


@router.get("")
async def inbox(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, **await notification_service.get_user_notifications(db, current_user.id, page, page_size)}


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "count": await notification_service.get_unread_count(db, current_user.id)}


@router.post("/read-all")
async def read_all(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_service.mark_all_as_read(db, current_user.id)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read")
async def read_one(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await notification_service.mark_as_read(db, current_user.id, notification_id)
    return {"success": True}
