"""
aptivo/routes/users.py
User administration.

The create-user, create-student and delete-user handlers are privileged:
they accept the server's service role key (X-Service-Role-Key) or an admin
access token.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import BadRequestError, ForbiddenError, ErrorCode
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.schemas.admin import (
    CreateStudentRequest, CreateUserRequest, DeleteUserRequest, UserStatusUpdate
)
from aptivo.security.rbac import require_admin, require_super_admin
from aptivo.security.service_role import PrivilegedCaller, privileged_caller
from aptivo.services import user_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["User Administration"])


def _summary(user: User) -> dict:
    return {"id": user.id, "email": user.email, "role": user.role.value}


@router.post("/create-user")
async def create_user(
    body: CreateUserRequest,
    caller: PrivilegedCaller = Depends(privileged_caller(UserRole.super_admin)),
    db: AsyncSession = Depends(get_db),
):
    """
    Create an active, verified account of any role.
    An institution admin created with an institutionId is linked to it.
    """
    if not body.email or not body.password or not body.full_name or not body.role:
        raise BadRequestError("Missing required fields", code=ErrorCode.MISSING_FIELD)

    try:
        role = UserRole(body.role)
    except ValueError:
        raise BadRequestError(f"Invalid role: {body.role}", code=ErrorCode.INVALID_INPUT)

    institution_id = None
    if body.institution_id not in (None, ""):
        institution_id = user_service.parse_institution_id(body.institution_id)

    user = await user_service.create_user(
        db,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        role=role,
        institution_id=institution_id,
        student_id_code=body.student_id,
    )
    if role == UserRole.institution_admin and institution_id is not None:
        await user_service.link_institution_admin(db, user, institution_id)
    await db.commit()

    logger.info(f"create-user: {user.email} ({role.value}) by {caller.actor_id or 'service'}")
    return {"success": True, "user": _summary(user)}


@router.post("/create-student")
async def create_student(
    body: CreateStudentRequest,
    caller: PrivilegedCaller = Depends(privileged_caller(UserRole.super_admin, UserRole.institution_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Create a student whose login is ``{studentId}@{institution domain}``."""
    if not body.student_id or not body.name or not body.password or body.institution_id in (None, ""):
        raise BadRequestError("Missing required fields", code=ErrorCode.MISSING_FIELD)

    institution_id = user_service.parse_institution_id(body.institution_id)
    caller.ensure_institution(institution_id)

    user = await user_service.create_student_account(
        db,
        student_id=body.student_id,
        name=body.name,
        password=body.password,
        institution_id=institution_id,
    )
    await db.commit()

    logger.info(f"create-student: {user.email} in institution {institution_id} by {caller.actor_id or 'service'}")
    return {"success": True, "user": {**_summary(user), "student_id": user.student_id_code}}


@router.post("/delete-user")
async def delete_user(
    body: DeleteUserRequest,
    caller: PrivilegedCaller = Depends(privileged_caller(UserRole.super_admin, UserRole.institution_admin)),
    db: AsyncSession = Depends(get_db),
):
    if body.user_id is None:
        raise BadRequestError("Missing required fields", code=ErrorCode.MISSING_FIELD)

    if not caller.is_super_admin:
        target = await db.get(User, body.user_id)
        if target is not None:
            if target.role != UserRole.student:
                raise ForbiddenError("Institution admins can only delete students", code=ErrorCode.PERMISSION_DENIED)
            caller.ensure_institution(target.institution_id)

    deleted = await user_service.delete_user(db, body.user_id)
    await db.commit()

    logger.info(f"delete-user: {body.user_id} (deleted={deleted}) by {caller.actor_id or 'service'}")
    return {"success": True, "deleted": deleted}


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = None,
    status: Optional[UserStatus] = None,
    institution_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User)
    if role is not None:
        query = query.where(User.role == role)
    if status is not None:
        query = query.where(User.status == status)
    if institution_id is not None:
        query = query.where(User.institution_id == institution_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    users = (await db.execute(
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )).scalars().all()

    return {
        "success": True,
        "users": [u.to_dict() for u in users],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.patch("/users/{user_id}/status")
async def update_user_status(
    user_id: int,
    body: UserStatusUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Suspend, block or reactivate a user. Institution admins only act on their own students."""
    user = await user_service.get_user(db, user_id)
    if current_user.role == UserRole.institution_admin:
        if user.role != UserRole.student or user.institution_id != current_user.institution_id:
            raise ForbiddenError("You can only manage students of your institution", code=ErrorCode.SCOPE_VIOLATION)

    await user_service.set_user_status(db, user, body.status)
    await db.commit()
    return {"success": True, "user": user.to_dict()}
