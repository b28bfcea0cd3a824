"""
aptivo/services/user_service.py
Account creation, deletion and sign-in rules.

Used by the auth routes and by the privileged create-user /
create-student / delete-user handlers.
"""
import logging
from typing import Optional, Any

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError, ErrorCode
from aptivo.orm.base import utcnow
from aptivo.orm.institution import (
    Institution, InstitutionAdmin, InstitutionStatus, INSTITUTION_STATUS_MESSAGES
)
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.security.passwords import hash_password_async, verify_password_async
from aptivo.security.rbac import SUSPENDED_MESSAGE

logger = logging.getLogger(__name__)

ADMIN_PENDING_MESSAGE = "Your administrator account is awaiting activation by a super admin."


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    role: UserRole,
    institution_id: Optional[int] = None,
    student_id_code: Optional[str] = None,
    status: UserStatus = UserStatus.active,
    email_verified: bool = True,
    is_solo: bool = False,
) -> User:
    """Insert a user row; the caller commits."""
    email = email.strip().lower()
    if await get_user_by_email(db, email):
        raise BadRequestError(f"A user with email {email} already exists", code=ErrorCode.EMAIL_EXISTS)

    if institution_id is not None and await db.get(Institution, institution_id) is None:
        raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)

    user = User(
        email=email,
        full_name=full_name.strip(),
        password_hash=await hash_password_async(password),
        role=role,
        status=status,
        email_verified=email_verified,
        institution_id=institution_id,
        student_id_code=student_id_code,
        is_solo=is_solo,
    )
    db.add(user)
    await db.flush()
    logger.info(f"Created user {user.id} ({role.value})")
    return user


async def link_institution_admin(db: AsyncSession, user: User, institution_id: int) -> None:
    """Upsert the admin link and mirror it on the user row."""
    result = await db.execute(
        select(InstitutionAdmin).where(
            InstitutionAdmin.user_id == user.id,
            InstitutionAdmin.institution_id == institution_id,
        )
    )
    if result.scalar_one_or_none() is None:
        db.add(InstitutionAdmin(user_id=user.id, institution_id=institution_id))
    user.institution_id = institution_id
    await db.flush()


async def resolve_admin_institution_id(db: AsyncSession, user: User) -> Optional[int]:
    """The institution an admin manages; falls back to the admin link table."""
    if user.institution_id is not None:
        return user.institution_id
    result = await db.execute(
        select(InstitutionAdmin.institution_id)
        .where(InstitutionAdmin.user_id == user.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


def parse_institution_id(raw: Any) -> int:
    """Institution ids arrive from forms as strings; only digits are accepted."""
    text = str(raw).strip()
    if not text.isdigit():
        raise BadRequestError("Invalid institution ID", code=ErrorCode.INVALID_FORMAT)
    return int(text)


def student_email(student_id: str, domain: str) -> str:
    return f"{student_id.strip()}@{domain.strip().lstrip('@')}".lower()


async def create_student_account(
    db: AsyncSession,
    student_id: str,
    name: str,
    password: str,
    institution_id: int,
) -> User:
    """
    Create a student whose email is synthesised from the roll number and
    the institution's domain.
    """
    institution = await db.get(Institution, institution_id)
    if institution is None:
        raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)

    if not institution.domain:
        raise BadRequestError(
            f'Institution "{institution.name}" has no domain configured. '
            "Set a domain before creating students.",
            code=ErrorCode.MISSING_FIELD,
        )

    return await create_user(
        db,
        email=student_email(student_id, institution.domain),
        password=password,
        full_name=name,
        role=UserRole.student,
        institution_id=institution.id,
        student_id_code=student_id.strip(),
    )


async def delete_user(db: AsyncSession, user_id: int) -> bool:
    """
    Delete a user and everything that hangs off them.
    Returns False when the user did not exist.
    """
    user = await db.get(User, user_id)
    if user is None:
        logger.info(f"Delete requested for unknown user {user_id}")
        return False

    await db.execute(delete(InstitutionAdmin).where(InstitutionAdmin.user_id == user_id))
    await db.delete(user)
    await db.flush()
    logger.info(f"Deleted user {user_id}")
    return True


async def register_user(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    role: UserRole,
    institution_id: Optional[int] = None,
    institution_name: Optional[str] = None,
    institution_type: Optional[str] = None,
    is_solo: bool = False,
    require_email_verification: bool = False,
) -> User:
    """
    Public sign-up.

    An institution admin signing up with a new institution name creates that
    institution in pending state; they cannot sign in until it is approved.
    Joining an existing institution leaves the account itself pending until a
    super admin activates it.
    """
    if role == UserRole.super_admin:
        raise ForbiddenError("Super admin accounts cannot be self-registered", code=ErrorCode.PERMISSION_DENIED)

    if role == UserRole.institution_admin and institution_id is None and not institution_name:
        raise BadRequestError("Institution name is required for institution admins", code=ErrorCode.MISSING_FIELD)

    joins_existing = role == UserRole.institution_admin and institution_id is not None

    user = await create_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=role,
        institution_id=institution_id if role == UserRole.student else None,
        email_verified=not (require_email_verification and role == UserRole.student),
        is_solo=is_solo and role == UserRole.student,
        status=UserStatus.pending if joins_existing else UserStatus.active,
    )

    if role == UserRole.institution_admin:
        if institution_id is None:
            institution = Institution(
                name=institution_name.strip(),
                institution_type=institution_type,
                contact_email=user.email,
                status=InstitutionStatus.pending.value,
                is_active=False,
            )
            db.add(institution)
            await db.flush()
            institution_id = institution.id
            logger.info(f"Registered pending institution {institution.id} for admin {user.id}")
        elif await db.get(Institution, institution_id) is None:
            raise NotFoundError("Institution", institution_id, code=ErrorCode.INSTITUTION_NOT_FOUND)
        await link_institution_admin(db, user, institution_id)

    return user


async def ensure_login_allowed(db: AsyncSession, user: User) -> None:
    """
    Sign-in rules, in order:
    super admins always pass; students must have verified their email;
    institution admins must be activated and need an approved institution;
    suspended or blocked accounts are refused.
    """
    if user.role == UserRole.super_admin:
        return

    if user.role == UserRole.student and not user.email_verified:
        raise ForbiddenError("Please verify your email before logging in.", code=ErrorCode.EMAIL_NOT_VERIFIED)

    if user.role == UserRole.institution_admin and user.status == UserStatus.pending:
        raise ForbiddenError(ADMIN_PENDING_MESSAGE, code=ErrorCode.ACCOUNT_PENDING)

    if user.role == UserRole.institution_admin:
        institution_id = await resolve_admin_institution_id(db, user)
        if institution_id is not None:
            if user.institution_id is None:
                user.institution_id = institution_id
                await db.commit()
            institution = await db.get(Institution, institution_id)
            if institution is not None and institution.status in INSTITUTION_STATUS_MESSAGES:
                raise ForbiddenError(
                    INSTITUTION_STATUS_MESSAGES[institution.status],
                    code=ErrorCode.INSTITUTION_NOT_APPROVED,
                    details={"institution_status": institution.status},
                )

    if not user.can_sign_in:
        raise ForbiddenError(SUSPENDED_MESSAGE, code=ErrorCode.ACCOUNT_SUSPENDED)


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if user is None or not await verify_password_async(password, user.password_hash):
        raise UnauthorizedError("Invalid email or password", code=ErrorCode.INVALID_CREDENTIALS)

    await ensure_login_allowed(db, user)
    user.last_login_at = utcnow()
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not await verify_password_async(current_password, user.password_hash):
        raise BadRequestError("Current password is incorrect", code=ErrorCode.INVALID_CREDENTIALS)
    user.password_hash = await hash_password_async(new_password)
    user.refresh_token = None
    await db.flush()


async def set_user_status(db: AsyncSession, user: User, status: UserStatus) -> User:
    if user.role == UserRole.super_admin and status != UserStatus.active:
        raise ForbiddenError("Super admin accounts cannot be suspended", code=ErrorCode.PERMISSION_DENIED)
    user.status = status
    if status in (UserStatus.suspended, UserStatus.blocked):
        user.refresh_token = None
    await db.flush()
    logger.info(f"User {user.id} status set to {status.value}")
    return user
