"""
aptivo/routes/auth.py
Sign-up, sign-in and session routes.

Sign-in status checks (in order):
- super admins always pass
- students must have verified their email (when verification is on)
- institution admins need an approved institution
- suspended or blocked accounts are refused
"""
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.config import settings, feature_flags
from aptivo.database import get_db
from aptivo.errors import ErrorCode, BadRequestError, ForbiddenError, UnauthorizedError
from aptivo.orm.base import utcnow
from aptivo.orm.user import User
from aptivo.schemas.auth import (
    ChangePasswordRequest, RefreshRequest, Token, UserLogin, UserRegister, VerifyEmailRequest
)
from aptivo.security.rate_limit import limiter
from aptivo.security.rbac import (
    create_access_token, create_refresh_token, create_email_verification_token,
    decode_token, get_current_user, token_claims_for
)
from aptivo.services import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


async def issue_tokens(db: AsyncSession, user: User) -> dict:
    """Create an access/refresh pair and store the refresh token on the user."""
    access_token = create_access_token(
        token_claims_for(user),
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    refresh_token = create_refresh_token(user.id)

    user.refresh_token = refresh_token
    user.refresh_token_expires = utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    await db.commit()

    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "role": user.role.value,
        "user_id": user.id,
        "institution_id": user.institution_id,
    }


@router.post("/register", status_code=201)
@limiter.limit("10/minute")
async def register(
    request: Request,
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a student or an institution admin.
    Nothing is signed in here: the client logs in once the account may.
    """
    if not feature_flags.FEATURE_SELF_REGISTRATION:
        raise ForbiddenError("Self registration is disabled", code=ErrorCode.PERMISSION_DENIED)

    logger.info(f"Registration attempt for email: {user_data.email}, role: {user_data.role.value}")

    require_verification = feature_flags.FEATURE_EMAIL_VERIFICATION
    user = await user_service.register_user(
        db,
        email=user_data.email,
        password=user_data.password,
        full_name=user_data.full_name,
        role=user_data.role,
        institution_id=user_data.institution_id,
        institution_name=user_data.institution_name,
        institution_type=user_data.institution_type,
        is_solo=user_data.is_solo,
        require_email_verification=require_verification,
    )
    await db.commit()

    if not user.email_verified:
        # Delivery belongs to the mail provider; the link is logged for operators
        token = create_email_verification_token(user.email)
        logger.info(f"Email verification link for {user.email}: {settings.SITE_URL}/verify-email?token={token}")

    logger.info(f"User registered successfully: {user.email} as {user.role.value}")
    return {
        "success": True,
        "user": user.to_dict(),
        "requires_email_verification": not user.email_verified,
    }


@router.post("/login", response_model=Token)
@limiter.limit("30/minute")
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 form login (username is the email)."""
    logger.info(f"Form login attempt for username: {form_data.username}")
    user = await user_service.authenticate(db, form_data.username, form_data.password)
    logger.info(f"User logged in successfully: {user.email} as {user.role.value}")
    return await issue_tokens(db, user)


@router.post("/login/json", response_model=Token)
@limiter.limit("30/minute")
async def login_json(
    request: Request,
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db),
):
    logger.info(f"Login attempt for email: {credentials.email}")
    user = await user_service.authenticate(db, credentials.email, credentials.password)
    logger.info(f"User logged in successfully: {user.email} as {user.role.value}")
    return await issue_tokens(db, user)


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, db: AsyncSession = Depends(get_db)):
    payload = decode_token(body.token)
    if not payload or payload.get("type") != "verify" or not payload.get("sub"):
        raise BadRequestError("Invalid or expired verification link", code=ErrorCode.AUTH_INVALID)

    user = await user_service.get_user_by_email(db, payload["sub"])
    if user is None:
        raise BadRequestError("Invalid or expired verification link", code=ErrorCode.AUTH_INVALID)

    user.email_verified = True
    await db.commit()
    logger.info(f"Email verified for user {user.id}")
    return {"success": True, "message": "Email verified. You can now log in."}


@router.post("/refresh", response_model=Token)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a stored, unexpired refresh token for a new token pair."""
    payload = decode_token(body.refresh_token, is_refresh=True)
    if not payload or payload.get("type") != "refresh":
        raise UnauthorizedError("Invalid or expired refresh token", code=ErrorCode.AUTH_INVALID)

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired refresh token", code=ErrorCode.AUTH_INVALID)

    user = await db.get(User, user_id)
    if user is None or user.refresh_token != body.refresh_token:
        raise UnauthorizedError("Invalid or expired refresh token", code=ErrorCode.AUTH_INVALID)
    if user.refresh_token_expires and user.refresh_token_expires < utcnow():
        raise UnauthorizedError("Refresh token expired", code=ErrorCode.AUTH_EXPIRED)

    await user_service.ensure_login_allowed(db, user)
    return await issue_tokens(db, user)


@router.get("/me")
async def me(current_user: User = Depends(get_current_user)):
    return {"success": True, "user": current_user.to_dict()}


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if body.current_password == body.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "success": False,
                "error": "Bad Request",
                "message": "New password must differ from the current one",
                "code": ErrorCode.INVALID_INPUT
            }
        )
    await user_service.change_password(db, current_user, body.current_password, body.new_password)
    await db.commit()
    logger.info(f"Password changed for user {current_user.id}")
    return {"success": True, "message": "Password updated"}
