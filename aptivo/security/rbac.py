"""
aptivo/security/rbac.py
Tokens, the current-user dependency and role checks.

Roles, highest first: super_admin > institution_admin > student.
Institution admins are confined to their own institution.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt

from aptivo.config import settings
from aptivo.database import get_db
from aptivo.orm.user import User, UserRole
from aptivo.errors import ErrorCode

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

SUSPENDED_MESSAGE = "Your account has been suspended. Please contact support."

# ================= TOKEN UTILS =================


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token with user_id, role, institution_id"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "type": "access"
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def create_refresh_token(user_id: int) -> str:
    """Create JWT refresh token"""
    expire = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "refresh"
    }
    return jwt.encode(to_encode, settings.JWT_REFRESH_SECRET_KEY, algorithm=ALGORITHM)


def create_email_verification_token(email: str) -> str:
    expire = datetime.utcnow() + timedelta(hours=settings.EMAIL_VERIFY_EXPIRE_HOURS)
    return jwt.encode(
        {"sub": email, "exp": expire, "type": "verify"},
        settings.JWT_SECRET_KEY,
        algorithm=ALGORITHM,
    )


def decode_token(token: str, is_refresh: bool = False) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        key = settings.JWT_REFRESH_SECRET_KEY if is_refresh else settings.JWT_SECRET_KEY
        return jwt.decode(token, key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def token_claims_for(user: User) -> dict:
    return {
        "sub": user.email,
        "user_id": user.id,
        "role": user.role.value,
        "institution_id": user.institution_id,
    }


# ================= AUTH DEPENDENCIES =================


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "success": False,
            "error": "Unauthorized",
            "message": "Invalid or expired token",
            "code": ErrorCode.AUTH_INVALID
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_token_user(token: str, db: AsyncSession) -> Optional[User]:
    """Return the user an access token belongs to, or None."""
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None

    email = payload.get("sub")
    if not email:
        return None

    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


def ensure_can_sign_in(user: User) -> None:
    """Suspended and blocked accounts are locked out; super admins never are."""
    if not user.can_sign_in:
        logger.warning(f"Blocked request from user {user.id} with status {user.status}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "success": False,
                "error": "Forbidden",
                "message": SUSPENDED_MESSAGE,
                "code": ErrorCode.ACCOUNT_SUSPENDED
            }
        )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT access token.
    Returns 401 if token is invalid or expired, 403 if the account is suspended.
    """
    user = await resolve_token_user(token, db)
    if user is None:
        raise _credentials_exception()

    ensure_can_sign_in(user)
    return user


# ================= ROLE CHECKS =================


def require_roles(*allowed_roles: UserRole):
    """
    Dependency factory: require one of the given roles.
    Usage: current_user: User = Depends(require_roles(UserRole.super_admin))
    """
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                f"Access denied: User {current_user.id} with role {current_user.role} "
                f"attempted to access resource requiring {[r.value for r in allowed_roles]}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "success": False,
                    "error": "Forbidden",
                    "message": f"This action requires one of: {[r.value for r in allowed_roles]}",
                    "code": ErrorCode.PERMISSION_DENIED,
                    "current_role": current_user.role.value
                }
            )
        return current_user
    return dependency


require_super_admin = require_roles(UserRole.super_admin)
require_admin = require_roles(UserRole.super_admin, UserRole.institution_admin)
require_student = require_roles(UserRole.student)


def ensure_institution_scope(user: User, institution_id: Optional[int]) -> None:
    """
    Super admins may act on any institution; institution admins only on their own.
    """
    if user.role == UserRole.super_admin:
        return
    if user.role == UserRole.institution_admin and institution_id is not None \
            and user.institution_id == institution_id:
        return

    logger.warning(
        f"Institution mismatch: User {user.id} from institution {user.institution_id} "
        f"attempted to act on institution {institution_id}"
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "success": False,
            "error": "Forbidden",
            "message": "You can only manage your own institution",
            "code": ErrorCode.SCOPE_VIOLATION
        }
    )
