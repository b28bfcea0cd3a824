"""
aptivo/security/service_role.py
Authorisation for privileged route handlers (user creation, content mapping).

A caller is privileged when it either presents the server-side service key
in ``X-Service-Role-Key`` or carries an admin access token. When no key is
configured and no admin token is presented, the handler cannot act at all
and answers 500 "Server Configuration Error".
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.config import settings
from aptivo.database import get_db
from aptivo.errors import ErrorCode, InternalError, UnauthorizedError, ForbiddenError
from aptivo.orm.user import User, UserRole
from aptivo.security.rbac import (
    oauth2_scheme_optional, resolve_token_user, ensure_can_sign_in, ensure_institution_scope
)

logger = logging.getLogger(__name__)


@dataclass
class PrivilegedCaller:
    """Who is performing a privileged write: the service itself or an admin user"""
    user: Optional[User] = None

    @property
    def is_service(self) -> bool:
        return self.user is None

    @property
    def is_super_admin(self) -> bool:
        return self.is_service or self.user.role == UserRole.super_admin

    @property
    def actor_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    def ensure_institution(self, institution_id: Optional[int]) -> None:
        if self.is_service:
            return
        ensure_institution_scope(self.user, institution_id)


def _configuration_error() -> InternalError:
    logger.error("SERVICE_ROLE_KEY is not configured")
    return InternalError(
        message="Service role key is not configured on the server",
        error="Server Configuration Error",
        code=ErrorCode.CONFIGURATION_ERROR,
    )


def service_key_matches(presented: str) -> bool:
    expected = settings.SERVICE_ROLE_KEY
    if not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def privileged_caller(*allowed_roles: UserRole):
    """
    Dependency factory for service-role handlers.
    ``allowed_roles`` are the admin roles that may call the handler with a token.
    """
    async def dependency(
        x_service_role_key: Optional[str] = Header(None),
        token: Optional[str] = Depends(oauth2_scheme_optional),
        db: AsyncSession = Depends(get_db),
    ) -> PrivilegedCaller:
        if x_service_role_key is not None:
            if not settings.SERVICE_ROLE_KEY:
                raise _configuration_error()
            if not service_key_matches(x_service_role_key):
                logger.warning("Rejected request with invalid service role key")
                raise UnauthorizedError("Invalid service role key", code=ErrorCode.SERVICE_KEY_INVALID)
            return PrivilegedCaller()

        if token:
            user = await resolve_token_user(token, db)
            if user is None:
                raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)
            ensure_can_sign_in(user)
            if user.role not in allowed_roles:
                logger.warning(f"User {user.id} with role {user.role} attempted a privileged write")
                raise ForbiddenError(
                    f"This action requires one of: {[r.value for r in allowed_roles]}",
                    code=ErrorCode.PERMISSION_DENIED,
                )
            return PrivilegedCaller(user=user)

        if not settings.SERVICE_ROLE_KEY:
            raise _configuration_error()
        raise UnauthorizedError()

    return dependency
