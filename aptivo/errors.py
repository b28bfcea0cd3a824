"""
aptivo/errors.py
Centralized error handling.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODES:
- 400: Invalid input / malformed request / invalid state
- 401: Authentication missing, expired or wrong service key
- 403: Access forbidden (role / tenant scope / account status)
- 404: Resource does not exist
- 409: Conflict with existing data
- 422: Validation error (Pydantic)
- 429: Rate limit exceeded
- 500: Internal or configuration error, never caused by user input
"""

import uuid
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_FILE = "INVALID_FILE"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    AUTH_INVALID = "AUTH_INVALID"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    SERVICE_KEY_INVALID = "SERVICE_KEY_INVALID"

    FORBIDDEN = "FORBIDDEN"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    INSTITUTION_NOT_APPROVED = "INSTITUTION_NOT_APPROVED"
    ACCOUNT_PENDING = "ACCOUNT_PENDING"

    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INSTITUTION_NOT_FOUND = "INSTITUTION_NOT_FOUND"
    EXAM_NOT_FOUND = "EXAM_NOT_FOUND"
    ATTEMPT_NOT_FOUND = "ATTEMPT_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"

    CONFLICT = "CONFLICT"
    EMAIL_EXISTS = "EMAIL_EXISTS"

    INVALID_STATE = "INVALID_STATE"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    REATTEMPT_NOT_ALLOWED = "REATTEMPT_NOT_ALLOWED"
    EXAM_NOT_OPEN = "EXAM_NOT_OPEN"
    SECTION_LOCKED = "SECTION_LOCKED"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class UnauthorizedError(APIError):
    """401 Unauthorized - Authentication required"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - Clashes with existing data"""
    def __init__(self, message: str, code: str = ErrorCode.CONFLICT):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code
        )


class InvalidStateError(APIError):
    """400 Bad Request - Invalid state transition"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_STATE, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Invalid State",
            message=message,
            code=code,
            details=details
        )


class InternalError(APIError):
    """500 Internal Server Error - only for true internal failures"""
    def __init__(
        self,
        message: str = "An internal error occurred",
        log_id: Optional[str] = None,
        error: str = "Internal Error",
        code: str = ErrorCode.INTERNAL_ERROR,
    ):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error=error,
            message=message,
            code=code,
            details=details
        )


def new_log_id() -> str:
    return str(uuid.uuid4())[:8]


def get_error_summary() -> Dict[str, Any]:
    """Return summary of error handling system for documentation"""
    return {
        "service": "aptivo-api-errors",
        "response_structure": {
            "success": "boolean (always false for errors)",
            "error": "string (error type)",
            "message": "string (human-readable)",
            "code": "string (machine-readable)",
            "details": "object (optional)"
        },
        "error_codes": [
            attr for attr in dir(ErrorCode)
            if not attr.startswith('_')
        ]
    }
