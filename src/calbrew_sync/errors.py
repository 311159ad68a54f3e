"""Application error taxonomy."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error kinds surfaced to callers."""

    AUTH_ERROR = "AUTH_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    CALENDAR_ERROR = "CALENDAR_ERROR"
    SYNC_ERROR = "SYNC_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_BY_CODE = {
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
}


def status_for_code(code: ErrorCode) -> int:
    """HTTP status for an error code; anything unmapped is a 500."""
    return _STATUS_BY_CODE.get(ErrorCode(code), 500)


class AppError(Exception):
    """Typed application error carrying a code and free-form context."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        context: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.context = context or {}
        self.retryable = retryable

    @property
    def status_code(self) -> int:
        return status_for_code(self.code)

    @property
    def is_not_found(self) -> bool:
        return self.code == ErrorCode.NOT_FOUND

    def to_response(self):
        """Convert to the failure envelope."""
        from .responses import create_error_response

        return create_error_response(self.message, self.code, self.context or None)

    def __repr__(self) -> str:
        return f"AppError(code={self.code.value!r}, message={self.message!r})"


def validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(message, ErrorCode.VALIDATION_ERROR, details)


def not_found_error(message: str = "Event not found") -> AppError:
    return AppError(message, ErrorCode.NOT_FOUND)


def conflict_error(message: str) -> AppError:
    return AppError(message, ErrorCode.CONFLICT)


def auth_error(message: str = "Unauthorized") -> AppError:
    return AppError(message, ErrorCode.AUTH_ERROR)


def calendar_error(message: str, original_error: Optional[BaseException] = None) -> AppError:
    context = {'originalError': str(original_error)} if original_error else None
    return AppError(message, ErrorCode.CALENDAR_ERROR, context)


def sync_error(message: str, context: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(message, ErrorCode.SYNC_ERROR, context)


def internal_error(message: str, original_error: Optional[BaseException] = None) -> AppError:
    context = {'originalError': str(original_error)} if original_error else None
    return AppError(message, ErrorCode.INTERNAL_ERROR, context)
