"""Uniform success/failure envelopes returned at the application boundary."""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import AppError, ErrorCode, status_for_code

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    """Per-field error detail."""

    field: str
    message: str


class ApiSuccessResponse(BaseModel):
    """Success envelope."""

    success: bool = Field(True)
    data: Optional[Any] = None
    message: Optional[str] = None


class ApiErrorResponse(BaseModel):
    """Failure envelope."""

    success: bool = Field(False)
    error: str
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    details: Optional[List[ErrorDetail]] = None

    @property
    def status_code(self) -> int:
        return status_for_code(self.code)


ApiResponse = Union[ApiSuccessResponse, ApiErrorResponse]


def create_success_response(data: Any = None, message: Optional[str] = None) -> ApiSuccessResponse:
    return ApiSuccessResponse(data=data, message=message)


def create_error_response(
    error: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    details: Optional[Union[List[Dict[str, Any]], Dict[str, Any]]] = None,
) -> ApiErrorResponse:
    """Build a failure envelope.

    ``details`` may be a list of ``{field, message}`` dicts or a mapping, in
    which case every key becomes a field and its value the message.
    """
    detail_items = None
    if details:
        if isinstance(details, dict):
            detail_items = [
                ErrorDetail(field=str(key), message=str(value))
                for key, value in details.items()
            ]
        else:
            detail_items = [ErrorDetail(**item) for item in details]
    return ApiErrorResponse(error=error, code=code, details=detail_items)


def validation_details(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten a pydantic ValidationError into field/message pairs."""
    return [
        {
            'field': '.'.join(str(part) for part in err.get('loc', ())) or 'unknown',
            'message': err.get('msg', 'Invalid value'),
        }
        for err in exc.errors()
    ]


def error_response_for(exc: BaseException, fallback_message: str = "Internal error") -> ApiErrorResponse:
    """Translate any exception into a failure envelope."""
    if isinstance(exc, AppError):
        return exc.to_response()
    if isinstance(exc, ValidationError):
        return create_error_response(
            "Validation failed", ErrorCode.VALIDATION_ERROR, validation_details(exc)
        )
    logger.error(f"Unhandled error: {type(exc).__name__}: {exc}")
    return create_error_response(fallback_message, ErrorCode.INTERNAL_ERROR)
