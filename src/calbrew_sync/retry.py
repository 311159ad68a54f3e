"""Retry and failure classification for calendar service calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from .config import Settings
from .errors import AppError, ErrorCode
from .services.base import (
    CalendarServiceError, AuthenticationError, RateLimitError, ResourceNotFoundError,
    InvalidRequestError, ConflictError, TransientServiceError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

NETWORK_ERRORS = (ConnectionError, TimeoutError, asyncio.TimeoutError)


def is_retryable(error: BaseException) -> bool:
    """Rate limits, quota, server and network failures are worth retrying.

    Not-found is excluded: the caller re-resolves the calendar binding instead.
    """
    if isinstance(error, (RateLimitError, TransientServiceError)):
        return True
    return isinstance(error, NETWORK_ERRORS)


def classify_error(error: BaseException) -> ErrorCode:
    """Error code for a failure that escaped the retry loop."""
    if isinstance(error, AppError):
        return error.code
    if isinstance(error, AuthenticationError):
        return ErrorCode.AUTH_ERROR
    if isinstance(error, ResourceNotFoundError):
        return ErrorCode.NOT_FOUND
    if isinstance(error, InvalidRequestError):
        return ErrorCode.VALIDATION_ERROR
    if isinstance(error, ConflictError):
        return ErrorCode.CONFLICT
    if isinstance(error, (CalendarServiceError,) + NETWORK_ERRORS):
        return ErrorCode.CALENDAR_ERROR
    return ErrorCode.INTERNAL_ERROR


class RetryableCallExecutor:
    """Runs single calendar service calls with bounded exponential backoff.

    The executor is stateless between calls; every failure that survives the
    retry policy is re-raised as an ``AppError`` whose context carries the
    operation label, the service status and the number of attempts made.
    """

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 1.5,
        max_delay: float = 15.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.logger = logger.getChild('executor')

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> 'RetryableCallExecutor':
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            **kwargs,
        )

    def _retrying(self, context_label: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            self.logger.warning(
                f"{context_label}: attempt {retry_state.attempt_number}/{self.max_attempts} failed "
                f"({type(error).__name__}: {error}), retrying in {delay:.1f}s"
            )

        kwargs = dict(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0, max=self.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )
        if self._sleep is not None:
            kwargs['sleep'] = self._sleep
        return AsyncRetrying(**kwargs)

    async def execute(self, operation: Callable[[], Awaitable[T]], context_label: str) -> T:
        """Run ``operation`` under the retry policy.

        Args:
            operation: Zero-argument coroutine function issuing one service call
            context_label: Human-readable description used in logs and errors

        Returns:
            Whatever ``operation`` returns

        Raises:
            AppError: Once the call failed for good
        """
        retrying = self._retrying(context_label)
        try:
            async for attempt in retrying:
                with attempt:
                    return await operation()
        except AppError:
            raise
        except Exception as e:
            attempts = retrying.statistics.get('attempt_number', 1)
            code = classify_error(e)
            if code == ErrorCode.NOT_FOUND:
                self.logger.info(f"{context_label}: not found ({e})")
            else:
                self.logger.error(
                    f"{context_label}: failed after {attempts} attempt(s): {type(e).__name__}: {e}"
                )
            context = {'operation': context_label, 'attempts': attempts}
            status = getattr(e, 'status', None)
            if status is not None:
                context['status'] = status
            raise AppError(
                f"{context_label} failed: {e}",
                code,
                context=context,
                retryable=is_retryable(e),
            ) from e
