"""Calendar service interfaces and implementations."""

from typing import Callable

from .base import (
    BaseCalendarService,
    CalendarServiceError,
    AuthenticationError,
    RateLimitError,
    ResourceNotFoundError,
    CalendarNotFoundError,
    EventNotFoundError,
    InvalidRequestError,
    ConflictError,
    TransientServiceError,
)
from .google import GoogleCalendarService
from ..config import Settings

# access token -> service acting for that account
ServiceFactory = Callable[[str], BaseCalendarService]


def google_service_factory(settings: Settings) -> ServiceFactory:
    """Factory building a GoogleCalendarService per access token."""
    def factory(access_token: str) -> BaseCalendarService:
        return GoogleCalendarService(settings, access_token)
    return factory


__all__ = [
    'BaseCalendarService',
    'CalendarServiceError',
    'AuthenticationError',
    'RateLimitError',
    'ResourceNotFoundError',
    'CalendarNotFoundError',
    'EventNotFoundError',
    'InvalidRequestError',
    'ConflictError',
    'TransientServiceError',
    'GoogleCalendarService',
    'ServiceFactory',
    'google_service_factory',
]
