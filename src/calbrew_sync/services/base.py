"""Base calendar service interface with async support."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from ..models import CalendarInfo
from ..config import Settings

logger = logging.getLogger(__name__)


class CalendarServiceError(Exception):
    """Base exception for calendar service errors.

    Carries the HTTP status reported by the service (None for failures that
    never produced a response) and the service's reason string, if any.
    """

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class AuthenticationError(CalendarServiceError):
    """Missing, expired or insufficient credentials."""
    pass


class RateLimitError(CalendarServiceError):
    """Rate limiting or quota errors."""
    pass


class ResourceNotFoundError(CalendarServiceError):
    """The addressed calendar or event does not exist (any more)."""
    pass


class CalendarNotFoundError(ResourceNotFoundError):
    """Calendar not found errors."""
    pass


class EventNotFoundError(ResourceNotFoundError):
    """Event not found errors."""
    pass


class InvalidRequestError(CalendarServiceError):
    """The service rejected the request payload."""
    pass


class ConflictError(CalendarServiceError):
    """The service reported a conflicting resource."""
    pass


class TransientServiceError(CalendarServiceError):
    """Server-side or network failure expected to clear on its own."""
    pass


class BaseCalendarService(ABC):
    """Abstract calendar service bound to one account's access token."""

    def __init__(self, settings: Settings, access_token: str):
        """Initialize calendar service.

        Args:
            settings: Application settings
            access_token: OAuth access token of the account to act for
        """
        if not access_token:
            raise AuthenticationError("Access token is required", status=401)
        self.settings = settings
        self.access_token = access_token
        self.logger = logger.getChild(type(self).__name__)

    @abstractmethod
    async def list_calendars(self) -> List[CalendarInfo]:
        """Get the calendars of the account.

        Raises:
            CalendarServiceError: If calendars cannot be retrieved
        """
        pass

    @abstractmethod
    async def create_calendar(self, name: str, description: Optional[str] = None) -> str:
        """Create a secondary calendar.

        Returns:
            ID of the created calendar
        """
        pass

    @abstractmethod
    async def get_calendar(self, calendar_id: str) -> CalendarInfo:
        """Get calendar metadata.

        Raises:
            CalendarNotFoundError: If the calendar does not exist
        """
        pass

    @abstractmethod
    async def insert_event(self, calendar_id: str, payload: Dict[str, Any]) -> str:
        """Insert an event.

        Args:
            calendar_id: Calendar ID
            payload: Event resource body

        Returns:
            ID assigned to the event by the service
        """
        pass

    @abstractmethod
    async def patch_event(self, calendar_id: str, event_id: str, payload: Dict[str, Any]) -> None:
        """Patch selected fields of an event.

        Raises:
            EventNotFoundError: If event not found
        """
        pass

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event.

        Raises:
            EventNotFoundError: If event not found
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the service."""
        return None
