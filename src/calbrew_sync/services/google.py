"""Google Calendar service implementation with async support."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .base import (
    BaseCalendarService, CalendarServiceError, AuthenticationError, RateLimitError,
    CalendarNotFoundError, EventNotFoundError, InvalidRequestError, ConflictError,
    TransientServiceError,
)
from ..models import CalendarInfo
from ..config import Settings

# 403 reasons that mean "slow down" rather than "forbidden"
QUOTA_REASONS = ('quotaExceeded', 'rateLimitExceeded', 'userRateLimitExceeded')


def _http_error_reason(error: HttpError) -> str:
    parts = [str(getattr(error, 'reason', '') or '')]
    details = getattr(error, 'error_details', None)
    if details:
        parts.append(str(details))
    try:
        parts.append(error.content.decode('utf-8', errors='replace'))
    except AttributeError:
        pass
    return ' '.join(part for part in parts if part)


def translate_http_error(
    error: HttpError,
    message: str,
    not_found: type = EventNotFoundError,
) -> CalendarServiceError:
    """Map a Google API HttpError onto the service exception hierarchy."""
    status = error.resp.status if error.resp is not None else None
    reason = _http_error_reason(error)
    detail = f"{message}: {error}"

    if status == 401:
        return AuthenticationError(detail, status=status, reason=reason)
    if status == 403:
        if any(quota in reason for quota in QUOTA_REASONS):
            return RateLimitError(detail, status=status, reason=reason)
        return AuthenticationError(detail, status=status, reason=reason)
    if status == 429:
        return RateLimitError(detail, status=status, reason=reason)
    if status in (404, 410):
        return not_found(detail, status=status, reason=reason)
    if status == 400:
        return InvalidRequestError(detail, status=status, reason=reason)
    if status == 409:
        return ConflictError(detail, status=status, reason=reason)
    if status is not None and status >= 500:
        return TransientServiceError(detail, status=status, reason=reason)
    return CalendarServiceError(detail, status=status, reason=reason)


class GoogleCalendarService(BaseCalendarService):
    """Google Calendar service acting with a caller-supplied access token."""

    def __init__(self, settings: Settings, access_token: str):
        """Initialize Google Calendar service.

        Args:
            settings: Application settings
            access_token: OAuth access token for the user's Google account
        """
        super().__init__(settings, access_token)
        self._service = None

    def _get_service(self):
        if self._service is None:
            creds = Credentials(
                token=self.access_token,
                client_id=self.settings.google_client_id,
                client_secret=self.settings.google_client_secret,
                scopes=self.settings.google_scopes,
            )
            self._service = build('calendar', 'v3', credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(
        self,
        request_factory: Callable[[Any], Any],
        message: str,
        not_found: type = EventNotFoundError,
    ) -> Any:
        """Run a synchronous API request in the default executor.

        Network failures surface as TransientServiceError, HTTP failures
        through ``translate_http_error``.
        """
        try:
            return await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: request_factory(self._get_service()).execute()
            )
        except HttpError as e:
            raise translate_http_error(e, message, not_found=not_found)
        except (ConnectionError, TimeoutError, OSError) as e:
            raise TransientServiceError(f"{message}: {type(e).__name__}: {e}")

    async def list_calendars(self) -> List[CalendarInfo]:
        """Get list of Google calendars."""
        calendars = []
        page_token = None

        while True:
            params: Dict[str, Any] = {}
            if page_token:
                params['pageToken'] = page_token

            calendar_list = await self._execute(
                lambda service: service.calendarList().list(**params),
                "Failed to list Google calendars",
                not_found=CalendarNotFoundError,
            )

            for cal_data in calendar_list.get('items', []):
                calendars.append(self._format_calendar(cal_data))

            page_token = calendar_list.get('nextPageToken')
            if not page_token:
                break

        return calendars

    async def create_calendar(self, name: str, description: Optional[str] = None) -> str:
        """Create a secondary Google calendar."""
        body = {'summary': name}
        if description:
            body['description'] = description

        created = await self._execute(
            lambda service: service.calendars().insert(body=body),
            f"Failed to create Google calendar '{name}'",
            not_found=CalendarNotFoundError,
        )
        calendar_id = created.get('id')
        if not calendar_id:
            raise CalendarServiceError(f"Google returned no ID for created calendar '{name}'")

        self.logger.info(f"Created Google calendar '{name}' ({calendar_id})")
        return calendar_id

    async def get_calendar(self, calendar_id: str) -> CalendarInfo:
        """Get Google calendar metadata (used as a lightweight existence check)."""
        calendar_data = await self._execute(
            lambda service: service.calendars().get(calendarId=calendar_id),
            f"Failed to get Google calendar {calendar_id}",
            not_found=CalendarNotFoundError,
        )
        return self._format_calendar(calendar_data)

    async def insert_event(self, calendar_id: str, payload: Dict[str, Any]) -> str:
        """Insert a Google Calendar event."""
        created_event = await self._execute(
            lambda service: service.events().insert(calendarId=calendar_id, body=payload),
            "Failed to create Google event",
        )
        event_id = created_event.get('id')
        if not event_id:
            raise CalendarServiceError("Google returned no ID for created event")
        return event_id

    async def patch_event(self, calendar_id: str, event_id: str, payload: Dict[str, Any]) -> None:
        """Patch a Google Calendar event."""
        await self._execute(
            lambda service: service.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body=payload
            ),
            f"Failed to update Google event {event_id}",
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete a Google Calendar event."""
        await self._execute(
            lambda service: service.events().delete(
                calendarId=calendar_id,
                eventId=event_id
            ),
            f"Failed to delete Google event {event_id}",
        )

    async def close(self) -> None:
        """Clean up resources."""
        if self._service is not None:
            self._service.close()
            self._service = None

    def _format_calendar(self, cal_data: Dict[str, Any]) -> CalendarInfo:
        return CalendarInfo(
            id=cal_data['id'],
            name=cal_data.get('summary', 'Unnamed Calendar'),
            description=cal_data.get('description'),
            timezone=cal_data.get('timeZone', 'UTC'),
            access_role=cal_data.get('accessRole'),
            is_primary=cal_data.get('primary', False),
        )
