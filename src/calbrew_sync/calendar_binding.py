"""Resolution and self-healing of the per-user managed calendar."""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .database import DatabaseManager
from .errors import AppError, ErrorCode, auth_error, calendar_error
from .models import CalendarResolution
from .retry import RetryableCallExecutor
from .services import AuthenticationError, BaseCalendarService, ServiceFactory

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BoundCalendar:
    """A user's calendar binding for the duration of one operation.

    ``calendar_id`` is mutable: after a successful re-resolution every later
    call in the same operation goes to the new calendar.
    """

    def __init__(self, owner_id: str, access_token: str, calendar_id: str, service: BaseCalendarService):
        self.owner_id = owner_id
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.service = service
        self.healed = False

    def __repr__(self) -> str:
        return f"BoundCalendar(owner_id={self.owner_id!r}, calendar_id={self.calendar_id!r})"


class CalendarBindingResolver:
    """Finds, creates and verifies the single managed calendar of a user."""

    def __init__(
        self,
        settings: Settings,
        db_manager: DatabaseManager,
        executor: RetryableCallExecutor,
        service_factory: ServiceFactory,
    ):
        """Initialize the resolver.

        Args:
            settings: Application settings (calendar display name and description)
            db_manager: Store holding the per-user binding
            executor: Retry layer for calendar service calls
            service_factory: Builds a calendar service for an access token
        """
        self.settings = settings
        self.db_manager = db_manager
        self.executor = executor
        self.service_factory = service_factory
        self.logger = logger.getChild('resolver')

    def service_for(self, access_token: str) -> BaseCalendarService:
        """Calendar service acting with ``access_token``.

        Raises:
            AppError: ``AUTH_ERROR`` when the token is missing
        """
        try:
            return self.service_factory(access_token)
        except AuthenticationError as e:
            raise auth_error(f"Calendar access denied: {e}") from e

    def get_cached_calendar_id(self, owner_id: str) -> Optional[str]:
        """Calendar ID stored for the user, if any."""
        with self.db_manager.get_session() as session:
            return self.db_manager.get_calendar_id(session, owner_id)

    async def resolve(
        self,
        owner_id: str,
        access_token: str,
        known_id: Optional[str] = None,
        service: Optional[BaseCalendarService] = None,
    ) -> CalendarResolution:
        """Resolve the user's calendar ID.

        A ``known_id`` is trusted as-is. Without one the account's calendars
        are searched for the managed calendar name, and the calendar is
        created when absent. A newly found or created ID is stored against
        the user.

        Raises:
            AppError: ``AUTH_ERROR`` when the credential is rejected,
                ``CALENDAR_ERROR`` when the calendar can be neither found
                nor created
        """
        if known_id:
            return CalendarResolution(calendar_id=known_id, exists=True, created=False)

        service = service or self.service_for(access_token)
        name = self.settings.calendar_name

        try:
            calendars = await self.executor.execute(
                lambda: service.list_calendars(), "List Google calendars"
            )
        except AppError as e:
            if e.code == ErrorCode.AUTH_ERROR:
                raise
            raise calendar_error(f"Failed to look up calendar '{name}': {e.message}", e)

        match = next((calendar for calendar in calendars if calendar.name == name), None)
        created = False
        if match is not None:
            calendar_id = match.id
            self.logger.info(f"Found existing calendar '{name}' for user {owner_id}: {calendar_id}")
        else:
            try:
                calendar_id = await self.executor.execute(
                    lambda: service.create_calendar(name, self.settings.calendar_description),
                    f"Create calendar '{name}'",
                )
            except AppError as e:
                if e.code == ErrorCode.AUTH_ERROR:
                    raise
                raise calendar_error(f"Failed to create calendar: {e.message}", e)
            created = True
            self.logger.info(f"Created calendar '{name}' for user {owner_id}: {calendar_id}")

        self._store_binding(owner_id, calendar_id)
        return CalendarResolution(calendar_id=calendar_id, exists=not created, created=created)

    def _store_binding(self, owner_id: str, calendar_id: str) -> None:
        # A failed write only costs a lookup on the next request
        try:
            with self.db_manager.get_session() as session:
                if self.db_manager.get_calendar_id(session, owner_id) != calendar_id:
                    self.db_manager.set_calendar_id(session, owner_id, calendar_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to store calendar ID for user {owner_id}: {e}")

    async def bind(
        self,
        owner_id: str,
        access_token: str,
        known_id: Optional[str] = None,
        service: Optional[BaseCalendarService] = None,
    ) -> BoundCalendar:
        """Resolve the user's calendar and return an operation-scoped binding.

        The caller's ``known_id`` wins over the stored ID; either one skips
        the calendar lookup.
        """
        service = service or self.service_for(access_token)
        known_id = known_id or self.get_cached_calendar_id(owner_id)
        resolution = await self.resolve(owner_id, access_token, known_id=known_id, service=service)
        return BoundCalendar(owner_id, access_token, resolution.calendar_id, service)

    async def heal(self, bound: BoundCalendar) -> str:
        """Re-resolve a binding whose calendar ID turned out to be stale."""
        stale_id = bound.calendar_id
        # One attempt per operation, successful or not
        bound.healed = True
        resolution = await self.resolve(bound.owner_id, bound.access_token, service=bound.service)
        bound.calendar_id = resolution.calendar_id
        self.logger.warning(
            f"Re-resolved calendar for user {bound.owner_id}: {stale_id} -> {bound.calendar_id}"
        )
        return bound.calendar_id

    async def verify_exists(
        self,
        access_token: str,
        calendar_id: str,
        service: Optional[BaseCalendarService] = None,
    ) -> bool:
        """Lightweight existence check for a calendar.

        Returns:
            False when the service reports the calendar as gone

        Raises:
            AppError: For any failure other than not-found
        """
        service = service or self.service_for(access_token)
        try:
            await self.executor.execute(
                lambda: service.get_calendar(calendar_id), f"Verify calendar {calendar_id}"
            )
        except AppError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def call_with_rebind(
        self,
        bound: BoundCalendar,
        operation: Callable[[str], Awaitable[T]],
        context_label: str,
    ) -> T:
        """Run ``operation(calendar_id)`` with one re-resolution on not-found.

        The binding is re-resolved at most once until ``bound.healed`` is
        cleared again; a not-found after that is returned to the caller
        unchanged.
        """
        try:
            return await self.executor.execute(lambda: operation(bound.calendar_id), context_label)
        except AppError as e:
            if not e.is_not_found or bound.healed:
                raise

        await self.heal(bound)
        return await self.executor.execute(
            lambda: operation(bound.calendar_id), f"{context_label} (after re-resolving calendar)"
        )
