"""Application boundary: validation, ownership checks and response envelopes."""

import functools
import logging
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from .calendar_binding import CalendarBindingResolver
from .config import Settings
from .database import DatabaseManager
from .errors import AppError, auth_error, conflict_error, not_found_error, sync_error, validation_error
from .materializer import OccurrenceMaterializer
from .models import CreateEventRequest, RecurringEvent, UpdateEventRequest
from .reconciliation import ReconciliationOperations
from .responses import ApiResponse, create_success_response, error_response_for
from .retry import RetryableCallExecutor
from .services import ServiceFactory, google_service_factory
from .year_progression import YearProgressionEngine

logger = logging.getLogger(__name__)


def enveloped(fallback_message: str) -> Callable:
    """Turn any exception raised by an operation into a failure envelope."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> ApiResponse:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                return error_response_for(e, fallback_message)
        return wrapper
    return decorator


def parse_event_id(event_id: Any) -> UUID:
    """Validate an event identifier before anything else touches it."""
    if isinstance(event_id, UUID):
        return event_id
    try:
        return UUID(str(event_id))
    except ValueError as e:
        raise validation_error("Invalid event ID", {"id": "Invalid event ID format"}) from e


def require_owner(owner_id: Optional[str]) -> str:
    if not owner_id:
        raise auth_error("Unauthorized")
    return owner_id


def require_token(access_token: Optional[str]) -> str:
    if not access_token:
        raise auth_error("Google Calendar access token not available")
    return access_token


def event_data(event: RecurringEvent, synced: Optional[bool] = None) -> Dict[str, Any]:
    data = event.model_dump(mode='json')
    if synced is not None:
        data['synced'] = synced
    return data


class EventService:
    """Every user-facing operation, returning success or failure envelopes.

    Caller identity and the Google access token are explicit arguments on
    each call; nothing is read from ambient request state.
    """

    def __init__(
        self,
        settings: Settings,
        db_manager: Optional[DatabaseManager] = None,
        service_factory: Optional[ServiceFactory] = None,
        executor: Optional[RetryableCallExecutor] = None,
        current_year_fn: Optional[Callable[[], int]] = None,
    ):
        """Wire up the sync components.

        Args:
            settings: Application settings
            db_manager: Store; built from settings when omitted
            service_factory: Calendar service per access token; Google by default
            executor: Retry layer; built from settings when omitted
            current_year_fn: Source of the current Hebrew year
        """
        self.settings = settings
        self.db_manager = db_manager or DatabaseManager(settings)
        self.executor = executor or RetryableCallExecutor.from_settings(settings)
        self.resolver = CalendarBindingResolver(
            settings,
            self.db_manager,
            self.executor,
            service_factory or google_service_factory(settings),
        )
        self.materializer = OccurrenceMaterializer(settings, self.resolver)
        self.progression = YearProgressionEngine(
            settings, self.db_manager, self.resolver, self.materializer, current_year_fn
        )
        self.reconciliation = ReconciliationOperations(self.db_manager, self.resolver)
        self.logger = logger.getChild('events')

    def _owned_event(self, event_id: UUID, owner_id: str) -> RecurringEvent:
        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                raise not_found_error()
            return RecurringEvent.from_db(row)

    # Events

    @enveloped("Failed to fetch events")
    async def list_events(self, owner_id: Optional[str]) -> ApiResponse:
        owner_id = require_owner(owner_id)
        with self.db_manager.get_session() as session:
            rows = self.db_manager.get_events_by_user(session, owner_id)
            events = [RecurringEvent.from_db(row) for row in rows]
            synced = self.db_manager.get_events_sync_status(session, [event.id for event in events])
        return create_success_response([event_data(event, synced[event.id]) for event in events])

    @enveloped("Failed to create event")
    async def create_event(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
        payload: Dict[str, Any],
    ) -> ApiResponse:
        """Store a new event and, unless opted out, materialize its window.

        A calendar failure after the event is stored leaves the event in
        place without occurrences; it can be synced explicitly later.
        """
        owner_id = require_owner(owner_id)
        request = CreateEventRequest(**payload)
        if request.sync_with_calendar:
            require_token(access_token)

        with self.db_manager.get_session() as session:
            row = self.db_manager.create_event(
                session,
                owner_id,
                request.title,
                request.hebrew_year,
                request.hebrew_month,
                request.hebrew_day,
                description=request.description,
                recurrence_rule=request.recurrence_rule.value,
            )
            event = RecurringEvent.from_db(row)
        self.logger.info(f"Created event {event.id} for user {owner_id}")

        if not request.sync_with_calendar:
            return create_success_response(
                {'event': event_data(event, False), 'sync': None},
                "Event created successfully",
            )

        try:
            result = await self.progression.sync_new_years(event.id, owner_id, access_token)
        except AppError as e:
            self.logger.error(f"Event {event.id} stored but calendar sync failed: {e.message}")
            return create_success_response(
                {'event': event_data(event, False), 'sync': None, 'sync_error': e.message},
                f"Event created, but calendar sync failed: {e.message}",
            )

        event = self._owned_event(event.id, owner_id)
        return create_success_response(
            {
                'event': event_data(event, bool(result.years_synced)),
                'sync': result.model_dump(mode='json'),
            },
            "Event created successfully",
        )

    @enveloped("Failed to update event")
    async def update_event(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
        event_id: Any,
        payload: Dict[str, Any],
    ) -> ApiResponse:
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)
        request = UpdateEventRequest(**payload)

        result = await self.reconciliation.update_event(
            event_id, owner_id, access_token, request.title, request.description
        )
        event = self._owned_event(event_id, owner_id)

        message = "Event updated successfully"
        if result.failed:
            message = f"Event updated; {len(result.failed)} calendar occurrence(s) could not be updated"
        return create_success_response(
            {
                'event': event_data(event),
                'updated_occurrences': result.updated,
                'failed_occurrences': result.failed,
            },
            message,
        )

    @enveloped("Failed to delete event")
    async def delete_event(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
        event_id: Any,
    ) -> ApiResponse:
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)

        result = await self.reconciliation.delete_event(event_id, owner_id, access_token)
        return create_success_response(
            result.model_dump(mode='json'),
            result.warning or "Event deleted successfully",
        )

    @enveloped("Failed to sync event")
    async def sync_event(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
        event_id: Any,
    ) -> ApiResponse:
        """Materialize the window of an event created without calendar sync."""
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)
        access_token = require_token(access_token)

        self._owned_event(event_id, owner_id)
        with self.db_manager.get_session() as session:
            if self.db_manager.is_event_synced(session, event_id):
                raise conflict_error("Event is already synced with Google Calendar")

        result = await self.progression.sync_new_years(event_id, owner_id, access_token)
        total_years = len(result.window) if result.window else 0
        if total_years and not result.years_synced:
            raise sync_error(
                "Failed to sync event with Google Calendar",
                {'failed_years': ', '.join(str(year) for year in result.failed_years)},
            )

        return create_success_response(
            {
                'synced_occurrences': len(result.years_synced),
                'total_years': total_years,
                'failed_years': result.failed_years,
            },
            "Event synced with Google Calendar successfully",
        )

    @enveloped("Failed to get sync status")
    async def get_sync_status(self, owner_id: Optional[str], event_id: Any) -> ApiResponse:
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)

        self._owned_event(event_id, owner_id)
        with self.db_manager.get_session() as session:
            synced = self.db_manager.is_event_synced(session, event_id)
        return create_success_response({'synced': synced})

    # Year progression

    @enveloped("Failed to get year progression summary")
    async def get_year_progression_summary(self, owner_id: Optional[str]) -> ApiResponse:
        owner_id = require_owner(owner_id)
        summary = self.progression.get_summary(owner_id)
        return create_success_response(summary.model_dump(mode='json'))

    @enveloped("Failed to process year progression")
    async def process_year_progression(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
    ) -> ApiResponse:
        owner_id = require_owner(owner_id)
        access_token = require_token(access_token)

        result = await self.progression.process_user_year_progression(owner_id, access_token)
        if result.events_needing_update == 0:
            message = "All events are up to date"
        else:
            message = f"Updated {result.events_updated} of {result.events_needing_update} event(s)"
        return create_success_response(result.model_dump(mode='json'), message)

    @enveloped("Failed to get event year progression")
    async def get_event_progression(self, owner_id: Optional[str], event_id: Any) -> ApiResponse:
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)

        status = self.progression.check_progression(event_id, owner_id)
        if status is None:
            raise not_found_error()
        return create_success_response(status.model_dump(mode='json'))

    @enveloped("Failed to sync event year progression")
    async def sync_event_years(
        self,
        owner_id: Optional[str],
        access_token: Optional[str],
        event_id: Any,
    ) -> ApiResponse:
        owner_id = require_owner(owner_id)
        event_id = parse_event_id(event_id)
        access_token = require_token(access_token)

        result = await self.progression.sync_new_years(event_id, owner_id, access_token)
        if result.failed_years and not result.years_synced:
            raise sync_error(
                "Failed to sync event years",
                {'failed_years': ', '.join(str(year) for year in result.failed_years)},
            )

        message = f"Synced {len(result.years_synced)} new year(s)"
        if not result.years_synced:
            message = "Event is up to date"
        return create_success_response(result.model_dump(mode='json'), message)
