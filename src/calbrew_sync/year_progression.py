"""Year progression: keeping each event's occurrence window filled as time advances."""

import asyncio
import logging
import weakref
from typing import Callable, List, Optional, Set
from uuid import UUID

from .calendar_binding import BoundCalendar, CalendarBindingResolver
from .config import Settings
from .database import DatabaseManager
from .errors import AppError, not_found_error
from .hebrew_dates import current_hebrew_year
from .materializer import OccurrenceMaterializer
from .models import (
    OccurrenceRecord, RecurringEvent, SyncNewYearsResult, SyncWindow, YearProgressionResult,
    YearProgressionStatus, YearProgressionSummary,
)
from .sync_window import calculate_sync_window

logger = logging.getLogger(__name__)


class YearProgressionEngine:
    """Detects and fills the years missing from each event's sync window.

    Existing occurrence rows decide which years are present; the event's
    ``last_synced_hebrew_year`` is only a high-water mark. Work on one event
    is serialized through a per-event lock, and the unique (event, year)
    constraint rejects duplicates that slip past it from another process.
    """

    def __init__(
        self,
        settings: Settings,
        db_manager: DatabaseManager,
        resolver: CalendarBindingResolver,
        materializer: OccurrenceMaterializer,
        current_year_fn: Optional[Callable[[], int]] = None,
    ):
        """Initialize the engine.

        Args:
            settings: Application settings (window sizes, timezone)
            db_manager: Event and occurrence store
            resolver: Calendar binding resolver
            materializer: Creates the remote occurrences
            current_year_fn: Source of the current Hebrew year; defaults to
                today's date in the configured timezone
        """
        self.settings = settings
        self.db_manager = db_manager
        self.resolver = resolver
        self.materializer = materializer
        self.current_year_fn = current_year_fn or (
            lambda: current_hebrew_year(tz=settings.tzinfo)
        )
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks = weakref.WeakValueDictionary()
        self.logger = logger.getChild('progression')

    def current_year(self) -> int:
        return self.current_year_fn()

    def window_for(self, anchor_year: int, current_year: Optional[int] = None) -> SyncWindow:
        """Policy window for an anchor year, using the configured buffers."""
        if current_year is None:
            current_year = self.current_year()
        return calculate_sync_window(
            anchor_year,
            current_year,
            past_years=self.settings.past_window_years,
            future_years=self.settings.future_window_years,
        )

    def _lock_for(self, event_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = self._locks[event_id] = asyncio.Lock()
        return lock

    def _build_status(
        self,
        event: RecurringEvent,
        existing_years: Set[int],
        current_year: int,
    ) -> YearProgressionStatus:
        window = self.window_for(event.hebrew_year, current_year)
        # An event never synced needs its whole window
        missing = [year for year in window.years() if year not in existing_years]

        return YearProgressionStatus(
            event_id=event.id,
            title=event.title,
            hebrew_year=event.hebrew_year,
            last_synced_year=event.last_synced_hebrew_year,
            current_year=current_year,
            window=window,
            years_needing_sync=missing,
            needs_update=bool(missing),
        )

    def _user_statuses(self, owner_id: str) -> List[YearProgressionStatus]:
        current_year = self.current_year()
        with self.db_manager.get_session() as session:
            rows = self.db_manager.get_events_by_user(session, owner_id)
            return [
                self._build_status(
                    RecurringEvent.from_db(row),
                    self.db_manager.get_occurrence_years(session, row.id),
                    current_year,
                )
                for row in rows
            ]

    def check_progression(self, event_id: UUID, owner_id: str) -> Optional[YearProgressionStatus]:
        """Progression status of one event.

        Returns:
            None when the event does not exist or belongs to someone else
        """
        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                return None
            existing_years = self.db_manager.get_occurrence_years(session, row.id)
            event = RecurringEvent.from_db(row)

        return self._build_status(event, existing_years, self.current_year())

    def check_user_progression(self, owner_id: str) -> List[YearProgressionStatus]:
        """Statuses of the user's events that have years to fill."""
        return [status for status in self._user_statuses(owner_id) if status.needs_update]

    def get_summary(self, owner_id: str) -> YearProgressionSummary:
        statuses = self._user_statuses(owner_id)
        needing = sum(1 for status in statuses if status.needs_update)
        return YearProgressionSummary(
            total_events=len(statuses),
            events_needing_update=needing,
            events_up_to_date=len(statuses) - needing,
        )

    async def sync_new_years(
        self,
        event_id: UUID,
        owner_id: str,
        access_token: str,
        calendar_id: Optional[str] = None,
        bound: Optional[BoundCalendar] = None,
    ) -> SyncNewYearsResult:
        """Materialize every window year the event has no occurrence for.

        Calling this again with nothing pending reports zero years synced.

        Args:
            event_id: Event to progress
            owner_id: Owner of the event
            access_token: Credential for the owner's calendar
            calendar_id: Known calendar ID, skips the lookup
            bound: Binding shared with other events of the same run

        Raises:
            AppError: ``NOT_FOUND`` for an unknown event, binding errors from
                the resolver
        """
        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                raise not_found_error()
            event = RecurringEvent.from_db(row)

        if bound is None:
            bound = await self.resolver.bind(owner_id, access_token, known_id=calendar_id)

        async with self._lock_for(event.id):
            window = self.window_for(event.hebrew_year)

            with self.db_manager.get_session() as session:
                existing_years = self.db_manager.get_occurrence_years(session, event.id)
            missing = [year for year in window.years() if year not in existing_years]

            synced: List[int] = []
            failed: List[int] = []
            if missing:
                result = await self.materializer.materialize(event, missing, bound)
                failed = list(result.failed_years)
                for record in result.created:
                    if await self._persist(event, record, bound):
                        synced.append(record.hebrew_year)
            else:
                self.logger.debug(f"Event {event.id} already covers {window.start}..{window.end}")

            with self.db_manager.get_session() as session:
                row = self.db_manager.get_event(session, event.id)
                if row is None:
                    # Deleted while the batch was running
                    raise not_found_error()
                last_synced = self.db_manager.advance_last_synced_year(session, row, window.end)

        if synced or failed:
            self.logger.info(
                f"Event {event.id}: synced {len(synced)} year(s), {len(failed)} failed, "
                f"high-water mark {last_synced}"
            )

        return SyncNewYearsResult(
            event_id=event.id,
            years_synced=synced,
            failed_years=failed,
            last_synced_year=last_synced,
            calendar_id=bound.calendar_id,
            window=window,
        )

    async def _persist(self, event: RecurringEvent, record: OccurrenceRecord, bound: BoundCalendar) -> bool:
        with self.db_manager.get_session() as session:
            stored = self.db_manager.create_event_occurrence(
                session,
                event.id,
                record.hebrew_year,
                record.gregorian_date,
                record.google_event_id,
            )
        if stored is not None:
            return True

        self.logger.warning(
            f"Event {event.id} already has an occurrence for {record.hebrew_year}; "
            f"removing duplicate remote event {record.google_event_id}"
        )
        try:
            await self.resolver.executor.execute(
                lambda: bound.service.delete_event(bound.calendar_id, record.google_event_id),
                f"Delete duplicate occurrence {record.hebrew_year} of event {event.id}",
            )
        except AppError as e:
            self.logger.error(f"Could not remove duplicate remote event {record.google_event_id}: {e.message}")
        return False

    async def process_user_year_progression(
        self,
        owner_id: str,
        access_token: str,
        calendar_id: Optional[str] = None,
    ) -> YearProgressionResult:
        """Progress every event of a user that has years to fill.

        Per-year failures only show up in the events' own results; an event
        counts as failed when it could not be synced at all.
        """
        statuses = self._user_statuses(owner_id)
        needing = [status for status in statuses if status.needs_update]
        result = YearProgressionResult(
            total_events=len(statuses),
            events_needing_update=len(needing),
        )
        if not needing:
            return result

        try:
            bound = await self.resolver.bind(owner_id, access_token, known_id=calendar_id)
        except AppError as e:
            self.logger.error(f"Cannot resolve calendar for user {owner_id}: {e.message}")
            result.events_failed = len(needing)
            result.errors.extend(f"{status.title}: {e.message}" for status in needing)
            return result

        for status in needing:
            try:
                await self.sync_new_years(status.event_id, owner_id, access_token, bound=bound)
            except AppError as e:
                self.logger.error(f"Year progression failed for event {status.event_id}: {e.message}")
                result.events_failed += 1
                result.errors.append(f"{status.title}: {e.message}")
                continue
            result.events_updated += 1
            result.updated_events.append(status)

        self.logger.info(
            f"Year progression for user {owner_id}: {result.events_updated}/{result.events_needing_update} "
            f"event(s) updated, {result.events_failed} failed"
        )
        return result
