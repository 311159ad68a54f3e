"""Materialization of yearly occurrences as all-day Google Calendar events."""

import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, Optional

from .calendar_binding import BoundCalendar, CalendarBindingResolver
from .config import Settings
from .errors import AppError
from .hebrew_dates import DateConverter, to_gregorian
from .models import MaterializationResult, OccurrenceRecord, RecurringEvent, event_payload_summary

logger = logging.getLogger(__name__)


def anniversary_title(title: str, anchor_year: int, year: int) -> str:
    """Display title for the occurrence in ``year``.

    The anniversary count is prefixed as ``(N) Title`` from the first
    anniversary on; the anchor year itself carries the bare title.
    """
    count = year - anchor_year
    if count > 0:
        return f"({count}) {title}"
    return title


def build_event_payload(
    event: RecurringEvent,
    year: int,
    occurrence_date: date,
    property_key: str = 'calbrew_event_id',
) -> Dict[str, Any]:
    """All-day event body for one occurrence of ``event``."""
    return {
        'summary': anniversary_title(event.title, event.hebrew_year, year),
        'description': event.description or '',
        'start': {'date': occurrence_date.isoformat()},
        'end': {'date': (occurrence_date + timedelta(days=1)).isoformat()},
        'extendedProperties': {
            'private': {property_key: str(event.id)},
        },
    }


def build_patch_payload(event: RecurringEvent, year: int) -> Dict[str, Any]:
    """Display fields to patch onto an existing occurrence."""
    return {
        'summary': anniversary_title(event.title, event.hebrew_year, year),
        'description': event.description or '',
    }


class OccurrenceMaterializer:
    """Creates one remote event per requested Hebrew year.

    Years are processed sequentially; each failure is recorded against its
    year and the batch continues. Persisting the returned records is left to
    the caller.
    """

    def __init__(
        self,
        settings: Settings,
        resolver: CalendarBindingResolver,
        converter: Optional[DateConverter] = None,
    ):
        self.settings = settings
        self.resolver = resolver
        self.converter = converter or to_gregorian
        self.logger = logger.getChild('materializer')

    def occurrence_date(self, event: RecurringEvent, year: int) -> date:
        return self.converter(event.hebrew_day, event.hebrew_month, year)

    async def materialize(
        self,
        event: RecurringEvent,
        years: Iterable[int],
        bound: BoundCalendar,
    ) -> MaterializationResult:
        """Create the occurrences of ``event`` for ``years``.

        Args:
            event: Event whose anniversaries are materialized
            years: Hebrew years without an occurrence yet
            bound: Calendar binding; re-resolved at most once if the
                calendar turns out to be gone

        Returns:
            Created records and the years that failed
        """
        result = MaterializationResult()
        years = sorted(set(years))
        if not years:
            return result

        self.logger.info(
            f"Materializing {len(years)} occurrence(s) of event {event.id} "
            f"({years[0]}..{years[-1]}) into calendar {bound.calendar_id}"
        )

        for year in years:
            try:
                occurrence_date = self.occurrence_date(event, year)
            except ValueError as e:
                self.logger.error(f"Cannot convert {event.anchor} to year {year}: {e}")
                result.failed_years.append(year)
                result.errors[year] = f"Date conversion failed: {e}"
                continue

            payload = build_event_payload(
                event, year, occurrence_date, self.settings.extended_property_key
            )

            try:
                google_event_id = await self.resolver.call_with_rebind(
                    bound,
                    lambda calendar_id: bound.service.insert_event(calendar_id, payload),
                    f"Create occurrence {year} of event {event.id}",
                )
            except AppError as e:
                self.logger.warning(f"Year {year} of event {event.id} failed: {e.message}")
                result.failed_years.append(year)
                result.errors[year] = e.message
                continue

            self.logger.debug(f"Created {event_payload_summary(payload)} as {google_event_id}")
            result.created.append(OccurrenceRecord(
                hebrew_year=year,
                gregorian_date=occurrence_date,
                google_event_id=google_event_id,
            ))

        self.logger.info(
            f"Event {event.id}: created {len(result.created)} occurrence(s), "
            f"{len(result.failed_years)} failed"
        )
        return result
