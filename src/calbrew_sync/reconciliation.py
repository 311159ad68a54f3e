"""Propagation of edits and deletions to every materialized occurrence."""

import logging
from typing import Optional
from uuid import UUID

from .calendar_binding import CalendarBindingResolver
from .database import DatabaseManager
from .errors import AppError, ErrorCode, not_found_error
from .materializer import build_patch_payload
from .models import DeleteResult, RecurringEvent, UpdateResult

logger = logging.getLogger(__name__)


class ReconciliationOperations:
    """Update and delete operations spanning all occurrences of an event.

    Remote calls are issued one occurrence at a time; a failing occurrence is
    counted and skipped, never aborting its siblings.
    """

    def __init__(self, db_manager: DatabaseManager, resolver: CalendarBindingResolver):
        self.db_manager = db_manager
        self.resolver = resolver
        self.logger = logger.getChild('reconciliation')

    async def update_event(
        self,
        event_id: UUID,
        owner_id: str,
        access_token: str,
        title: str,
        description: Optional[str] = None,
    ) -> UpdateResult:
        """Store new display fields and patch them onto every occurrence.

        Raises:
            AppError: ``NOT_FOUND`` for an unknown event, binding errors when
                the event has occurrences but no calendar can be resolved; the
                stored event is left untouched in both cases
        """
        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                raise not_found_error()
            occurrences = [
                (occurrence.hebrew_year, occurrence.google_event_id)
                for occurrence in self.db_manager.get_event_occurrences(session, row.id)
            ]

        # Credentials are checked before anything is written
        bound = await self.resolver.bind(owner_id, access_token) if occurrences else None

        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                raise not_found_error()
            self.db_manager.update_event_details(session, row, title=title, description=description)
            event = RecurringEvent.from_db(row)

        result = UpdateResult(event_id=event.id)
        if bound is None:
            return result

        for hebrew_year, google_event_id in occurrences:
            payload = build_patch_payload(event, hebrew_year)
            # Each occurrence may re-resolve the calendar once
            bound.healed = False
            try:
                await self.resolver.call_with_rebind(
                    bound,
                    lambda calendar_id: bound.service.patch_event(calendar_id, google_event_id, payload),
                    f"Update occurrence {hebrew_year} of event {event.id}",
                )
            except AppError as e:
                self.logger.warning(f"Failed to update Google event {google_event_id}: {e.message}")
                result.failed.append(google_event_id)
                continue
            result.updated += 1

        result.calendar_id = bound.calendar_id
        self.logger.info(
            f"Updated {result.updated}/{len(occurrences)} occurrence(s) of event {event.id}"
        )
        return result

    async def delete_event(self, event_id: UUID, owner_id: str, access_token: str) -> DeleteResult:
        """Delete an event everywhere, best-effort on the remote side.

        Local rows are always removed once the event is known to exist;
        remote events that could not be deleted are logged and counted.

        Raises:
            AppError: ``NOT_FOUND`` for an unknown event, ``AUTH_ERROR`` when
                the calendar rejects the credential
        """
        with self.db_manager.get_session() as session:
            row = self.db_manager.get_event(session, event_id, owner_id)
            if row is None:
                raise not_found_error()
            occurrences = [
                (occurrence.hebrew_year, occurrence.google_event_id)
                for occurrence in self.db_manager.get_event_occurrences(session, row.id)
            ]

        result = DeleteResult(event_id=event_id)
        if not occurrences:
            self._delete_local(event_id, result)
            return result

        calendar_id = self.resolver.get_cached_calendar_id(owner_id)
        if not calendar_id:
            result.warning = "No calendar is bound to this user; removed local records only"
            self._delete_local(event_id, result)
            return result

        service = self.resolver.service_for(access_token)
        try:
            exists = await self.resolver.verify_exists(access_token, calendar_id, service=service)
        except AppError as e:
            if e.code == ErrorCode.AUTH_ERROR:
                raise
            self.logger.warning(f"Could not verify calendar {calendar_id}, deleting anyway: {e.message}")
            exists = True

        if not exists:
            self.logger.warning(
                f"Calendar {calendar_id} no longer exists; deleting event {event_id} locally only"
            )
            result.warning = "Calendar no longer exists; removed local records only"
            self._delete_local(event_id, result)
            return result

        for hebrew_year, google_event_id in occurrences:
            try:
                await self.resolver.executor.execute(
                    lambda: service.delete_event(calendar_id, google_event_id),
                    f"Delete occurrence {hebrew_year} of event {event_id}",
                )
            except AppError as e:
                self.logger.warning(f"Failed to delete Google event {google_event_id}: {e.message}")
                result.remote_failed += 1
                continue
            result.remote_deleted += 1

        if result.remote_failed:
            result.warning = f"{result.remote_failed} calendar event(s) could not be removed"
        self._delete_local(event_id, result)
        return result

    def _delete_local(self, event_id: UUID, result: DeleteResult) -> None:
        with self.db_manager.get_session() as session:
            result.local_occurrences_deleted = self.db_manager.delete_event_occurrences(session, event_id)
            self.db_manager.delete_event(session, event_id)
        self.logger.info(
            f"Deleted event {event_id} and {result.local_occurrences_deleted} local occurrence(s)"
        )
