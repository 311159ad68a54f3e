"""Shared fixtures: isolated settings, a SQLite store and an in-memory Google account."""

from typing import Any, Callable, Dict, List, Optional

import pytest
from pydantic_settings import SettingsConfigDict

from calbrew_sync.config import Settings
from calbrew_sync.database import DatabaseManager
from calbrew_sync.event_service import EventService
from calbrew_sync.models import CalendarInfo
from calbrew_sync.retry import RetryableCallExecutor
from calbrew_sync.services.base import (
    BaseCalendarService, CalendarNotFoundError, EventNotFoundError,
)


class TestSettings(Settings):
    """Test-specific settings that don't read from .env files."""
    model_config = SettingsConfigDict(
        env_file=None,  # Don't read from .env files
        case_sensitive=False,
        extra="ignore",
        secrets_dir=None  # Don't read from secrets directory
    )


def make_settings(tmp_path, **overrides):
    return TestSettings(
        data_dir=tmp_path,
        database_url=f'sqlite:///{tmp_path}/test.db',
        **overrides
    )


async def no_sleep(_seconds):
    return None


def fast_executor(**kwargs) -> RetryableCallExecutor:
    kwargs.setdefault('sleep', no_sleep)
    return RetryableCallExecutor(**kwargs)


class FakeClock:
    """Settable current Hebrew year."""

    def __init__(self, year: int):
        self.year = year

    def __call__(self) -> int:
        return self.year


class FakeGoogleAccount:
    """In-memory stand-in for one Google account's calendars and events.

    ``fail_next[op]`` holds exceptions raised by the next calls of ``op``;
    ``insert_failure`` may return an exception for a given insert payload.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.calendars: Dict[str, CalendarInfo] = {}
        self.events: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_next: Dict[str, List[Exception]] = {}
        self.insert_failure: Optional[Callable[[Dict[str, Any]], Optional[Exception]]] = None
        self.tokens: List[str] = []
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def add_calendar(self, name: str, calendar_id: Optional[str] = None) -> str:
        calendar_id = calendar_id or self._next_id('cal')
        self.calendars[calendar_id] = CalendarInfo(id=calendar_id, name=name)
        self.events.setdefault(calendar_id, {})
        return calendar_id

    def remove_calendar(self, calendar_id: str) -> None:
        self.calendars.pop(calendar_id, None)
        self.events.pop(calendar_id, None)

    def fail(self, op: str, *errors: Exception) -> None:
        self.fail_next.setdefault(op, []).extend(errors)

    def call_count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)

    def all_events(self) -> List[Dict[str, Any]]:
        return [event for events in self.events.values() for event in events.values()]

    def _enter(self, op: str, *args) -> None:
        self.calls.append((op,) + args)
        queued = self.fail_next.get(op)
        if queued:
            raise queued.pop(0)

    def _calendar_events(self, calendar_id: str) -> Dict[str, Dict[str, Any]]:
        if calendar_id not in self.calendars:
            raise CalendarNotFoundError(f"Calendar {calendar_id} not found", status=404)
        return self.events[calendar_id]

    def factory(self, access_token: str) -> BaseCalendarService:
        self.tokens.append(access_token)
        return FakeCalendarService(self, access_token)


class FakeCalendarService(BaseCalendarService):

    def __init__(self, account: FakeGoogleAccount, access_token: str):
        super().__init__(account.settings, access_token)
        self.account = account

    async def list_calendars(self) -> List[CalendarInfo]:
        self.account._enter('list_calendars')
        return list(self.account.calendars.values())

    async def create_calendar(self, name: str, description: Optional[str] = None) -> str:
        self.account._enter('create_calendar', name)
        return self.account.add_calendar(name)

    async def get_calendar(self, calendar_id: str) -> CalendarInfo:
        self.account._enter('get_calendar', calendar_id)
        if calendar_id not in self.account.calendars:
            raise CalendarNotFoundError(f"Calendar {calendar_id} not found", status=404)
        return self.account.calendars[calendar_id]

    async def insert_event(self, calendar_id: str, payload: Dict[str, Any]) -> str:
        self.account._enter('insert_event', calendar_id, payload)
        events = self.account._calendar_events(calendar_id)
        if self.account.insert_failure is not None:
            error = self.account.insert_failure(payload)
            if error is not None:
                raise error
        event_id = self.account._next_id('gevt')
        events[event_id] = dict(payload, id=event_id)
        return event_id

    async def patch_event(self, calendar_id: str, event_id: str, payload: Dict[str, Any]) -> None:
        self.account._enter('patch_event', calendar_id, event_id, payload)
        events = self.account._calendar_events(calendar_id)
        if event_id not in events:
            raise EventNotFoundError(f"Event {event_id} not found", status=404)
        events[event_id].update(payload)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.account._enter('delete_event', calendar_id, event_id)
        events = self.account._calendar_events(calendar_id)
        if event_id not in events:
            raise EventNotFoundError(f"Event {event_id} not found", status=404)
        del events[event_id]


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def db_manager(settings):
    manager = DatabaseManager(settings)
    manager.init_db()
    return manager


@pytest.fixture
def account(settings):
    return FakeGoogleAccount(settings)


@pytest.fixture
def executor():
    return fast_executor()


@pytest.fixture
def clock():
    return FakeClock(5784)


@pytest.fixture
def event_service(settings, db_manager, account, executor, clock):
    return EventService(
        settings,
        db_manager=db_manager,
        service_factory=account.factory,
        executor=executor,
        current_year_fn=clock,
    )
