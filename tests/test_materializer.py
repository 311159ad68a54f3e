"""Tests for occurrence materialization."""

from datetime import date
from uuid import uuid4

import pytest

from calbrew_sync.calendar_binding import CalendarBindingResolver
from calbrew_sync.materializer import OccurrenceMaterializer, anniversary_title, build_event_payload
from calbrew_sync.models import RecurringEvent
from calbrew_sync.services.base import InvalidRequestError, TransientServiceError


def fake_converter(day, month, year):
    # Year recoverable from the date: year - 3760
    return date(year - 3760, month, day)


def make_event(**kwargs):
    values = dict(
        id=uuid4(),
        user_id='user-1',
        title='Yahrzeit',
        description='Light a candle',
        hebrew_year=5770,
        hebrew_month=3,
        hebrew_day=10,
    )
    values.update(kwargs)
    return RecurringEvent(**values)


@pytest.fixture
def resolver(settings, db_manager, executor, account):
    return CalendarBindingResolver(settings, db_manager, executor, account.factory)


@pytest.fixture
def materializer(settings, resolver):
    return OccurrenceMaterializer(settings, resolver, converter=fake_converter)


def test_anniversary_title():
    assert anniversary_title("Yahrzeit", 5770, 5770) == "Yahrzeit"
    assert anniversary_title("Yahrzeit", 5770, 5771) == "(1) Yahrzeit"
    assert anniversary_title("Yahrzeit", 5770, 5795) == "(25) Yahrzeit"
    assert anniversary_title("Yahrzeit", 5770, 5765) == "Yahrzeit"


def test_event_payload_is_all_day_with_provenance():
    event = make_event()
    payload = build_event_payload(event, 5772, date(2012, 3, 10))

    assert payload == {
        'summary': '(2) Yahrzeit',
        'description': 'Light a candle',
        'start': {'date': '2012-03-10'},
        'end': {'date': '2012-03-11'},
        'extendedProperties': {'private': {'calbrew_event_id': str(event.id)}},
    }


@pytest.mark.asyncio
async def test_partial_failures_do_not_abort_batch(materializer, resolver, account):
    calendar_id = account.add_calendar('Calbrew')
    failing_years = {5778, 5783, 5790}

    def insert_failure(payload):
        year = int(payload['start']['date'][:4]) + 3760
        if year in failing_years:
            return InvalidRequestError(f"Rejected {year}", status=400)
        return None

    account.insert_failure = insert_failure
    bound = await resolver.bind('user-1', 'token', known_id=calendar_id)
    years = range(5775, 5796)

    result = await materializer.materialize(make_event(), years, bound)

    assert len(years) == 21
    assert len(result.created) == 18
    assert sorted(result.failed_years) == sorted(failing_years)
    assert set(result.errors) == failing_years
    assert not set(result.created_years) & failing_years
    assert len(account.events[calendar_id]) == 18


@pytest.mark.asyncio
async def test_transient_failures_are_retried(materializer, resolver, account):
    calendar_id = account.add_calendar('Calbrew')
    account.fail('insert_event', TransientServiceError("backend error", status=503))
    bound = await resolver.bind('user-1', 'token', known_id=calendar_id)

    result = await materializer.materialize(make_event(), [5770, 5771], bound)

    assert result.created_years == [5770, 5771]
    assert result.failed_years == []
    assert account.call_count('insert_event') == 3


@pytest.mark.asyncio
async def test_records_pair_dates_with_remote_ids(materializer, resolver, account):
    calendar_id = account.add_calendar('Calbrew')
    bound = await resolver.bind('user-1', 'token', known_id=calendar_id)

    result = await materializer.materialize(make_event(), {5771}, bound)

    record = result.created[0]
    assert record.hebrew_year == 5771
    assert record.gregorian_date == date(2011, 3, 10)
    assert account.events[calendar_id][record.google_event_id]['summary'] == '(1) Yahrzeit'


@pytest.mark.asyncio
async def test_deleted_calendar_is_recreated_once(materializer, resolver, account):
    stale_id = account.add_calendar('Calbrew')
    bound = await resolver.bind('user-1', 'token', known_id=stale_id)
    account.remove_calendar(stale_id)

    result = await materializer.materialize(make_event(), range(5770, 5775), bound)

    assert result.created_years == [5770, 5771, 5772, 5773, 5774]
    assert bound.calendar_id != stale_id
    assert len(account.events[bound.calendar_id]) == 5
    assert account.call_count('create_calendar') == 1


@pytest.mark.asyncio
async def test_empty_year_set_makes_no_calls(materializer, resolver, account):
    bound = await resolver.bind('user-1', 'token', known_id='cal-1')

    result = await materializer.materialize(make_event(), [], bound)

    assert result.attempted == 0
    assert account.calls == []
