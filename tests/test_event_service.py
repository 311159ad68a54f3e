"""Tests for the boundary facade."""

from uuid import uuid4

import pytest

from calbrew_sync.errors import ErrorCode
from calbrew_sync.services.base import AuthenticationError, InvalidRequestError


def event_payload(**overrides):
    payload = {
        'title': 'Yahrzeit',
        'description': 'Light a candle',
        'hebrew_year': 5780,
        'hebrew_month': 7,
        'hebrew_day': 10,
    }
    payload.update(overrides)
    return payload


async def create(event_service, **overrides):
    response = await event_service.create_event('user-1', 'token', event_payload(**overrides))
    assert response.success, response
    return response.data['event']['id']


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_materializes_window(self, event_service, account):
        response = await event_service.create_event('user-1', 'token', event_payload())

        assert response.success
        assert response.data['event']['synced'] is True
        assert response.data['event']['last_synced_hebrew_year'] == 5794
        assert len(response.data['sync']['years_synced']) == 15
        assert account.call_count('create_calendar') == 1
        assert len(account.all_events()) == 15

    @pytest.mark.asyncio
    async def test_create_without_sync(self, event_service, account):
        response = await event_service.create_event(
            'user-1', None, event_payload(sync_with_calendar=False)
        )

        assert response.success
        assert response.data['event']['synced'] is False
        assert account.calls == []

    @pytest.mark.asyncio
    async def test_validation_fails_before_any_call(self, event_service, account):
        response = await event_service.create_event(
            'user-1', 'token', event_payload(title='', hebrew_day=31)
        )

        assert not response.success
        assert response.code == ErrorCode.VALIDATION_ERROR
        assert {d.field for d in response.details} >= {'title', 'hebrew_day'}
        assert account.calls == []

    @pytest.mark.asyncio
    async def test_missing_owner(self, event_service):
        response = await event_service.create_event(None, 'token', event_payload())
        assert response.code == ErrorCode.AUTH_ERROR
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_token_when_syncing(self, event_service, account):
        response = await event_service.create_event('user-1', None, event_payload())
        assert response.code == ErrorCode.AUTH_ERROR
        assert account.calls == []

    @pytest.mark.asyncio
    async def test_calendar_failure_keeps_event(self, event_service, account):
        account.fail('list_calendars', AuthenticationError("expired", status=401))

        response = await event_service.create_event('user-1', 'token', event_payload())

        assert response.success
        assert response.data['sync'] is None
        assert 'sync_error' in response.data
        listed = await event_service.list_events('user-1')
        assert [event['synced'] for event in listed.data] == [False]


class TestSync:

    @pytest.mark.asyncio
    async def test_sync_unsynced_event(self, event_service):
        event_id = await create(event_service, sync_with_calendar=False)

        response = await event_service.sync_event('user-1', 'token', event_id)

        assert response.success
        assert response.data == {'synced_occurrences': 15, 'total_years': 15, 'failed_years': []}
        status = await event_service.get_sync_status('user-1', event_id)
        assert status.data == {'synced': True}

    @pytest.mark.asyncio
    async def test_already_synced_is_conflict(self, event_service):
        event_id = await create(event_service)

        response = await event_service.sync_event('user-1', 'token', event_id)

        assert response.code == ErrorCode.CONFLICT
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_nothing_created_is_sync_error(self, event_service, account):
        event_id = await create(event_service, sync_with_calendar=False)
        account.insert_failure = lambda payload: InvalidRequestError("rejected", status=400)

        response = await event_service.sync_event('user-1', 'token', event_id)

        assert response.code == ErrorCode.SYNC_ERROR
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_invalid_id(self, event_service, account):
        response = await event_service.sync_event('user-1', 'token', 'not-a-uuid')

        assert response.code == ErrorCode.VALIDATION_ERROR
        assert response.details[0].field == 'id'
        assert account.calls == []

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, event_service):
        event_id = await create(event_service, sync_with_calendar=False)

        response = await event_service.sync_event('user-2', 'token', event_id)

        assert response.code == ErrorCode.NOT_FOUND


class TestUpdateAndDelete:

    @pytest.mark.asyncio
    async def test_update(self, event_service, account):
        event_id = await create(event_service)

        response = await event_service.update_event(
            'user-1', 'token', event_id, {'title': 'Memorial', 'description': None}
        )

        assert response.success
        assert response.data['updated_occurrences'] == 15
        assert response.data['event']['title'] == 'Memorial'

    @pytest.mark.asyncio
    async def test_update_without_token_keeps_stored_title(self, event_service, account):
        event_id = await create(event_service)

        response = await event_service.update_event('user-1', None, event_id, {'title': 'Changed'})

        assert response.code == ErrorCode.AUTH_ERROR
        listed = await event_service.list_events('user-1')
        assert listed.data[0]['title'] == 'Yahrzeit'
        assert account.call_count('patch_event') == 0

    @pytest.mark.asyncio
    async def test_update_validation(self, event_service):
        event_id = await create(event_service)

        response = await event_service.update_event('user-1', 'token', event_id, {'title': '   '})

        assert response.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_delete(self, event_service, account):
        event_id = await create(event_service)

        response = await event_service.delete_event('user-1', 'token', event_id)

        assert response.success
        assert response.data['remote_deleted'] == 15
        assert account.all_events() == []
        listed = await event_service.list_events('user-1')
        assert listed.data == []

    @pytest.mark.asyncio
    async def test_delete_unknown(self, event_service):
        response = await event_service.delete_event('user-1', 'token', str(uuid4()))
        assert response.code == ErrorCode.NOT_FOUND


class TestProgression:

    @pytest.mark.asyncio
    async def test_progression_round_trip(self, event_service, clock):
        clock.year = 5765
        event_id = await create(event_service, hebrew_year=5770)

        summary = await event_service.get_year_progression_summary('user-1')
        assert summary.data['events_needing_update'] == 0

        clock.year = 5783
        status = await event_service.get_event_progression('user-1', event_id)
        assert status.data['needs_update'] is True
        assert status.data['years_needing_sync'] == list(range(5781, 5794))

        processed = await event_service.process_year_progression('user-1', 'token')
        assert processed.data['events_updated'] == 1

        synced = await event_service.sync_event_years('user-1', 'token', event_id)
        assert synced.success
        assert synced.data['years_synced'] == []
        assert synced.message == "Event is up to date"

    @pytest.mark.asyncio
    async def test_progression_requires_token(self, event_service):
        response = await event_service.process_year_progression('user-1', None)
        assert response.code == ErrorCode.AUTH_ERROR

    @pytest.mark.asyncio
    async def test_unknown_event_progression(self, event_service):
        response = await event_service.get_event_progression('user-1', str(uuid4()))
        assert response.code == ErrorCode.NOT_FOUND
