"""Tests for calendar binding resolution."""

import pytest

from calbrew_sync.calendar_binding import CalendarBindingResolver
from calbrew_sync.errors import AppError, ErrorCode
from calbrew_sync.services.base import AuthenticationError, TransientServiceError


@pytest.fixture
def resolver(settings, db_manager, executor, account):
    return CalendarBindingResolver(settings, db_manager, executor, account.factory)


def stored_calendar_id(db_manager, owner_id):
    with db_manager.get_session() as session:
        return db_manager.get_calendar_id(session, owner_id)


class TestResolve:

    @pytest.mark.asyncio
    async def test_known_id_is_trusted(self, resolver, account):
        resolution = await resolver.resolve('user-1', 'token', known_id='cal-known')

        assert resolution.calendar_id == 'cal-known'
        assert not resolution.created
        assert account.calls == []

    @pytest.mark.asyncio
    async def test_finds_existing_calendar_by_name(self, resolver, account, db_manager):
        account.add_calendar('Personal')
        calbrew_id = account.add_calendar('Calbrew')

        resolution = await resolver.resolve('user-1', 'token')

        assert resolution.calendar_id == calbrew_id
        assert resolution.exists and not resolution.created
        assert account.call_count('create_calendar') == 0
        assert stored_calendar_id(db_manager, 'user-1') == calbrew_id

    @pytest.mark.asyncio
    async def test_creates_calendar_when_absent(self, resolver, account, db_manager):
        account.add_calendar('Personal')

        resolution = await resolver.resolve('user-1', 'token')

        assert resolution.created
        assert account.calendars[resolution.calendar_id].name == 'Calbrew'
        assert stored_calendar_id(db_manager, 'user-1') == resolution.calendar_id

    @pytest.mark.asyncio
    async def test_creation_failure_is_calendar_error(self, resolver, account):
        account.fail('create_calendar', *[TransientServiceError("backend error", status=500)] * 4)

        with pytest.raises(AppError) as exc_info:
            await resolver.resolve('user-1', 'token')

        assert exc_info.value.code == ErrorCode.CALENDAR_ERROR
        assert "Failed to create calendar" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rejected_token_is_auth_error(self, resolver, account):
        account.fail('list_calendars', AuthenticationError("invalid credentials", status=401))

        with pytest.raises(AppError) as exc_info:
            await resolver.resolve('user-1', 'token')
        assert exc_info.value.code == ErrorCode.AUTH_ERROR

    @pytest.mark.asyncio
    async def test_missing_token_is_auth_error(self, resolver):
        with pytest.raises(AppError) as exc_info:
            await resolver.resolve('user-1', '')
        assert exc_info.value.code == ErrorCode.AUTH_ERROR


class TestBindAndHeal:

    @pytest.mark.asyncio
    async def test_bind_uses_stored_id(self, resolver, account, db_manager):
        with db_manager.get_session() as session:
            db_manager.set_calendar_id(session, 'user-1', 'cal-stored')

        bound = await resolver.bind('user-1', 'token')

        assert bound.calendar_id == 'cal-stored'
        assert account.call_count('list_calendars') == 0

    @pytest.mark.asyncio
    async def test_heal_replaces_stale_binding(self, resolver, account, db_manager):
        with db_manager.get_session() as session:
            db_manager.set_calendar_id(session, 'user-1', 'cal-deleted')
        bound = await resolver.bind('user-1', 'token')

        new_id = await resolver.heal(bound)

        assert new_id != 'cal-deleted'
        assert bound.calendar_id == new_id
        assert bound.healed
        assert stored_calendar_id(db_manager, 'user-1') == new_id

    @pytest.mark.asyncio
    async def test_call_with_rebind_retries_once_after_not_found(self, resolver, account, db_manager):
        with db_manager.get_session() as session:
            db_manager.set_calendar_id(session, 'user-1', 'cal-deleted')
        bound = await resolver.bind('user-1', 'token')

        event_id = await resolver.call_with_rebind(
            bound,
            lambda calendar_id: bound.service.insert_event(calendar_id, {'summary': 'x'}),
            "Insert",
        )

        assert event_id in account.events[bound.calendar_id]
        assert account.call_count('insert_event') == 2
        assert account.call_count('list_calendars') == 1

    @pytest.mark.asyncio
    async def test_call_with_rebind_is_bounded(self, resolver, account):
        calendar_id = account.add_calendar('Calbrew')
        bound = await resolver.bind('user-1', 'token', known_id=calendar_id)
        await resolver.heal(bound)

        with pytest.raises(AppError) as exc_info:
            await resolver.call_with_rebind(
                bound,
                lambda cid: bound.service.patch_event(cid, 'missing-event', {}),
                "Patch",
            )

        assert exc_info.value.is_not_found
        assert account.call_count('patch_event') == 1


class TestVerifyExists:

    @pytest.mark.asyncio
    async def test_existing_calendar(self, resolver, account):
        calendar_id = account.add_calendar('Calbrew')
        assert await resolver.verify_exists('token', calendar_id)

    @pytest.mark.asyncio
    async def test_missing_calendar(self, resolver):
        assert not await resolver.verify_exists('token', 'cal-gone')

    @pytest.mark.asyncio
    async def test_other_failures_propagate(self, resolver, account):
        account.fail('get_calendar', AuthenticationError("expired", status=401))

        with pytest.raises(AppError) as exc_info:
            await resolver.verify_exists('token', 'cal-1')
        assert exc_info.value.code == ErrorCode.AUTH_ERROR
