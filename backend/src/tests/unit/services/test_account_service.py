"""Tests for linking, disconnecting, browsing and read-state updates."""

import asyncio

import pytest
from conftest import DELTA_START_URL, make_message, utc

from mailsync.core.exceptions import (
    ConnectionDisconnectedError,
    ConnectionNotFoundError,
    MailboxAuthorizationError,
    SyncFailedError,
    ValidationError,
)
from mailsync.mailbox.client import MailboxPage
from mailsync.mailbox.exceptions import MailboxTransientError, MailboxUnauthorized
from mailsync.models.mailbox_connection import SyncStatus
from mailsync.services.account_service import MailboxAccountService
from mailsync.services.record_transform import build_insert

USER = "user-1"
TOKEN = "token"


@pytest.fixture
def account_service(sync_service) -> MailboxAccountService:
    return MailboxAccountService(sync_service)


async def link_with_records(account_service, client, count: int = 3):
    client.recent = [make_message(f"m{i}", receivedDateTime=f"2024-05-0{i + 1}T10:00:00Z") for i in range(count)]
    client.script_page(DELTA_START_URL, MailboxPage(cursor="cursor-1"))
    result = await account_service.link_account(USER, TOKEN, account_address="ann@example.com")
    await account_service.sync_service.wait_for_background()
    return result


class TestLinkAccount:
    @pytest.mark.asyncio
    async def test_new_account_runs_initial_sync(self, account_service, client, repository):
        conn, outcome = await link_with_records(account_service, client)

        assert outcome is not None
        assert outcome.is_initial_sync is True
        assert outcome.new_records == 3
        assert conn.account_address == "ann@example.com"
        assert conn.connected_at is not None
        assert conn.sync_status == SyncStatus.CURSOR_PENDING
        assert (await repository.get_connection(USER)).sync_status == SyncStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_link_without_credential_skips_sync(self, account_service, client, repository):
        conn, outcome = await account_service.link_account(USER, None, display_name="Ann")

        assert outcome is None
        assert conn.sync_status == SyncStatus.ACTIVE
        assert conn.display_name == "Ann"
        assert client.recent_calls == []

    @pytest.mark.asyncio
    async def test_relink_after_disconnect_keeps_counters(self, account_service, client, repository):
        await link_with_records(account_service, client)
        await account_service.disconnect(USER, purge=False)

        conn, outcome = await account_service.link_account(USER, None)

        assert outcome is None
        assert conn.sync_status == SyncStatus.ACTIVE
        assert conn.sync_cursor is None
        assert conn.total_records_synced == 3

    @pytest.mark.asyncio
    async def test_relink_active_account_only_updates_details(self, account_service, repository):
        repository.seed_connection(USER, sync_cursor="cursor-1")

        conn, _ = await account_service.link_account(USER, None, display_name="New name")

        assert conn.sync_status == SyncStatus.ACTIVE
        assert conn.sync_cursor == "cursor-1"
        assert conn.display_name == "New name"

    @pytest.mark.asyncio
    async def test_failed_initial_sync_propagates(self, account_service, client, repository):
        client.recent = MailboxTransientError(503, "messages")

        with pytest.raises(SyncFailedError):
            await account_service.link_account(USER, TOKEN)

        assert (await repository.get_connection(USER)).sync_status == SyncStatus.ACTIVE


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_purges_records(self, account_service, client, repository):
        await link_with_records(account_service, client)

        conn, deleted = await account_service.disconnect(USER)

        assert deleted == 3
        assert conn.sync_status == SyncStatus.DISCONNECTED
        assert conn.sync_cursor is None
        assert repository.user_records(USER) == []

    @pytest.mark.asyncio
    async def test_keep_records(self, account_service, client, repository):
        await link_with_records(account_service, client)

        _, deleted = await account_service.disconnect(USER, purge=False)

        assert deleted == 0
        assert len(repository.user_records(USER)) == 3

    @pytest.mark.asyncio
    async def test_unknown_user(self, account_service):
        with pytest.raises(ConnectionNotFoundError):
            await account_service.disconnect(USER)

    @pytest.mark.asyncio
    async def test_disconnect_during_sync_is_not_undone(self, account_service, sync_service, client, repository):
        repository.seed_connection(USER, status=SyncStatus.CURSOR_PENDING, last_sync_at=utc(2024, 5, 1))
        await repository.upsert_many([build_insert(make_message("old"), USER)])
        client.recent = [make_message("old"), make_message("new")]
        client.recent_gate = asyncio.Event()
        client.script_page(DELTA_START_URL, MailboxPage(cursor="cursor-1"))

        running = asyncio.create_task(sync_service.sync(USER, TOKEN))
        while not client.recent_calls:
            await asyncio.sleep(0)
        _, deleted = await account_service.disconnect(USER, purge=True)
        client.recent_gate.set()

        with pytest.raises(ConnectionDisconnectedError):
            await running
        await sync_service.wait_for_background()

        assert deleted == 1
        conn = await repository.get_connection(USER)
        assert conn.sync_status == SyncStatus.DISCONNECTED
        assert conn.sync_cursor is None
        assert repository.user_records(USER) == []
        assert not sync_service.is_establishing(USER)
        assert client.page_calls == []


class TestListRecords:
    @pytest.mark.asyncio
    async def test_newest_first_with_total(self, account_service, client):
        await link_with_records(account_service, client, count=5)

        records, total = await account_service.list_records(USER, limit=2, offset=1)

        assert total == 5
        assert [r.message_id for r in records] == ["m3", "m2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("limit", "offset"), [(0, 0), (201, 0), (10, -1)])
    async def test_rejects_bad_paging(self, account_service, repository, limit, offset):
        repository.seed_connection(USER)
        with pytest.raises(ValidationError):
            await account_service.list_records(USER, limit=limit, offset=offset)


class TestSetReadState:
    @pytest.mark.asyncio
    async def test_mirrors_accepted_changes(self, account_service, client, repository):
        await link_with_records(account_service, client)
        client.read_state_result = (["m0"], ["m1"])

        updated, failed = await account_service.set_read_state(USER, TOKEN, ["m0", "m1", "m0", ""], True)

        assert client.read_state_calls == [(["m0", "m1"], True)]
        assert updated == ["m0"]
        assert failed == ["m1"]
        assert repository.record(USER, "m0")["is_read"] is True
        assert repository.record(USER, "m1")["is_read"] is False

    @pytest.mark.asyncio
    async def test_provider_failure_reports_all_failed(self, account_service, client, repository):
        await link_with_records(account_service, client)
        client.read_state_result = MailboxTransientError(503, "messages/m0")

        updated, failed = await account_service.set_read_state(USER, TOKEN, ["m0"], True)

        assert updated == []
        assert failed == ["m0"]
        assert repository.record(USER, "m0")["is_read"] is False

    @pytest.mark.asyncio
    async def test_unauthorized(self, account_service, repository, client):
        repository.seed_connection(USER)
        client.read_state_result = MailboxUnauthorized(401, "messages/m0")

        with pytest.raises(MailboxAuthorizationError):
            await account_service.set_read_state(USER, TOKEN, ["m0"], False)

    @pytest.mark.asyncio
    async def test_requires_ids(self, account_service, repository):
        repository.seed_connection(USER)
        with pytest.raises(ValidationError):
            await account_service.set_read_state(USER, TOKEN, [""], True)
