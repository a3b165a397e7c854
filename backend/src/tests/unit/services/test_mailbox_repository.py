"""Tests for the SQLAlchemy repository: statement shape and a round trip on SQLite."""

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from mailsync.models import Base, EnrichmentStatus, SyncStatus
from mailsync.services.mailbox_repository import (
    SqlAlchemyMailboxRepository,
    _with_row_defaults,
    build_upsert_statement,
)

ROW = {
    "user_id": "u1",
    "message_id": "m1",
    "subject": "Hello",
    "from_name": "Ann",
    "from_address": "ann@example.com",
    "received_at": datetime(2024, 5, 1, tzinfo=UTC),
    "conversation_id": "c1",
    "is_read": False,
    "has_attachments": False,
    "importance": "normal",
    "body_preview": "hi",
    "enrichment_status": "pending",
}


def _sql(dialect) -> str:
    stmt = build_upsert_statement([_with_row_defaults(ROW)], dialect.name)
    return str(stmt.compile(dialect=dialect))


class TestUpsertStatement:
    def test_conflicts_on_user_and_message(self):
        sql = _sql(postgresql.dialect())
        assert "ON CONFLICT (user_id, message_id) DO UPDATE" in sql

    def test_updates_synced_columns(self):
        sql = _sql(postgresql.dialect())
        update_clause = sql.split("DO UPDATE SET", 1)[1]
        for column in ("subject", "is_read", "importance", "received_at", "updated_at"):
            assert f"{column} = excluded.{column}" in update_clause

    def test_never_overwrites_enrichment_status(self):
        update_clause = _sql(postgresql.dialect()).split("DO UPDATE SET", 1)[1]
        assert "enrichment_status" not in update_clause
        assert "created_at" not in update_clause

    def test_sqlite_dialect(self):
        assert "ON CONFLICT (user_id, message_id) DO UPDATE" in _sql(sqlite.dialect())


class TestRowDefaults:
    def test_fills_identity_and_timestamps(self):
        row = _with_row_defaults(ROW)
        assert row["id"]
        assert row["created_at"].tzinfo is not None
        assert row["updated_at"] == row["created_at"]
        assert "id" not in ROW


def record_row(message_id: str, day: int, **overrides) -> dict:
    row = dict(ROW, message_id=message_id, received_at=datetime(2024, 5, day, tzinfo=UTC))
    row.update(overrides)
    return row


@pytest_asyncio.fixture
async def sqlite_repository(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailsync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlAlchemyMailboxRepository(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


class TestSqliteRoundTrip:
    @pytest.mark.asyncio
    async def test_connection_create_and_update(self, sqlite_repository):
        created = await sqlite_repository.create_connection("u1", account_address="ann@example.com")
        assert created.sync_status == SyncStatus.UNINITIALIZED
        assert created.total_records_synced == 0

        updated = await sqlite_repository.update_connection(
            "u1", {"status": SyncStatus.ACTIVE.value, "sync_cursor": "cursor-1", "total_records_synced": 4}
        )
        assert updated.sync_cursor == "cursor-1"

        loaded = await sqlite_repository.get_connection("u1")
        assert loaded.sync_status == SyncStatus.ACTIVE
        assert loaded.sync_cursor == "cursor-1"
        assert loaded.total_records_synced == 4
        assert loaded.account_address == "ann@example.com"

    @pytest.mark.asyncio
    async def test_update_unknown_connection(self, sqlite_repository):
        assert await sqlite_repository.update_connection("nobody", {"status": "active"}) is None
        assert await sqlite_repository.get_connection("nobody") is None

    @pytest.mark.asyncio
    async def test_exists_batch_scoped_to_user(self, sqlite_repository):
        await sqlite_repository.upsert_many(
            [record_row("m1", 1), record_row("m2", 2), record_row("m3", 3, user_id="u2")]
        )

        assert await sqlite_repository.exists_batch("u1", ["m1", "m2", "m3", "m9"]) == {"m1", "m2"}
        assert await sqlite_repository.exists_batch("u2", ["m1", "m3"]) == {"m3"}
        assert await sqlite_repository.exists_batch("u1", []) == set()

    @pytest.mark.asyncio
    async def test_upsert_conflict_keeps_enrichment_status(self, sqlite_repository):
        await sqlite_repository.upsert_many([record_row("m1", 1)])
        await sqlite_repository.upsert_many(
            [record_row("m1", 1, subject="Edited", is_read=True, enrichment_status=EnrichmentStatus.ENRICHED.value)]
        )

        (record,) = await sqlite_repository.list_records("u1")
        assert record.subject == "Edited"
        assert record.is_read is True
        assert record.enrichment_status == EnrichmentStatus.PENDING.value
        assert await sqlite_repository.count_records("u1") == 1

    @pytest.mark.asyncio
    async def test_patch_one_reports_rowcount(self, sqlite_repository):
        await sqlite_repository.upsert_many([record_row("m1", 1)])

        assert await sqlite_repository.patch_one("u1", "m1", {"is_read": True}) is True
        assert await sqlite_repository.patch_one("u1", "missing", {"is_read": True}) is False
        assert await sqlite_repository.patch_one("u2", "m1", {"is_read": True}) is False

        (record,) = await sqlite_repository.list_records("u1")
        assert record.is_read is True

    @pytest.mark.asyncio
    async def test_patch_one_ignores_unsynced_columns(self, sqlite_repository):
        await sqlite_repository.upsert_many([record_row("m1", 1)])

        changed = await sqlite_repository.patch_one(
            "u1", "m1", {"enrichment_status": EnrichmentStatus.ENRICHED.value, "user_id": "u2"}
        )
        assert changed is False

        mixed = await sqlite_repository.patch_one(
            "u1", "m1", {"subject": "New", "enrichment_status": EnrichmentStatus.ENRICHED.value}
        )
        assert mixed is True
        (record,) = await sqlite_repository.list_records("u1")
        assert record.subject == "New"
        assert record.user_id == "u1"
        assert record.enrichment_status == EnrichmentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_list_count_and_delete(self, sqlite_repository):
        await sqlite_repository.upsert_many(
            [record_row("m1", 1), record_row("m3", 3), record_row("m2", 2), record_row("x", 4, user_id="u2")]
        )

        page = await sqlite_repository.list_records("u1", limit=2)
        assert [r.message_id for r in page] == ["m3", "m2"]
        rest = await sqlite_repository.list_records("u1", limit=2, offset=2)
        assert [r.message_id for r in rest] == ["m1"]
        assert await sqlite_repository.count_records("u1") == 3

        assert await sqlite_repository.delete_records("u1") == 3
        assert await sqlite_repository.count_records("u1") == 0
        assert await sqlite_repository.count_records("u2") == 1
