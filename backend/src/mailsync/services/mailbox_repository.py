"""Persistence for mailbox connections and records.

``MailboxRepository`` is the contract the sync engine depends on.
``SqlAlchemyMailboxRepository`` implements it over the async session factory,
opening a short session per operation so the foreground sync and background
cursor establishment can share one repository safely.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import get_async_session_local
from ..core.logging import get_logger
from ..models.base import utc_now
from ..models.mailbox_connection import MailboxConnection, SyncStatus
from ..models.mailbox_record import SYNCED_FIELDS, MailboxRecord

logger = get_logger(__name__)

# Rows per INSERT statement; keeps bind parameter counts well under driver limits
UPSERT_CHUNK_SIZE = 500


class MailboxRepository(Protocol):
    async def get_connection(self, user_id: str) -> MailboxConnection | None: ...

    async def create_connection(self, user_id: str, **fields: Any) -> MailboxConnection: ...

    async def update_connection(self, user_id: str, fields: dict[str, Any]) -> MailboxConnection | None: ...

    async def exists_batch(self, user_id: str, message_ids: Sequence[str]) -> set[str]: ...

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int: ...

    async def patch_one(self, user_id: str, message_id: str, patch: dict[str, Any]) -> bool: ...

    async def delete_records(self, user_id: str) -> int: ...

    async def list_records(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MailboxRecord]: ...

    async def count_records(self, user_id: str) -> int: ...


def build_upsert_statement(rows: list[dict[str, Any]], dialect_name: str = "postgresql") -> Any:
    """INSERT ... ON CONFLICT (user_id, message_id) DO UPDATE for the synced columns.

    ``enrichment_status`` is only written on insert; a conflict never resets it.
    """
    insert_fn = sqlite.insert if dialect_name == "sqlite" else postgresql.insert
    stmt = insert_fn(MailboxRecord).values(rows)
    set_ = {column: getattr(stmt.excluded, column) for column in SYNCED_FIELDS}
    set_["updated_at"] = stmt.excluded.updated_at
    return stmt.on_conflict_do_update(index_elements=["user_id", "message_id"], set_=set_)


def _with_row_defaults(row: dict[str, Any]) -> dict[str, Any]:
    now = utc_now()
    prepared = dict(row)
    prepared.setdefault("id", str(uuid.uuid4()))
    prepared.setdefault("created_at", now)
    prepared["updated_at"] = now
    return prepared


class SqlAlchemyMailboxRepository:
    """Async SQLAlchemy implementation of ``MailboxRepository``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_async_session_local()
        return self._session_factory

    async def get_connection(self, user_id: str) -> MailboxConnection | None:
        async with self.session_factory() as session:
            result = await session.execute(select(MailboxConnection).where(MailboxConnection.user_id == user_id))
            return result.scalar_one_or_none()

    async def create_connection(self, user_id: str, **fields: Any) -> MailboxConnection:
        conn = MailboxConnection(
            user_id=user_id,
            status=fields.pop("status", SyncStatus.UNINITIALIZED.value),
            total_records_synced=fields.pop("total_records_synced", 0),
            last_sync_record_count=fields.pop("last_sync_record_count", 0),
            **fields,
        )
        async with self.session_factory() as session:
            session.add(conn)
            await session.commit()
        logger.info("Created mailbox connection", extra={"user_id": user_id})
        return conn

    async def update_connection(self, user_id: str, fields: dict[str, Any]) -> MailboxConnection | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MailboxConnection).where(MailboxConnection.user_id == user_id).with_for_update()
            )
            conn = result.scalar_one_or_none()
            if conn is None:
                return None
            for key, value in fields.items():
                setattr(conn, key, value)
            await session.commit()
            return conn

    async def exists_batch(self, user_id: str, message_ids: Sequence[str]) -> set[str]:
        if not message_ids:
            return set()
        async with self.session_factory() as session:
            result = await session.execute(
                select(MailboxRecord.message_id).where(
                    MailboxRecord.user_id == user_id,
                    MailboxRecord.message_id.in_(list(message_ids)),
                )
            )
            return set(result.scalars().all())

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        prepared = [_with_row_defaults(row) for row in rows]
        async with self.session_factory() as session:
            dialect_name = session.bind.dialect.name if session.bind is not None else "postgresql"
            for start in range(0, len(prepared), UPSERT_CHUNK_SIZE):
                chunk = prepared[start : start + UPSERT_CHUNK_SIZE]
                await session.execute(build_upsert_statement(chunk, dialect_name))
            await session.commit()
        return len(prepared)

    async def patch_one(self, user_id: str, message_id: str, patch: dict[str, Any]) -> bool:
        if not patch:
            return False
        values = {key: value for key, value in patch.items() if key in SYNCED_FIELDS}
        if not values:
            return False
        values["updated_at"] = utc_now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(MailboxRecord)
                .where(MailboxRecord.user_id == user_id, MailboxRecord.message_id == message_id)
                .values(**values)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def delete_records(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(MailboxRecord).where(MailboxRecord.user_id == user_id))
            await session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} mailbox records", extra={"user_id": user_id})
        return deleted

    async def list_records(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MailboxRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MailboxRecord)
                .where(MailboxRecord.user_id == user_id)
                .order_by(MailboxRecord.received_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def count_records(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(MailboxRecord).where(MailboxRecord.user_id == user_id)
            )
            return int(result.scalar_one())
