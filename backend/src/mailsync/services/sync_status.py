"""Sync status state machine for mailbox connections.

All status writes go through ``SyncStatusService`` so that every change is
checked against ``ALLOWED_TRANSITIONS`` and the cursor/status invariants hold:
a stored cursor only ever sits on an ACTIVE connection (or an ERROR one that
kept its last good cursor), and CURSOR_PENDING never carries a cursor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..core.exceptions import ConnectionDisconnectedError, ConnectionNotFoundError, InvalidStatusTransitionError
from ..core.logging import get_logger
from ..models.base import utc_now
from ..models.mailbox_connection import MailboxConnection, SyncStatus

if TYPE_CHECKING:
    from .mailbox_repository import MailboxRepository

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.UNINITIALIZED: frozenset({SyncStatus.ACTIVE, SyncStatus.ERROR, SyncStatus.DISCONNECTED}),
    SyncStatus.ACTIVE: frozenset(
        {SyncStatus.ACTIVE, SyncStatus.CURSOR_PENDING, SyncStatus.ERROR, SyncStatus.DISCONNECTED}
    ),
    SyncStatus.CURSOR_PENDING: frozenset(
        {
            SyncStatus.ACTIVE,
            SyncStatus.CURSOR_PENDING,
            SyncStatus.CURSOR_UNAVAILABLE,
            SyncStatus.ERROR,
            SyncStatus.DISCONNECTED,
        }
    ),
    SyncStatus.CURSOR_UNAVAILABLE: frozenset(
        {SyncStatus.CURSOR_PENDING, SyncStatus.ERROR, SyncStatus.DISCONNECTED}
    ),
    SyncStatus.ERROR: frozenset(
        {SyncStatus.ACTIVE, SyncStatus.CURSOR_PENDING, SyncStatus.ERROR, SyncStatus.DISCONNECTED}
    ),
    # Leaving DISCONNECTED requires re-linking the account
    SyncStatus.DISCONNECTED: frozenset({SyncStatus.ACTIVE, SyncStatus.DISCONNECTED}),
}


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: SyncStatus, target: SyncStatus) -> None:
    """Raise ``InvalidStatusTransitionError`` if ``current -> target`` is not allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(current.value, target.value)


class SyncStatusService:
    """Persists status transitions and sync bookkeeping for a connection."""

    def __init__(self, repository: MailboxRepository) -> None:
        self.repository = repository

    async def _write(self, user_id: str, fields: dict[str, Any]) -> MailboxConnection:
        updated = await self.repository.update_connection(user_id, fields)
        if updated is None:
            raise ConnectionNotFoundError(user_id)
        return updated

    async def load_current(self, user_id: str) -> MailboxConnection:
        """Re-read the connection; a sync must not write to one disconnected while it ran.

        Raises:
            ConnectionNotFoundError: the row is gone.
            ConnectionDisconnectedError: the account was disconnected.
        """
        conn = await self.repository.get_connection(user_id)
        if conn is None:
            raise ConnectionNotFoundError(user_id)
        if conn.sync_status == SyncStatus.DISCONNECTED:
            logger.info("Connection was disconnected during sync; discarding result", extra={"user_id": user_id})
            raise ConnectionDisconnectedError(user_id)
        return conn

    async def record_sync_success(
        self,
        conn: MailboxConnection,
        status: SyncStatus,
        cursor: str | None,
        record_count: int,
        error: str | None = None,
    ) -> MailboxConnection:
        """Record a completed sync: new status/cursor, timestamps and cumulative counters.

        ``conn`` is the snapshot the sync started from. The transition is
        checked against the current row. A sync that produced no cursor keeps
        one that background establishment stored after the snapshot was taken.
        """
        current = await self.load_current(conn.user_id)
        if (
            cursor is None
            and current.sync_status == SyncStatus.ACTIVE
            and current.has_cursor
            and current.sync_cursor != conn.sync_cursor
        ):
            logger.info("Keeping cursor established during sync", extra={"user_id": conn.user_id})
            status, cursor, error = SyncStatus.ACTIVE, current.sync_cursor, None

        ensure_transition(current.sync_status, status)
        now = utc_now()
        fields: dict[str, Any] = {
            "status": status.value,
            "sync_cursor": cursor,
            "last_sync_at": now,
            "total_records_synced": (current.total_records_synced or 0) + record_count,
            "last_sync_record_count": record_count,
            "last_error": error,
        }
        if error:
            fields["last_error_at"] = now
        logger.info(
            f"Sync recorded: {current.sync_status.value} -> {status.value}",
            extra={"user_id": conn.user_id, "record_count": record_count, "has_cursor": cursor is not None},
        )
        return await self._write(conn.user_id, fields)

    async def record_failure(self, conn: MailboxConnection, error: str, record_count: int = 0) -> MailboxConnection:
        """Move the connection to ERROR. The stored cursor is left untouched."""
        current = await self.load_current(conn.user_id)
        ensure_transition(current.sync_status, SyncStatus.ERROR)
        fields: dict[str, Any] = {
            "status": SyncStatus.ERROR.value,
            "last_error": error,
            "last_error_at": utc_now(),
        }
        if record_count:
            fields["total_records_synced"] = (current.total_records_synced or 0) + record_count
        logger.warning(f"Sync failed: {error}", extra={"user_id": conn.user_id})
        return await self._write(conn.user_id, fields)

    async def record_cursor_established(self, user_id: str, cursor: str) -> MailboxConnection | None:
        """Store a freshly established cursor if the connection is still waiting for one.

        Re-reads the row first; returns None without writing when the connection
        moved on (disconnected, re-synced, removed) while the drain was running.
        """
        conn = await self.repository.get_connection(user_id)
        if conn is None or conn.sync_status != SyncStatus.CURSOR_PENDING:
            logger.info(
                "Discarding established cursor; connection is no longer pending",
                extra={"user_id": user_id, "status": conn.status if conn else None},
            )
            return None
        ensure_transition(conn.sync_status, SyncStatus.ACTIVE)
        logger.info("Sync cursor established", extra={"user_id": user_id})
        return await self._write(
            user_id, {"sync_cursor": cursor, "status": SyncStatus.ACTIVE.value, "last_error": None}
        )

    async def record_cursor_unavailable(self, user_id: str, reason: str) -> MailboxConnection | None:
        """Mark that cursor establishment gave up, if the connection is still pending."""
        conn = await self.repository.get_connection(user_id)
        if conn is None or conn.sync_status != SyncStatus.CURSOR_PENDING:
            logger.info(
                "Skipping cursor-unavailable update; connection is no longer pending",
                extra={"user_id": user_id, "status": conn.status if conn else None},
            )
            return None
        ensure_transition(conn.sync_status, SyncStatus.CURSOR_UNAVAILABLE)
        logger.warning(f"Sync cursor unavailable: {reason}", extra={"user_id": user_id})
        return await self._write(
            user_id,
            {"sync_cursor": None, "status": SyncStatus.CURSOR_UNAVAILABLE.value, "last_error": reason},
        )

    async def record_linked(self, conn: MailboxConnection, fields: dict[str, Any]) -> MailboxConnection:
        """(Re-)activate a connection after an account link. Counters are preserved."""
        ensure_transition(conn.sync_status, SyncStatus.ACTIVE)
        payload = dict(fields)
        payload.update({"status": SyncStatus.ACTIVE.value, "sync_cursor": None, "last_error": None})
        return await self._write(conn.user_id, payload)

    async def record_disconnected(self, conn: MailboxConnection) -> MailboxConnection:
        ensure_transition(conn.sync_status, SyncStatus.DISCONNECTED)
        return await self._write(
            conn.user_id, {"status": SyncStatus.DISCONNECTED.value, "sync_cursor": None}
        )
