"""Mailbox account lifecycle: link, disconnect, browse and read-state updates."""

from __future__ import annotations

from typing import Any

from ..core.exceptions import ConnectionNotFoundError, MailboxAuthorizationError, ValidationError
from ..core.logging import get_logger
from ..mailbox.exceptions import MailboxRequestFailed, MailboxUnauthorized
from ..models.base import utc_now
from ..models.mailbox_connection import MailboxConnection, SyncStatus
from ..models.mailbox_record import MailboxRecord
from ..schemas.mailbox import SyncOutcome
from .mailbox_sync_service import MailboxSyncService

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200


class MailboxAccountService:
    def __init__(self, sync_service: MailboxSyncService) -> None:
        self.sync_service = sync_service
        self.repository = sync_service.repository
        self.client = sync_service.client
        self.status = sync_service.status

    async def get_connection(self, user_id: str) -> MailboxConnection:
        conn = await self.repository.get_connection(user_id)
        if conn is None:
            raise ConnectionNotFoundError(user_id)
        return conn

    async def link_account(
        self,
        user_id: str,
        credential: str | None = None,
        account_address: str | None = None,
        display_name: str | None = None,
        initial_sync: bool = True,
    ) -> tuple[MailboxConnection, SyncOutcome | None]:
        """Create or re-activate the user's connection, then optionally run the initial sync.

        Re-linking a disconnected account keeps its cumulative counters.
        Linking an already linked account only refreshes the account details.
        """
        details: dict[str, Any] = {}
        if account_address is not None:
            details["account_address"] = account_address
        if display_name is not None:
            details["display_name"] = display_name

        conn = await self.repository.get_connection(user_id)
        if conn is None:
            conn = await self.repository.create_connection(user_id, status=SyncStatus.UNINITIALIZED.value)

        if conn.sync_status in (SyncStatus.UNINITIALIZED, SyncStatus.DISCONNECTED):
            details["connected_at"] = utc_now()
            conn = await self.status.record_linked(conn, details)
            logger.info("Mailbox account linked", extra={"user_id": user_id})
        elif details:
            conn = await self.repository.update_connection(user_id, details) or conn

        outcome = None
        if credential and initial_sync:
            outcome = await self.sync_service.sync(user_id, credential, initial_sync=True)
            conn = await self.get_connection(user_id)
        return conn, outcome

    async def disconnect(self, user_id: str, purge: bool = True) -> tuple[MailboxConnection, int]:
        """Disconnect the account; with ``purge`` all of its stored records are deleted."""
        conn = await self.get_connection(user_id)
        conn = await self.status.record_disconnected(conn)
        deleted = await self.repository.delete_records(user_id) if purge else 0
        logger.info("Mailbox account disconnected", extra={"user_id": user_id, "records_deleted": deleted})
        return conn, deleted

    async def list_records(self, user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[MailboxRecord], int]:
        """Stored records, newest first, with the total count for paging."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset cannot be negative")
        await self.get_connection(user_id)
        records = await self.repository.list_records(user_id, limit=limit, offset=offset)
        total = await self.repository.count_records(user_id)
        return records, total

    async def set_read_state(
        self, user_id: str, credential: str, message_ids: list[str], is_read: bool
    ) -> tuple[list[str], list[str]]:
        """Update read state on the provider, then mirror accepted changes locally."""
        ids = list(dict.fromkeys(mid for mid in message_ids if mid))
        if not ids:
            raise ValidationError("message_ids must contain at least one id")
        await self.get_connection(user_id)

        try:
            updated, failed = await self.client.set_read_state(credential, ids, is_read)
        except MailboxUnauthorized as e:
            raise MailboxAuthorizationError(user_id, e.provider_message or str(e)) from e
        except MailboxRequestFailed as e:
            logger.warning(f"Read-state update failed: {e}", extra={"user_id": user_id})
            updated, failed = [], ids

        for message_id in updated:
            await self.repository.patch_one(user_id, message_id, {"is_read": is_read})
        if failed:
            logger.warning(f"{len(failed)} read-state update(s) rejected by provider", extra={"user_id": user_id})
        return updated, failed
