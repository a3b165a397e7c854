"""Mailbox sync orchestration.

``MailboxSyncService.sync`` decides between a full fetch of recent messages
and an incremental delta drain, writes the diff, and records the resulting
connection status. Cursor establishment after a full fetch runs as a
fire-and-forget background task so the caller gets its result without waiting
for a drain of the whole inbox.

Mode selection:

- initial: explicitly requested, or the connection never synced.
- delta: a stored cursor on an ACTIVE (or ERROR) connection.
- fallback: the cursor is still being established or could not be.
- anything else (active without a cursor): initial.
"""

from __future__ import annotations

import asyncio
from functools import partial

from ..core.config import Settings, get_settings_instance
from ..core.exceptions import (
    ConnectionDisconnectedError,
    ConnectionNotFoundError,
    MailboxAuthorizationError,
    MailboxNotLinkedError,
    SyncFailedError,
)
from ..core.logging import get_logger
from ..mailbox.client import GraphMailboxClient
from ..mailbox.exceptions import CursorExpired, MailboxRequestFailed, MailboxUnauthorized, ProtocolAnomaly
from ..models.mailbox_connection import MailboxConnection, SyncStatus
from ..schemas.mailbox import SyncMode, SyncOutcome
from .enrichment import EnrichmentTrigger, LoggingEnrichmentTrigger
from .mailbox_repository import MailboxRepository
from .page_drainer import DrainBounds, DrainInterrupted, PageDrainer
from .record_transform import ApplyResult, apply, classify
from .sync_guard import InMemorySyncGuard, SyncGuard
from .sync_status import SyncStatusService

logger = get_logger(__name__)

CURSOR_EXPIRED_MESSAGE = "Sync cursor expired; re-establishing"


def select_mode(conn: MailboxConnection, initial_sync: bool = False) -> SyncMode:
    if initial_sync or conn.last_sync_at is None:
        return SyncMode.INITIAL
    status = conn.sync_status
    if conn.has_cursor and status in (SyncStatus.ACTIVE, SyncStatus.ERROR):
        return SyncMode.DELTA
    if status in (SyncStatus.CURSOR_PENDING, SyncStatus.CURSOR_UNAVAILABLE):
        return SyncMode.FALLBACK
    return SyncMode.INITIAL


class MailboxSyncService:
    """Runs syncs for one mailbox provider against one repository."""

    def __init__(
        self,
        client: GraphMailboxClient,
        repository: MailboxRepository,
        guard: SyncGuard | None = None,
        drainer: PageDrainer | None = None,
        enrichment: EnrichmentTrigger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings_instance()
        self.client = client
        self.repository = repository
        self.guard = guard or InMemorySyncGuard()
        self.drainer = drainer or PageDrainer.from_settings(client, self.settings)
        self.enrichment = enrichment or LoggingEnrichmentTrigger()
        self.status = SyncStatusService(repository)
        self._establishing: dict[str, asyncio.Task] = {}
        self._notifications: set[asyncio.Task] = set()

    async def sync(self, user_id: str, credential: str, initial_sync: bool = False) -> SyncOutcome:
        """Synchronize the user's inbox.

        Raises:
            SyncAlreadyRunningError: a sync is already in flight for the user.
            ConnectionNotFoundError / ConnectionDisconnectedError / MailboxNotLinkedError:
                the connection cannot be synced.
            MailboxAuthorizationError: the provider rejected the credential.
            SyncFailedError: the provider kept failing; retried on the next sync.
        """
        async with self.guard.hold(user_id):
            conn = await self._load_syncable_connection(user_id)
            mode = select_mode(conn, initial_sync)
            logger.info(
                f"Starting {mode.value} mailbox sync",
                extra={"user_id": user_id, "status": conn.status, "has_cursor": conn.has_cursor},
            )
            try:
                if mode == SyncMode.INITIAL:
                    outcome = await self._sync_recent(
                        conn, credential, self.settings.initial_fetch_limit, SyncMode.INITIAL
                    )
                elif mode == SyncMode.DELTA:
                    outcome = await self._sync_delta(conn, credential)
                else:
                    outcome = await self._sync_recent(
                        conn, credential, self.settings.fallback_fetch_limit, SyncMode.FALLBACK
                    )
            except MailboxUnauthorized as e:
                reason = e.provider_message or str(e)
                await self.status.record_failure(conn, f"Mailbox authorization failed: {reason}")
                raise MailboxAuthorizationError(user_id, reason) from e

        logger.info(
            "Mailbox sync finished",
            extra={
                "user_id": user_id,
                "mode": outcome.mode.value,
                "records_fetched": outcome.records_fetched,
                "new_records": outcome.new_records,
                "status": outcome.status,
            },
        )
        self._notify_enrichment(user_id, outcome.new_records)
        return outcome

    async def _load_syncable_connection(self, user_id: str) -> MailboxConnection:
        conn = await self.repository.get_connection(user_id)
        if conn is None:
            raise ConnectionNotFoundError(user_id)
        if conn.sync_status == SyncStatus.DISCONNECTED:
            raise ConnectionDisconnectedError(user_id)
        if conn.sync_status == SyncStatus.UNINITIALIZED:
            raise MailboxNotLinkedError(user_id)
        return conn

    async def _fetch_recent(self, user_id: str, credential: str, limit: int) -> list[dict]:
        try:
            return await self.client.list_recent(credential, limit)
        except MailboxUnauthorized:
            raise
        except (MailboxRequestFailed, ProtocolAnomaly) as e:
            logger.warning(f"Recent message fetch failed: {e}", extra={"user_id": user_id})
            raise SyncFailedError(user_id, str(e)) from e

    async def _write_records(self, user_id: str, records: list[dict]) -> tuple[int, ApplyResult]:
        classification = await classify(records, user_id, self.repository)
        applied = await apply(classification, user_id, self.repository)
        return len(classification.new), applied

    async def _sync_recent(
        self,
        conn: MailboxConnection,
        credential: str,
        limit: int,
        mode: SyncMode,
        error: str | None = None,
    ) -> SyncOutcome:
        """Fetch the newest ``limit`` messages and hand cursor creation to the background."""
        records = await self._fetch_recent(conn.user_id, credential, limit)
        await self.status.load_current(conn.user_id)
        new_count, _ = await self._write_records(conn.user_id, records)
        conn = await self.status.record_sync_success(
            conn, SyncStatus.CURSOR_PENDING, None, len(records), error=error
        )
        if conn.sync_status == SyncStatus.CURSOR_PENDING:
            self._launch_establishment(conn.user_id, credential)
        return self._outcome(conn, mode, len(records), new_count)

    async def _sync_delta(self, conn: MailboxConnection, credential: str) -> SyncOutcome:
        user_id = conn.user_id
        entry_url = self.client.delta_entry_url(conn.sync_cursor)
        bounds = DrainBounds(max_pages=self.settings.delta_max_pages)
        try:
            drained = await self.drainer.drain(entry_url, credential, bounds)
        except CursorExpired as e:
            logger.info(
                "Sync cursor expired, falling back to recent messages",
                extra={"user_id": user_id, "provider_error_code": e.provider_error_code},
            )
            return await self._sync_recent(
                conn,
                credential,
                self.settings.fallback_fetch_limit,
                SyncMode.EXPIRED_FALLBACK,
                error=CURSOR_EXPIRED_MESSAGE,
            )
        except DrainInterrupted as e:
            partial_records = e.partial_result.records
            await self.status.load_current(user_id)
            if partial_records:
                await self._write_records(user_id, partial_records)
            await self.status.record_failure(
                conn, f"Incremental sync interrupted: {e.cause}", record_count=len(partial_records)
            )
            raise SyncFailedError(user_id, str(e.cause)) from e

        await self.status.load_current(user_id)
        new_count, _ = await self._write_records(user_id, drained.records)

        if drained.completed:
            conn = await self.status.record_sync_success(
                conn, SyncStatus.ACTIVE, drained.cursor, len(drained.records)
            )
            return self._outcome(conn, SyncMode.DELTA, len(drained.records), new_count)

        # A bounded-out drain has no usable cursor; start over from a fresh one
        error = f"Incremental sync incomplete ({drained.stop_reason.value}); re-establishing cursor"
        conn = await self.status.record_sync_success(
            conn, SyncStatus.CURSOR_PENDING, None, len(drained.records), error=error
        )
        if conn.sync_status == SyncStatus.CURSOR_PENDING:
            self._launch_establishment(user_id, credential)
        return self._outcome(conn, SyncMode.DELTA, len(drained.records), new_count)

    def _outcome(self, conn: MailboxConnection, mode: SyncMode, fetched: int, new_count: int) -> SyncOutcome:
        return SyncOutcome(
            records_fetched=fetched,
            new_records=new_count,
            is_initial_sync=mode == SyncMode.INITIAL,
            cursor=conn.sync_cursor,
            mode=mode,
            status=conn.status,
        )

    # Background cursor establishment

    def is_establishing(self, user_id: str) -> bool:
        task = self._establishing.get(user_id)
        return task is not None and not task.done()

    def _launch_establishment(self, user_id: str, credential: str) -> None:
        if self.is_establishing(user_id):
            logger.debug("Cursor establishment already running", extra={"user_id": user_id})
            return
        task = asyncio.create_task(self._establish_cursor(user_id, credential), name=f"establish-cursor-{user_id}")
        self._establishing[user_id] = task
        task.add_done_callback(partial(self._on_establishment_done, user_id))

    def _on_establishment_done(self, user_id: str, task: asyncio.Task) -> None:
        if self._establishing.get(user_id) is task:
            del self._establishing[user_id]
        if task.cancelled():
            logger.warning("Cursor establishment was cancelled", extra={"user_id": user_id})
        elif exc := task.exception():
            logger.error(f"Cursor establishment failed: {exc}", exc_info=exc, extra={"user_id": user_id})

    async def _establish_cursor(self, user_id: str, credential: str) -> None:
        """Drain the whole delta feed to obtain a cursor; records are not stored."""
        bounds = DrainBounds(timeout_seconds=self.settings.cursor_establish_timeout_seconds)
        reason: str | None = None
        cursor: str | None = None
        try:
            result = await self.drainer.drain(self.client.delta_entry_url(None), credential, bounds)
            if result.completed:
                cursor = result.cursor
            else:
                reason = f"Cursor establishment stopped early ({result.stop_reason.value} after {result.pages} pages)"
        except DrainInterrupted as e:
            reason = f"Cursor establishment interrupted: {e.cause}"
        except MailboxRequestFailed as e:
            reason = f"Cursor establishment failed: {e}"
        except Exception as e:
            logger.exception(f"Unexpected error establishing cursor: {e}", extra={"user_id": user_id})
            reason = f"Cursor establishment failed: {e}"

        try:
            if cursor:
                await self.status.record_cursor_established(user_id, cursor)
            else:
                await self.status.record_cursor_unavailable(user_id, reason or "Cursor establishment failed")
        except Exception as e:
            logger.error(f"Failed to record cursor establishment result: {e}", extra={"user_id": user_id})

    # Enrichment hand-off

    def _notify_enrichment(self, user_id: str, new_record_count: int) -> None:
        task = asyncio.create_task(self._safe_notify(user_id, new_record_count))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _safe_notify(self, user_id: str, new_record_count: int) -> None:
        try:
            await self.enrichment.notify(user_id, new_record_count)
        except Exception as e:
            logger.warning(f"Enrichment trigger failed: {e}", extra={"user_id": user_id})

    async def wait_for_background(self) -> None:
        """Wait for in-flight cursor establishment and enrichment hand-offs."""
        while self._establishing or self._notifications:
            tasks = [*self._establishing.values(), *self._notifications]
            await asyncio.gather(*tasks, return_exceptions=True)
            # Done callbacks run on the next loop iteration
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """Cancel background work; used on application shutdown."""
        tasks = [*self._establishing.values(), *self._notifications]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
