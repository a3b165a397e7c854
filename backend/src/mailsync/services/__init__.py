"""
Services for the MailSync backend.

This package contains the sync engine (page draining, record diffing, status
state machine, orchestration) and the account lifecycle service.
"""

from .account_service import MailboxAccountService
from .mailbox_repository import MailboxRepository, SqlAlchemyMailboxRepository
from .mailbox_sync_service import MailboxSyncService
from .sync_guard import InMemorySyncGuard, RedisSyncGuard, SyncGuard, build_sync_guard

__all__ = [
    "InMemorySyncGuard",
    "MailboxAccountService",
    "MailboxRepository",
    "MailboxSyncService",
    "RedisSyncGuard",
    "SqlAlchemyMailboxRepository",
    "SyncGuard",
    "build_sync_guard",
]
