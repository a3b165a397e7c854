"""Per-user mailbox connection and sync cursor persistence.

One row per user. The row is the durable state of the sync engine: the
resumable delta cursor, the sync status, cumulative counters and the last
error, so a process restart resumes from exactly where the last sync left off.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from .base import BaseModel


class SyncStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CURSOR_PENDING = "cursor_pending"
    CURSOR_UNAVAILABLE = "cursor_unavailable"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class MailboxConnection(BaseModel):
    __tablename__ = "mailbox_connections"

    user_id = Column(String(36), nullable=False, unique=True, index=True)

    # Linked account details (informational)
    account_address = Column(String(320), nullable=True)
    display_name = Column(String(255), nullable=True)
    connected_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Resumable delta cursor; NULL means no incremental capability yet
    sync_cursor = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default=SyncStatus.UNINITIALIZED.value, index=True)

    last_sync_at = Column(TIMESTAMP(timezone=True), nullable=True)
    total_records_synced = Column(Integer, nullable=False, default=0)
    last_sync_record_count = Column(Integer, nullable=False, default=0)

    last_error = Column(Text, nullable=True)
    last_error_at = Column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (Index("ix_mailbox_connections_status_last_sync", "status", "last_sync_at"),)

    @property
    def sync_status(self) -> SyncStatus:
        return SyncStatus(self.status or SyncStatus.UNINITIALIZED.value)

    @property
    def has_cursor(self) -> bool:
        return bool(self.sync_cursor)
