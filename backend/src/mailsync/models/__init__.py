"""
Database models for the MailSync backend.

This package contains the SQLAlchemy models for the mailbox connection
(sync state) and the synced message metadata.
"""

from .base import Base
from .mailbox_connection import MailboxConnection, SyncStatus
from .mailbox_record import SYNCED_FIELDS, EnrichmentStatus, Importance, MailboxRecord

__all__ = [
    "SYNCED_FIELDS",
    "Base",
    "EnrichmentStatus",
    "Importance",
    "MailboxConnection",
    "MailboxRecord",
    "SyncStatus",
]
