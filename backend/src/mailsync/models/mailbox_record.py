"""Mailbox message metadata persistence.

One row per remote message, keyed by ``(user_id, message_id)`` where
``message_id`` is the provider-assigned immutable ID. Rows are created on first
sight, patched in place on later observations and only removed when the
account is disconnected.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Column, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP

from .base import BaseModel


class Importance(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class EnrichmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ENRICHED = "enriched"


# Columns the sync engine owns; enrichment_status belongs to the downstream pipeline
SYNCED_FIELDS = (
    "subject",
    "from_name",
    "from_address",
    "received_at",
    "conversation_id",
    "is_read",
    "has_attachments",
    "importance",
    "body_preview",
)


class MailboxRecord(BaseModel):
    __tablename__ = "mailbox_records"

    user_id = Column(String(36), nullable=False, index=True)
    message_id = Column(String(512), nullable=False)

    subject = Column(Text, nullable=False)
    from_name = Column(String(320), nullable=False)
    from_address = Column(String(320), nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False)
    conversation_id = Column(String(512), nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    has_attachments = Column(Boolean, nullable=False, default=False)
    importance = Column(String(16), nullable=False, default=Importance.NORMAL.value)
    body_preview = Column(Text, nullable=True)

    enrichment_status = Column(String(16), nullable=False, default=EnrichmentStatus.PENDING.value, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "message_id", name="uq_mailbox_records_user_message"),
        Index("ix_mailbox_records_user_received", "user_id", "received_at"),
    )
