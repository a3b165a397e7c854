"""Pydantic schemas for mailbox sync endpoints."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SyncMode(str, Enum):
    INITIAL = "initial"
    DELTA = "delta"
    FALLBACK = "fallback"
    EXPIRED_FALLBACK = "expired_fallback"


class SyncRequest(BaseModel):
    initial_sync: bool = False


class SyncOutcome(BaseModel):
    """Result of one sync call."""

    records_fetched: int = 0
    new_records: int = 0
    is_initial_sync: bool = False
    cursor: str | None = None
    mode: SyncMode
    status: str


class ConnectRequest(BaseModel):
    account_address: str | None = Field(default=None, max_length=320)
    display_name: str | None = Field(default=None, max_length=255)
    initial_sync: bool = True


class DisconnectRequest(BaseModel):
    purge: bool = True


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    account_address: str | None = None
    display_name: str | None = None
    status: str
    has_cursor: bool = False
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None
    total_records_synced: int = 0
    last_sync_record_count: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None


class ConnectResponse(BaseModel):
    connection: ConnectionResponse
    sync: SyncOutcome | None = None


class DisconnectResponse(BaseModel):
    connection: ConnectionResponse
    records_deleted: int = 0


class RecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: str
    subject: str
    from_name: str
    from_address: str
    received_at: datetime
    conversation_id: str | None = None
    is_read: bool = False
    has_attachments: bool = False
    importance: str
    body_preview: str | None = None
    enrichment_status: str


class RecordListResponse(BaseModel):
    items: list[RecordResponse]
    total: int
    limit: int
    offset: int


class ReadStateRequest(BaseModel):
    message_ids: list[str] = Field(min_length=1, max_length=500)
    is_read: bool = True


class ReadStateResponse(BaseModel):
    updated: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
