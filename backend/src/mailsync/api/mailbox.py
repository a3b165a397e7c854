"""
Mailbox sync API endpoints.
"""

from fastapi import APIRouter, Depends, Query

from ..core.logging import get_logger
from ..core.response import MailSyncResponse
from ..schemas.mailbox import (
    ConnectionResponse,
    ConnectRequest,
    ConnectResponse,
    DisconnectRequest,
    DisconnectResponse,
    ReadStateRequest,
    ReadStateResponse,
    RecordListResponse,
    RecordResponse,
    SyncRequest,
)
from ..services.account_service import MailboxAccountService
from ..services.mailbox_sync_service import MailboxSyncService
from .dependencies import (
    get_account_service,
    get_credential,
    get_optional_credential,
    get_sync_service,
    get_user_id,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/mailbox", tags=["mailbox"])


@router.post("/sync", summary="Synchronize the inbox")
async def sync_mailbox(
    payload: SyncRequest | None = None,
    user_id: str = Depends(get_user_id),
    credential: str = Depends(get_credential),
    service: MailboxSyncService = Depends(get_sync_service),
):
    """Run one sync for the caller and return the outcome.

    Fails with 409 when a sync is already running for the caller.
    """
    payload = payload or SyncRequest()
    outcome = await service.sync(user_id, credential, initial_sync=payload.initial_sync)
    return MailSyncResponse.success(outcome)


@router.post("/connect", summary="Link the mailbox account")
async def connect_mailbox(
    payload: ConnectRequest,
    user_id: str = Depends(get_user_id),
    credential: str | None = Depends(get_optional_credential),
    service: MailboxAccountService = Depends(get_account_service),
):
    conn, outcome = await service.link_account(
        user_id,
        credential=credential,
        account_address=payload.account_address,
        display_name=payload.display_name,
        initial_sync=payload.initial_sync,
    )
    return MailSyncResponse.success(
        ConnectResponse(connection=ConnectionResponse.model_validate(conn), sync=outcome)
    )


@router.post("/disconnect", summary="Disconnect the mailbox account")
async def disconnect_mailbox(
    payload: DisconnectRequest | None = None,
    user_id: str = Depends(get_user_id),
    service: MailboxAccountService = Depends(get_account_service),
):
    payload = payload or DisconnectRequest()
    conn, deleted = await service.disconnect(user_id, purge=payload.purge)
    return MailSyncResponse.success(
        DisconnectResponse(connection=ConnectionResponse.model_validate(conn), records_deleted=deleted)
    )


@router.get("/connection", summary="Connection and sync status")
async def get_connection(
    user_id: str = Depends(get_user_id),
    service: MailboxAccountService = Depends(get_account_service),
):
    conn = await service.get_connection(user_id)
    return MailSyncResponse.success(ConnectionResponse.model_validate(conn))


@router.get("/records", summary="List synced records")
async def list_records(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    service: MailboxAccountService = Depends(get_account_service),
):
    records, total = await service.list_records(user_id, limit=limit, offset=offset)
    return MailSyncResponse.success(
        RecordListResponse(
            items=[RecordResponse.model_validate(r) for r in records],
            total=total,
            limit=limit,
            offset=offset,
        )
    )


@router.post("/records/read-state", summary="Mark records read or unread")
async def set_read_state(
    payload: ReadStateRequest,
    user_id: str = Depends(get_user_id),
    credential: str = Depends(get_credential),
    service: MailboxAccountService = Depends(get_account_service),
):
    updated, failed = await service.set_read_state(user_id, credential, payload.message_ids, payload.is_read)
    return MailSyncResponse.success(ReadStateResponse(updated=updated, failed=failed))
