"""
FastAPI dependencies for the MailSync API.

Caller identity and the mailbox credential are established upstream; the API
only reads them from request headers. Services are created once in the
application lifespan and read from ``app.state``.
"""

from fastapi import Header, HTTPException, Request, status

from ..services.account_service import MailboxAccountService
from ..services.mailbox_sync_service import MailboxSyncService


def get_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return user_id


def get_credential(authorization: str | None = Header(default=None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing mailbox bearer credential",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()


def get_optional_credential(authorization: str | None = Header(default=None)) -> str | None:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_sync_service(request: Request) -> MailboxSyncService:
    return request.app.state.sync_service


def get_account_service(request: Request) -> MailboxAccountService:
    return request.app.state.account_service
