"""Mailbox provider access: the Graph client and its typed failures."""

from .client import GraphMailboxClient, MailboxPage
from .exceptions import (
    CursorExpired,
    MailboxRateLimited,
    MailboxRequestFailed,
    MailboxTransientError,
    MailboxUnauthorized,
    ProtocolAnomaly,
)

__all__ = [
    "CursorExpired",
    "GraphMailboxClient",
    "MailboxPage",
    "MailboxRateLimited",
    "MailboxRequestFailed",
    "MailboxTransientError",
    "MailboxUnauthorized",
    "ProtocolAnomaly",
]
