"""Custom exceptions for the MailSync backend.

This module defines the application-level exceptions raised by the sync
services and rendered by the API exception handlers. Provider HTTP failures
live in ``mailsync.mailbox.exceptions``.
"""

from typing import Any


class MailSyncException(Exception):
    """Base exception class for the MailSync backend."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Connection Exceptions
class ConnectionNotFoundError(MailSyncException):
    """Raised when a user has no mailbox connection record."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"No mailbox connection for user '{user_id}'",
            error_code="MAILBOX_CONNECTION_NOT_FOUND",
            status_code=404,
            details=details or {"user_id": user_id},
        )


class ConnectionDisconnectedError(MailSyncException):
    """Raised when a sync is requested for a disconnected mailbox."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Mailbox for user '{user_id}' is disconnected",
            error_code="MAILBOX_DISCONNECTED",
            status_code=409,
            details=details or {"user_id": user_id},
        )


class MailboxNotLinkedError(MailSyncException):
    """Raised when a connection row exists but the account link never completed."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Mailbox for user '{user_id}' has not been linked yet",
            error_code="MAILBOX_NOT_LINKED",
            status_code=409,
            details=details or {"user_id": user_id},
        )


class InvalidStatusTransitionError(MailSyncException):
    """Raised when a connection status change is not allowed."""

    def __init__(self, current: str, target: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Invalid sync status transition: {current} -> {target}",
            error_code="INVALID_SYNC_STATUS_TRANSITION",
            status_code=500,
            details=details or {"current": current, "target": target},
        )


# Sync Exceptions
class SyncAlreadyRunningError(MailSyncException):
    """Raised when a second sync is attempted while one is in flight for the user."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"A mailbox sync is already running for user '{user_id}'",
            error_code="SYNC_ALREADY_RUNNING",
            status_code=409,
            details=details or {"user_id": user_id},
        )


class SyncFailedError(MailSyncException):
    """Raised when a sync attempt fails and will be retried on the next cycle."""

    def __init__(self, user_id: str, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Mailbox sync failed for user '{user_id}': {reason}",
            error_code="SYNC_FAILED",
            status_code=502,
            details=details or {"user_id": user_id, "reason": reason},
        )


class MailboxAuthorizationError(MailSyncException):
    """Raised when the provider rejects the caller-supplied credential."""

    def __init__(self, user_id: str, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Mailbox provider rejected the credential for user '{user_id}': {reason}",
            error_code="MAILBOX_UNAUTHORIZED",
            status_code=401,
            details=details or {"user_id": user_id, "reason": reason},
        )


class ValidationError(MailSyncException):
    """Raised when request input is invalid."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


# Database Exceptions
class DatabaseConnectionError(MailSyncException):
    """Raised when there's a database connection error (network, auth, etc.)."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database connection error: {reason}",
            error_code="DATABASE_CONNECTION_ERROR",
            status_code=503,
            details=details or {"reason": reason},
        )


class DatabaseSessionError(MailSyncException):
    """Raised when a database session operation fails."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database session error: {reason}",
            error_code="DATABASE_SESSION_ERROR",
            status_code=500,
            details=details or {"reason": reason},
        )
