"""Typed failures raised by the mailbox provider client.

Every provider HTTP failure is a ``MailboxRequestFailed`` carrying the status,
URL, parsed body and headers, with semantic properties so callers never parse
status codes or error payloads themselves. ``error_for_status`` picks the
concrete subclass.
"""

from __future__ import annotations

# Provider error codes that mean the delta token can no longer be resumed
CURSOR_EXPIRED_MARKERS = ("syncStateNotFound", "resyncRequired", "syncStateInvalid")


class MailboxRequestFailed(Exception):
    """Raised when the mailbox provider returns a non-success HTTP status.

    Attributes:
        status_code: int HTTP status (0 for network failures)
        url: str request URL
        body: Any parsed body (dict/list/str)
        headers: dict of response headers

    Properties:
        error_category: Semantic category (auth_error, forbidden, gone, rate_limited, etc.)
        is_retryable: True for 429, 5xx and network errors
        retry_after_seconds: From Retry-After header if present
        provider_message: Best-effort extraction of error message from body
        provider_error_code: Provider-specific error code if present
    """

    def __init__(self, status_code: int, url: str, body: object = None, headers: dict | None = None):
        self.status_code = int(status_code)
        self.url = str(url)
        self.body = body
        self.headers = dict(headers or {})
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.status_code == 0:
            return f"Network error calling {self.url}: {self.provider_message}"
        return f"HTTP {self.status_code} calling {self.url}"

    @property
    def error_category(self) -> str:
        """Semantic error category based on HTTP status code.

        Returns one of:
        - network_error: no HTTP response (status 0)
        - auth_error: 401 Unauthorized
        - forbidden: 403 Forbidden
        - not_found: 404 Not Found
        - gone: 410 Gone (expired delta tokens)
        - rate_limited: 429 Too Many Requests
        - server_error: 5xx errors
        - client_error: other 4xx errors
        """
        if self.status_code == 0:
            return "network_error"
        if self.status_code == 401:
            return "auth_error"
        if self.status_code == 403:
            return "forbidden"
        if self.status_code == 404:
            return "not_found"
        if self.status_code == 410:
            return "gone"
        if self.status_code == 429:
            return "rate_limited"
        if self.status_code >= 500:
            return "server_error"
        return "client_error"

    @property
    def is_retryable(self) -> bool:
        """True for errors that may succeed on retry (network, 429, 5xx)."""
        return self.status_code in (0, 429) or self.status_code >= 500

    @property
    def retry_after_seconds(self) -> int | None:
        """Parse the Retry-After header (case-insensitive). Returns seconds or None."""
        retry_after = None
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                retry_after = value
                break

        if not retry_after:
            return None
        try:
            return max(0, int(retry_after))
        except (ValueError, TypeError):
            # HTTP-date form is not used by the provider
            return None

    @property
    def provider_message(self) -> str:
        """Best-effort extraction of the error message from the response body.

        Handles ``{"error": {"message": ...}}`` (Graph), ``{"error_description": ...}``
        (OAuth), ``{"message": ...}`` and plain string bodies.
        """
        if self.body is None:
            return ""

        if isinstance(self.body, str):
            return self.body[:500]

        if isinstance(self.body, dict):
            error_obj = self.body.get("error")
            if isinstance(error_obj, dict):
                msg = error_obj.get("message")
                if msg:
                    return str(msg)

            for key in ("error_description", "message", "error", "detail"):
                val = self.body.get(key)
                if val and isinstance(val, str):
                    return val

        return str(self.body)[:500]

    @property
    def provider_error_code(self) -> str | None:
        """Extract the provider error code, e.g. ``{"error": {"code": "syncStateNotFound"}}``."""
        if not isinstance(self.body, dict):
            return None

        error_obj = self.body.get("error")
        if isinstance(error_obj, dict):
            code = error_obj.get("code")
            if code:
                return str(code)

        code = self.body.get("code")
        return str(code) if code else None


class MailboxUnauthorized(MailboxRequestFailed):
    """The credential was rejected (401) or lacks mailbox access (403)."""


class MailboxRateLimited(MailboxRequestFailed):
    """The provider is throttling the caller (429)."""


class CursorExpired(MailboxRequestFailed):
    """The saved delta cursor can no longer be resumed."""


class MailboxTransientError(MailboxRequestFailed):
    """A 5xx response or a network failure; worth retrying."""


class ProtocolAnomaly(Exception):
    """A page did not have the expected shape (not a JSON object, no links)."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)


def _mentions_cursor_expiry(body: object) -> bool:
    text = body if isinstance(body, str) else repr(body) if body is not None else ""
    return any(marker in text for marker in CURSOR_EXPIRED_MARKERS)


def error_for_status(
    status_code: int, url: str, body: object = None, headers: dict | None = None
) -> MailboxRequestFailed:
    """Build the typed failure for a non-success provider response."""
    if status_code in (401, 403):
        return MailboxUnauthorized(status_code, url, body=body, headers=headers)
    if status_code == 410:
        return CursorExpired(status_code, url, body=body, headers=headers)
    if status_code == 429:
        return MailboxRateLimited(status_code, url, body=body, headers=headers)
    if status_code >= 500:
        return MailboxTransientError(status_code, url, body=body, headers=headers)
    if 400 <= status_code < 500 and _mentions_cursor_expiry(body):
        return CursorExpired(status_code, url, body=body, headers=headers)
    return MailboxRequestFailed(status_code, url, body=body, headers=headers)
