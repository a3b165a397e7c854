"""Microsoft Graph mailbox client.

Thin async wrapper over the inbox endpoints the sync engine needs: the recent
message list, arbitrary page URLs (``@odata.nextLink`` / ``@odata.deltaLink``)
and read-state updates. Non-success responses are raised as typed
``MailboxRequestFailed`` subclasses so callers never inspect status codes.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from ..core.logging import get_logger
from .exceptions import MailboxRequestFailed, MailboxTransientError, ProtocolAnomaly, error_for_status

logger = get_logger(__name__)

INBOX_MESSAGES_PATH = "/me/mailFolders/inbox/messages"
INBOX_DELTA_PATH = "/me/mailFolders/inbox/messages/delta"

SELECT_FIELDS = (
    "id",
    "subject",
    "from",
    "toRecipients",
    "receivedDateTime",
    "isRead",
    "hasAttachments",
    "importance",
    "conversationId",
    "bodyPreview",
)

NEXT_LINK_KEY = "@odata.nextLink"
DELTA_LINK_KEY = "@odata.deltaLink"


@dataclass
class MailboxPage:
    """One page of a paginated response."""

    records: list[dict[str, Any]] = field(default_factory=list)
    next_page_url: str | None = None
    cursor: str | None = None


def build_odata_query_string(params: dict[str, Any]) -> str:
    """Build a query string keeping the ``$`` prefix and OData-safe characters unencoded."""
    parts = []
    for key, value in params.items():
        encoded_value = quote(str(value), safe=",-/:.'()T")
        parts.append(f"{key}={encoded_value}")
    return "&".join(parts)


def _credential_hash(credential: str) -> str:
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:10]


class GraphMailboxClient:
    """Client for the Graph inbox endpoints.

    The ``httpx.AsyncClient`` is supplied by the caller (normally from
    ``HTTPClientManager``); this class never creates or closes one.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://graph.microsoft.com/v1.0",
        page_size: int = 50,
        batch_size: int = 20,
    ) -> None:
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.batch_size = batch_size

    @property
    def select_clause(self) -> str:
        return ",".join(SELECT_FIELDS)

    def _url(self, path: str) -> str:
        return path if path.startswith("http") else f"{self.base_url}{path}"

    async def _request(
        self,
        method: str,
        url: str,
        credential: str,
        json_body: Any = None,
    ) -> tuple[int, Any]:
        headers = {"Authorization": f"Bearer {credential}", "Content-Type": "application/json"}
        logger.debug(
            "graph.request",
            extra={"method": method, "url": url, "auth_bearer_hash": _credential_hash(credential)},
        )
        try:
            resp = await self._http.request(method, url, headers=headers, json=json_body)
        except httpx.TransportError as e:
            logger.warning(f"Network error calling mailbox provider: {e}", extra={"url": url})
            raise MailboxTransientError(0, url, body=str(e)) from e

        body: Any
        content_type = resp.headers.get("content-type", "")
        try:
            body = resp.json() if "json" in content_type else resp.text
        except ValueError:
            body = resp.text

        if resp.status_code >= 400:
            error = error_for_status(resp.status_code, url, body=body, headers=dict(resp.headers))
            logger.warning(
                "graph.request failed",
                extra={
                    "method": method,
                    "url": url,
                    "status": resp.status_code,
                    "error_category": error.error_category,
                    "provider_error_code": error.provider_error_code,
                },
            )
            raise error
        return resp.status_code, body

    async def list_recent(self, credential: str, limit: int) -> list[dict[str, Any]]:
        """Fetch the newest ``limit`` inbox messages in one request."""
        query = build_odata_query_string(
            {
                "$top": limit,
                "$orderby": "receivedDateTime desc",
                "$select": self.select_clause,
            }
        )
        url = self._url(f"{INBOX_MESSAGES_PATH}?{query}")
        _, body = await self._request("GET", url, credential)
        if not isinstance(body, dict):
            raise ProtocolAnomaly("Recent message list did not return a JSON object", url=url)
        records = body.get("value") or []
        return [r for r in records if isinstance(r, dict)]

    async def follow_page(self, url: str, credential: str) -> MailboxPage:
        """Fetch one page of a paginated or delta response."""
        url = self._url(url)
        _, body = await self._request("GET", url, credential)
        if not isinstance(body, dict):
            raise ProtocolAnomaly("Page body is not a JSON object", url=url)
        records = body.get("value") or []
        return MailboxPage(
            records=[r for r in records if isinstance(r, dict)],
            next_page_url=body.get(NEXT_LINK_KEY) or None,
            cursor=body.get(DELTA_LINK_KEY) or None,
        )

    def delta_entry_url(self, cursor: str | None = None) -> str:
        """Entry point of a delta drain.

        With no cursor this is the inbox delta endpoint; with a cursor it is the
        saved delta link with ``$select`` appended, since delta links drop it.
        """
        if not cursor:
            query = build_odata_query_string({"$select": self.select_clause, "$top": self.page_size})
            return self._url(f"{INBOX_DELTA_PATH}?{query}")
        if "$select=" in cursor or "%24select=" in cursor:
            return cursor
        separator = "&" if "?" in cursor else "?"
        return f"{cursor}{separator}{build_odata_query_string({'$select': self.select_clause})}"

    async def set_read_state(
        self, credential: str, message_ids: list[str], is_read: bool
    ) -> tuple[list[str], list[str]]:
        """Mark messages read or unread on the provider.

        A single ID is a direct PATCH; several IDs go through ``$batch`` in
        chunks of ``batch_size``. Returns ``(updated_ids, failed_ids)``.
        """
        if not message_ids:
            return [], []

        if len(message_ids) == 1:
            message_id = message_ids[0]
            await self._request(
                "PATCH", self._url(f"/me/messages/{message_id}"), credential, json_body={"isRead": is_read}
            )
            return [message_id], []

        updated: list[str] = []
        failed: list[str] = []
        for start in range(0, len(message_ids), self.batch_size):
            chunk = message_ids[start : start + self.batch_size]
            requests = [
                {
                    "id": str(index),
                    "method": "PATCH",
                    "url": f"/me/messages/{message_id}",
                    "headers": {"Content-Type": "application/json"},
                    "body": {"isRead": is_read},
                }
                for index, message_id in enumerate(chunk)
            ]
            try:
                _, body = await self._request(
                    "POST", self._url("/$batch"), credential, json_body={"requests": requests}
                )
            except MailboxRequestFailed as e:
                if e.error_category in ("auth_error", "forbidden"):
                    raise
                logger.warning(
                    f"Read-state batch failed: {e}",
                    extra={"batch_start": start, "batch_size": len(chunk)},
                )
                failed.extend(chunk)
                continue

            responses = body.get("responses", []) if isinstance(body, dict) else []
            succeeded_indexes = {
                str(item.get("id")) for item in responses if isinstance(item, dict) and item.get("status") in (200, 204)
            }
            for index, message_id in enumerate(chunk):
                (updated if str(index) in succeeded_indexes else failed).append(message_id)

        return updated, failed
