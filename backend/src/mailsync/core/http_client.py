"""HTTP client management for the MailSync backend.

Provides a pooled ``httpx.AsyncClient`` for calls to the mailbox provider.
The manager is constructed by the application lifespan and handed to the
mailbox client explicitly; there is no module-level client.
"""

import httpx

from .config import Settings, get_settings_instance
from .logging import get_logger

logger = get_logger(__name__)


class HTTPClientManager:
    """Manages HTTP client connections with pooling for external APIs."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._client: httpx.AsyncClient | None = None
        self._settings = settings or get_settings_instance()

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None:
            logger.debug("Creating new HTTP client with connection pooling")
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=self._settings.http_max_connections,
                    keepalive_expiry=30.0,
                ),
                timeout=httpx.Timeout(self._settings.http_timeout),
                follow_redirects=True,
                headers={"User-Agent": f"MailSync/{self._settings.version}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            logger.debug("Closing HTTP client")
            await self._client.aclose()
            self._client = None
