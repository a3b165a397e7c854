"""Bounded draining of paginated delta responses.

A drain starts at an entry URL and follows ``@odata.nextLink`` pages until a
page carries the terminal ``@odata.deltaLink`` cursor. Drains are bounded by a
page count and/or a wall-clock budget; a bounded-out drain never reports a
cursor, since a cursor is only valid once every page before it was consumed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..core.config import Settings
from ..core.logging import get_logger
from ..mailbox.client import MailboxPage
from ..mailbox.exceptions import MailboxRateLimited, MailboxTransientError, ProtocolAnomaly

logger = get_logger(__name__)


class StopReason(str, Enum):
    CURSOR = "cursor"
    PAGE_LIMIT = "page_limit"
    TIMEOUT = "timeout"
    ANOMALY = "anomaly"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class DrainBounds:
    """Upper bounds for one drain. ``None`` disables a bound."""

    max_pages: int | None = None
    timeout_seconds: float | None = None


@dataclass
class DrainResult:
    records: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None
    next_page_url: str | None = None
    pages: int = 0
    stop_reason: StopReason = StopReason.CURSOR

    @property
    def completed(self) -> bool:
        return self.stop_reason == StopReason.CURSOR and self.cursor is not None


class DrainInterrupted(Exception):
    """A page kept failing after all retries; ``partial_result`` holds earlier pages."""

    def __init__(self, cause: Exception, partial_result: DrainResult):
        self.cause = cause
        self.partial_result = partial_result
        super().__init__(f"Drain interrupted after {partial_result.pages} page(s): {cause}")


class PageSource(Protocol):
    async def follow_page(self, url: str, credential: str) -> MailboxPage: ...


class PageDrainer:
    """Follows page links with per-page retries, courtesy delays and bounds.

    ``clock`` and ``sleep`` are injectable so bounds and delays can be driven
    deterministically.
    """

    def __init__(
        self,
        client: PageSource,
        *,
        courtesy_every: int = 20,
        courtesy_delay_seconds: float = 0.5,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        max_retry_after_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.courtesy_every = courtesy_every
        self.courtesy_delay_seconds = courtesy_delay_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.max_retry_after_seconds = max_retry_after_seconds
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, client: PageSource, settings: Settings, **overrides: Any) -> PageDrainer:
        kwargs: dict[str, Any] = {
            "courtesy_every": settings.drain_courtesy_every_pages,
            "courtesy_delay_seconds": settings.drain_courtesy_delay_seconds,
            "max_retries": settings.drain_max_retries,
            "retry_backoff_seconds": settings.drain_retry_backoff_seconds,
            "max_retry_after_seconds": settings.drain_max_retry_after_seconds,
        }
        kwargs.update(overrides)
        return cls(client, **kwargs)

    async def drain(self, entry_url: str, credential: str, bounds: DrainBounds | None = None) -> DrainResult:
        """Drain pages starting at ``entry_url``.

        Raises:
            DrainInterrupted: a page failed with a rate-limit or transient error
                more than ``max_retries`` times.
            MailboxUnauthorized, CursorExpired: propagated unchanged.
        """
        bounds = bounds or DrainBounds()
        started = self._clock()
        result = DrainResult(next_page_url=entry_url)
        url = entry_url

        while True:
            try:
                page = await self._fetch_with_retry(url, credential)
            except (MailboxRateLimited, MailboxTransientError) as e:
                result.next_page_url = url
                result.stop_reason = StopReason.INTERRUPTED
                raise DrainInterrupted(e, result) from e
            except ProtocolAnomaly as e:
                logger.warning(f"Drain stopped on malformed page: {e}", extra={"pages": result.pages})
                result.next_page_url = None
                result.stop_reason = StopReason.ANOMALY
                return result

            result.pages += 1
            result.records.extend(page.records)

            if page.cursor:
                result.cursor = page.cursor
                result.next_page_url = None
                result.stop_reason = StopReason.CURSOR
                logger.debug(
                    "Drain reached cursor", extra={"pages": result.pages, "records": len(result.records)}
                )
                return result

            if not page.next_page_url:
                logger.warning(
                    "Drain stopped: page has neither a next link nor a cursor",
                    extra={"pages": result.pages, "records": len(result.records)},
                )
                result.next_page_url = None
                result.stop_reason = StopReason.ANOMALY
                return result

            url = page.next_page_url
            result.next_page_url = url

            if bounds.max_pages is not None and result.pages >= bounds.max_pages:
                logger.info(
                    f"Drain hit page limit of {bounds.max_pages}",
                    extra={"records": len(result.records)},
                )
                result.stop_reason = StopReason.PAGE_LIMIT
                return result

            elapsed = self._clock() - started
            if bounds.timeout_seconds is not None and elapsed >= bounds.timeout_seconds:
                logger.info(
                    f"Drain exceeded time budget of {bounds.timeout_seconds}s",
                    extra={"pages": result.pages, "records": len(result.records)},
                )
                result.stop_reason = StopReason.TIMEOUT
                return result

            if self.courtesy_every and result.pages % self.courtesy_every == 0:
                await self._sleep(self.courtesy_delay_seconds)

    async def _fetch_with_retry(self, url: str, credential: str) -> MailboxPage:
        attempt = 0
        while True:
            try:
                return await self.client.follow_page(url, credential)
            except MailboxRateLimited as e:
                if attempt >= self.max_retries:
                    raise
                hinted = e.retry_after_seconds
                delay = hinted if hinted is not None else self.retry_backoff_seconds * (2**attempt)
                delay = min(float(delay), self.max_retry_after_seconds)
            except MailboxTransientError:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2**attempt)

            attempt += 1
            logger.warning(
                f"Retrying page fetch in {delay:.2f}s (attempt {attempt}/{self.max_retries})",
                extra={"url": url},
            )
            await self._sleep(delay)
