"""Downstream enrichment trigger.

After a sync stores new records the orchestrator notifies the enrichment
pipeline with ``(user_id, new_record_count)``. The pipeline itself lives
elsewhere; this module defines the contract and the default implementation,
which only logs the hand-off.
"""

from __future__ import annotations

from typing import Protocol

from ..core.logging import get_logger

logger = get_logger(__name__)


class EnrichmentTrigger(Protocol):
    async def notify(self, user_id: str, new_record_count: int) -> None: ...


class LoggingEnrichmentTrigger:
    """Records enrichment hand-offs in the log."""

    async def notify(self, user_id: str, new_record_count: int) -> None:
        if new_record_count <= 0:
            return
        logger.info(
            "New mailbox records ready for enrichment",
            extra={"user_id": user_id, "new_record_count": new_record_count},
        )
