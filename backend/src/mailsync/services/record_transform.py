"""Diff and transform of provider messages into stored mailbox records.

Incoming provider messages are classified against the store (new vs. already
known), then turned into either a full insert row with defaults for missing
fields or a partial patch carrying only the fields present in the payload.
Delta payloads are partial, so a patch must never clear or default a field
the provider did not send.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..core.logging import get_logger
from ..models.base import utc_now
from ..models.mailbox_record import EnrichmentStatus, Importance

if TYPE_CHECKING:
    from .mailbox_repository import MailboxRepository

logger = get_logger(__name__)

DEFAULT_SUBJECT = "(No Subject)"
DEFAULT_FROM_NAME = "Unknown Sender"
DEFAULT_FROM_ADDRESS = "unknown@unknown.com"

# Provider key -> stored column for the flat scalar fields
_SCALAR_FIELDS = {
    "subject": "subject",
    "conversationId": "conversation_id",
    "isRead": "is_read",
    "hasAttachments": "has_attachments",
    "bodyPreview": "body_preview",
}


@dataclass
class Classification:
    new: list[dict[str, Any]] = field(default_factory=list)
    updated: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ApplyResult:
    inserted: int = 0
    patched: int = 0


def parse_received_at(value: Any) -> datetime | None:
    """Parse an ISO-8601 provider timestamp (``2024-05-01T10:00:00Z``)."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_importance(value: Any) -> str:
    try:
        return Importance(str(value).lower()).value
    except ValueError:
        return Importance.NORMAL.value


def _sender(record: dict[str, Any]) -> dict[str, Any] | None:
    sender = record.get("from")
    if not isinstance(sender, dict):
        return None
    email = sender.get("emailAddress")
    return email if isinstance(email, dict) else None


async def classify(
    records: Iterable[dict[str, Any]], user_id: str, repository: MailboxRepository
) -> Classification:
    """Split provider messages into new and already-stored ones.

    Uses a single ``exists_batch`` lookup. Messages without an ID and delta
    removal markers are skipped; duplicate IDs within the batch collapse to the
    last occurrence.
    """
    result = Classification()
    by_id: dict[str, dict[str, Any]] = {}
    for record in records:
        message_id = record.get("id") if isinstance(record, dict) else None
        if not message_id:
            logger.warning("Skipping mailbox record without an id", extra={"user_id": user_id})
            result.skipped += 1
            continue
        if "@removed" in record:
            logger.debug("Skipping removed message", extra={"user_id": user_id, "message_id": message_id})
            result.skipped += 1
            continue
        if message_id in by_id:
            # Re-insert so ordering follows the last occurrence
            del by_id[message_id]
            result.skipped += 1
        by_id[message_id] = record

    if not by_id:
        return result

    existing = await repository.exists_batch(user_id, list(by_id))
    for message_id, record in by_id.items():
        if message_id in existing:
            result.updated.append(record)
        else:
            result.new.append(record)
    return result


def build_insert(record: dict[str, Any], user_id: str) -> dict[str, Any]:
    """Build a complete row for a message seen for the first time."""
    message_id = record["id"]
    sender = _sender(record)
    from_name = (sender or {}).get("name") or (sender or {}).get("address")
    from_address = (sender or {}).get("address")
    if not from_name or not from_address:
        logger.warning(
            "Message has incomplete sender, using defaults",
            extra={"user_id": user_id, "message_id": message_id},
        )

    received_at = parse_received_at(record.get("receivedDateTime"))
    if received_at is None:
        logger.warning(
            "Message has no usable receivedDateTime, using current time",
            extra={"user_id": user_id, "message_id": message_id},
        )
        received_at = utc_now()

    return {
        "user_id": user_id,
        "message_id": message_id,
        "subject": record.get("subject") or DEFAULT_SUBJECT,
        "from_name": from_name or DEFAULT_FROM_NAME,
        "from_address": from_address or DEFAULT_FROM_ADDRESS,
        "received_at": received_at,
        "conversation_id": record.get("conversationId"),
        "is_read": bool(record.get("isRead", False)),
        "has_attachments": bool(record.get("hasAttachments", False)),
        "importance": normalize_importance(record.get("importance", Importance.NORMAL.value)),
        "body_preview": record.get("bodyPreview"),
        "enrichment_status": EnrichmentStatus.PENDING.value,
    }


def build_patch(record: dict[str, Any]) -> dict[str, Any]:
    """Build a partial update from the fields actually present in ``record``.

    Absent keys, and keys the provider sent as null, are left out entirely.
    """
    patch: dict[str, Any] = {}
    for source, column in _SCALAR_FIELDS.items():
        value = record.get(source)
        if value is not None:
            patch[column] = bool(value) if column in ("is_read", "has_attachments") else value

    sender = _sender(record)
    if sender is not None:
        if sender.get("name"):
            patch["from_name"] = sender["name"]
        if sender.get("address"):
            patch["from_address"] = sender["address"]

    if record.get("receivedDateTime") is not None:
        received_at = parse_received_at(record["receivedDateTime"])
        if received_at is not None:
            patch["received_at"] = received_at
        else:
            logger.warning("Ignoring unparseable receivedDateTime", extra={"message_id": record.get("id")})

    if record.get("importance") is not None:
        patch["importance"] = normalize_importance(record["importance"])

    return patch


def apply_patch(row: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return ``row`` with ``patch`` applied; neither input is modified."""
    merged = dict(row)
    merged.update(patch)
    return merged


async def apply(classification: Classification, user_id: str, repository: MailboxRepository) -> ApplyResult:
    """Write a classification: bulk upsert for new messages, keyed patches for known ones."""
    result = ApplyResult()
    if classification.new:
        rows = [build_insert(record, user_id) for record in classification.new]
        result.inserted = await repository.upsert_many(rows)

    for record in classification.updated:
        patch = build_patch(record)
        if not patch:
            continue
        if await repository.patch_one(user_id, record["id"], patch):
            result.patched += 1

    if result.inserted or result.patched:
        logger.debug(
            "Applied mailbox changes",
            extra={"user_id": user_id, "inserted": result.inserted, "patched": result.patched},
        )
    return result
